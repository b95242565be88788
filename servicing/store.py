"""
store.py - Append-Only Fact Store

FactStore is the in-memory reference implementation of the fact store the
derivation engine reads from. It is the only module that mutates state.

Key responsibilities:
    - Appends facts, retractions, rate adjustments and lifecycle stamps to a
      sequenced log; nothing in the log is ever edited
    - Tracks a logical recording clock (advance_time), so recording times
      are reproducible
    - Produces immutable point-in-time snapshots (FactSnapshot) that
      implement FactView (current facts, tombstones excluded),
      HistoryView (tombstoned facts and admin events, for audit) and
      PartyView (parties, contract roles, ownership)

Validation of business input lives in operations.py; the store only
guarantees identity rules (unique ids, retract once).
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from .core import (
    AdminEvent, Contract, ContractParty, Deposit, Disbursement, Facility, Fact,
    FactNotFound, Fee, Installment, Ownership, Party, PartyType, Payment,
    PrincipalAllocation, Retraction, RetractionReason, ValidationError, fact_id,
)
from .logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# LOG ENTRIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Recorded:
    """New facts admitted together."""
    facts: Tuple[Fact, ...]


@dataclass(frozen=True, slots=True)
class Retracted:
    """Tombstone for a previously recorded fact."""
    fact_id: str
    reason: RetractionReason


@dataclass(frozen=True, slots=True)
class ProfitAdjusted:
    """Rate adjustment: new profit_due per installment id."""
    contract_id: str
    changes: Tuple[Tuple[str, Decimal], ...]


@dataclass(frozen=True, slots=True)
class LifecycleStamped:
    """Sets disbursed_at or written_off_at on a contract."""
    contract_id: str
    stamp: str
    at: datetime


Change = Union[Recorded, Retracted, ProfitAdjusted, LifecycleStamped]

LIFECYCLE_STAMPS = ("disbursed_at", "written_off_at")


@dataclass(frozen=True, slots=True)
class LogEntry:
    """
    One append to the store.

    kind names the admin event this entry represents ("boarding",
    "rate-adjustment", "disbursed", "written-off") or is None for plain
    recording of money movements.
    """
    sequence: int
    recorded_at: datetime
    author: str
    change: Change
    contract_id: Optional[str] = None
    kind: Optional[str] = None
    note: Optional[str] = None


# ============================================================================
# SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class FactSnapshot:
    """
    Immutable view of the store after a given log sequence.

    Implements FactView, HistoryView and PartyView. Collections are returned in
    recording order.
    """
    sequence: int
    facts: Dict[str, Fact] = field(default_factory=dict)
    retractions: Tuple[Retraction, ...] = ()
    admin_events: Tuple[AdminEvent, ...] = ()

    def _of_type(self, fact_type: type, contract_id: str) -> Tuple:
        return tuple(f for f in self.facts.values()
                     if isinstance(f, fact_type) and f.contract_id == contract_id)

    # FactView ---------------------------------------------------------------

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        fact = self.facts.get(contract_id)
        return fact if isinstance(fact, Contract) else None

    def list_contracts(self, facility_id: Optional[str] = None) -> Tuple[Contract, ...]:
        return tuple(f for f in self.facts.values()
                     if isinstance(f, Contract)
                     and (facility_id is None or f.facility_id == facility_id))

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        fact = self.facts.get(facility_id)
        return fact if isinstance(fact, Facility) else None

    def list_fees(self, contract_id: str) -> Tuple[Fee, ...]:
        return self._of_type(Fee, contract_id)

    def list_installments(self, contract_id: str) -> Tuple[Installment, ...]:
        return self._of_type(Installment, contract_id)

    def list_payments(self, contract_id: str) -> Tuple[Payment, ...]:
        return self._of_type(Payment, contract_id)

    def list_disbursements(self, contract_id: str) -> Tuple[Disbursement, ...]:
        return self._of_type(Disbursement, contract_id)

    def list_deposits(self, contract_id: str) -> Tuple[Deposit, ...]:
        """Deposits recorded against the contract plus transfers into it."""
        return tuple(f for f in self.facts.values()
                     if isinstance(f, Deposit)
                     and (f.contract_id == contract_id or f.target_contract_id == contract_id))

    def list_principal_allocations(self, contract_id: str) -> Tuple[PrincipalAllocation, ...]:
        return self._of_type(PrincipalAllocation, contract_id)

    # HistoryView ------------------------------------------------------------

    def list_retractions(self, contract_id: str) -> Tuple[Retraction, ...]:
        return tuple(r for r in self.retractions
                     if getattr(r.fact, "contract_id", None) == contract_id)

    def list_admin_events(self, contract_id: str) -> Tuple[AdminEvent, ...]:
        return tuple(e for e in self.admin_events if e.contract_id == contract_id)

    # PartyView --------------------------------------------------------------

    def get_party(self, party_id: str) -> Optional[Party]:
        fact = self.facts.get(party_id)
        return fact if isinstance(fact, Party) else None

    def list_parties(self, party_type: Optional[PartyType] = None) -> Tuple[Party, ...]:
        return tuple(f for f in self.facts.values()
                     if isinstance(f, Party)
                     and (party_type is None or f.party_type is party_type))

    def list_contract_parties(
        self,
        contract_id: Optional[str] = None,
        party_id: Optional[str] = None,
    ) -> Tuple[ContractParty, ...]:
        return tuple(f for f in self.facts.values()
                     if isinstance(f, ContractParty)
                     and (contract_id is None or f.contract_id == contract_id)
                     and (party_id is None or f.party_id == party_id))

    def list_ownerships(
        self,
        company_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Tuple[Ownership, ...]:
        return tuple(f for f in self.facts.values()
                     if isinstance(f, Ownership)
                     and (company_id is None or f.company_id == company_id)
                     and (owner_id is None or f.owner_id == owner_id))


def fold_log(entries: List[LogEntry]) -> FactSnapshot:
    """
    Build a snapshot by applying log entries in order.

    Rate adjustments and lifecycle stamps are applied to the current
    version of their target; retracted facts move to the history side.
    """
    facts: Dict[str, Fact] = {}
    retractions: List[Retraction] = []
    admin_events: List[AdminEvent] = []
    sequence = 0

    for entry in entries:
        sequence = entry.sequence
        match entry.change:
            case Recorded(facts=recorded):
                for fact in recorded:
                    facts[fact_id(fact)] = fact
            case Retracted(fact_id=retracted_id, reason=reason):
                fact = facts.pop(retracted_id)
                retractions.append(Retraction(fact, reason, entry.author,
                                              entry.recorded_at, entry.note))
            case ProfitAdjusted(changes=changes):
                for installment_id, profit in changes:
                    facts[installment_id] = replace(facts[installment_id], profit_due=profit)
            case LifecycleStamped(contract_id=contract_id, stamp=stamp, at=at):
                facts[contract_id] = replace(facts[contract_id], **{stamp: at})

        if entry.kind is not None and entry.contract_id is not None:
            admin_events.append(AdminEvent(entry.kind, entry.contract_id, entry.author,
                                           entry.recorded_at, entry.note))

    return FactSnapshot(sequence, facts, tuple(retractions), tuple(admin_events))


# ============================================================================
# STORE
# ============================================================================

class FactStore:
    """
    Append-only store of servicing facts with a logical recording clock.

    Implements FactView, HistoryView and PartyView (through the current
    snapshot), so a store can be passed straight to compose_state(). For a
    stable read across several calls, take snapshot() once and pass that.

    Thread Safety:
        Not thread-safe for writes. Snapshots are immutable and may be shared.

    Example:
        store = FactStore("servicing", initial_time=datetime(2024, 1, 1))
        store.record([contract, *installments], author="ops", kind="boarding",
                     contract_id=contract.contract_id)
        state = compose_state(store.snapshot(), contract.contract_id, date(2024, 2, 1))
    """

    def __init__(self, name: str, initial_time: Optional[datetime] = None):
        self.name = name
        self.log: List[LogEntry] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 1
        self._ids_by_kind: Dict[str, int] = defaultdict(int)
        self._live: Dict[str, Fact] = {}
        self._seen: set = set()
        self._snapshot: Optional[FactSnapshot] = None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the recording clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # IDENTITY
    # ========================================================================

    def next_id(self, prefix: str) -> str:
        """Deterministic fact id: {prefix}-{n:06d}, counted per prefix."""
        self._ids_by_kind[prefix] += 1
        return f"{prefix}-{self._ids_by_kind[prefix]:06d}"

    def get_live(self, fact_id_: str) -> Optional[Fact]:
        """Current (unretracted) version of a fact, or None."""
        return self._live.get(fact_id_)

    # ========================================================================
    # APPEND (Mutating)
    # ========================================================================

    def _append(
        self,
        change: Change,
        author: str,
        contract_id: Optional[str] = None,
        kind: Optional[str] = None,
        note: Optional[str] = None,
    ) -> LogEntry:
        entry = LogEntry(
            sequence=self._next_sequence,
            recorded_at=self._current_time,
            author=author,
            change=change,
            contract_id=contract_id,
            kind=kind,
            note=note,
        )
        self._next_sequence += 1
        self.log.append(entry)
        self._snapshot = None
        return entry

    def record(
        self,
        facts: List[Fact],
        author: str,
        contract_id: Optional[str] = None,
        kind: Optional[str] = None,
        note: Optional[str] = None,
    ) -> LogEntry:
        """
        Admit new facts atomically.

        Raises:
            ValidationError: An id is already in use (or was used by a
                retracted fact)
        """
        ids = [fact_id(f) for f in facts]
        duplicates = [i for i in ids if i in self._seen]
        if duplicates or len(set(ids)) != len(ids):
            raise ValidationError(f"Duplicate fact id: {duplicates or ids}",
                                  field="id", code="duplicate-id")
        entry = self._append(Recorded(tuple(facts)), author, contract_id, kind, note)
        for fid, fact in zip(ids, facts):
            self._seen.add(fid)
            self._live[fid] = fact
        logger.debug("%s #%d recorded %s", self.name, entry.sequence, ", ".join(ids))
        return entry

    def retract(
        self,
        fact_id_: str,
        reason: RetractionReason,
        author: str,
        note: Optional[str] = None,
    ) -> LogEntry:
        """
        Tombstone a fact. It leaves the current view and stays in history.

        Raises:
            FactNotFound: Unknown id, or already retracted
        """
        fact = self._live.get(fact_id_)
        if fact is None:
            raise FactNotFound(fact_id_)
        entry = self._append(Retracted(fact_id_, reason), author,
                             getattr(fact, "contract_id", None), None, note)
        del self._live[fact_id_]
        logger.info("%s #%d retracted %s (%s) by %s",
                    self.name, entry.sequence, fact_id_, reason.value, author)
        return entry

    def adjust_profit(
        self,
        contract_id: str,
        changes: List[Tuple[str, Decimal]],
        author: str,
        note: Optional[str] = None,
    ) -> LogEntry:
        """Record new profit_due values as one rate-adjustment event."""
        for installment_id, _ in changes:
            if not isinstance(self._live.get(installment_id), Installment):
                raise FactNotFound(installment_id)
        entry = self._append(ProfitAdjusted(contract_id, tuple(changes)), author,
                             contract_id, "rate-adjustment", note)
        for installment_id, profit in changes:
            self._live[installment_id] = replace(self._live[installment_id], profit_due=profit)
        return entry

    def stamp(
        self,
        contract_id: str,
        stamp: str,
        at: datetime,
        author: str,
        kind: str,
        note: Optional[str] = None,
    ) -> LogEntry:
        """Record a contract lifecycle timestamp (disbursed_at, written_off_at)."""
        if stamp not in LIFECYCLE_STAMPS:
            raise ValueError(f"Unknown lifecycle stamp: {stamp}")
        if not isinstance(self._live.get(contract_id), Contract):
            raise FactNotFound(contract_id)
        entry = self._append(LifecycleStamped(contract_id, stamp, at), author,
                             contract_id, kind, note)
        self._live[contract_id] = replace(self._live[contract_id], **{stamp: at})
        return entry

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def snapshot(
        self,
        at_sequence: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> FactSnapshot:
        """
        Immutable view of the store.

        Args:
            at_sequence: Include log entries up to and including this sequence
            as_of: Include log entries recorded at or before this time

        With neither argument, the snapshot reflects every entry so far.
        """
        if at_sequence is None and as_of is None:
            if self._snapshot is None:
                self._snapshot = fold_log(self.log)
            return self._snapshot
        entries = [e for e in self.log
                   if (at_sequence is None or e.sequence <= at_sequence)
                   and (as_of is None or e.recorded_at <= as_of)]
        return fold_log(entries)

    # FactView and HistoryView through the current snapshot ------------------

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        return self.snapshot().get_contract(contract_id)

    def list_contracts(self, facility_id: Optional[str] = None) -> Tuple[Contract, ...]:
        return self.snapshot().list_contracts(facility_id)

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        return self.snapshot().get_facility(facility_id)

    def list_fees(self, contract_id: str) -> Tuple[Fee, ...]:
        return self.snapshot().list_fees(contract_id)

    def list_installments(self, contract_id: str) -> Tuple[Installment, ...]:
        return self.snapshot().list_installments(contract_id)

    def list_payments(self, contract_id: str) -> Tuple[Payment, ...]:
        return self.snapshot().list_payments(contract_id)

    def list_disbursements(self, contract_id: str) -> Tuple[Disbursement, ...]:
        return self.snapshot().list_disbursements(contract_id)

    def list_deposits(self, contract_id: str) -> Tuple[Deposit, ...]:
        return self.snapshot().list_deposits(contract_id)

    def list_principal_allocations(self, contract_id: str) -> Tuple[PrincipalAllocation, ...]:
        return self.snapshot().list_principal_allocations(contract_id)

    def list_retractions(self, contract_id: str) -> Tuple[Retraction, ...]:
        return self.snapshot().list_retractions(contract_id)

    def list_admin_events(self, contract_id: str) -> Tuple[AdminEvent, ...]:
        return self.snapshot().list_admin_events(contract_id)

    def get_party(self, party_id: str) -> Optional[Party]:
        return self.snapshot().get_party(party_id)

    def list_parties(self, party_type: Optional[PartyType] = None) -> Tuple[Party, ...]:
        return self.snapshot().list_parties(party_type)

    def list_contract_parties(
        self,
        contract_id: Optional[str] = None,
        party_id: Optional[str] = None,
    ) -> Tuple[ContractParty, ...]:
        return self.snapshot().list_contract_parties(contract_id, party_id)

    def list_ownerships(
        self,
        company_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Tuple[Ownership, ...]:
        return self.snapshot().list_ownerships(company_id, owner_id)
