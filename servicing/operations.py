"""
operations.py - Recording Operations and Validation Boundary

Every write to the fact store goes through this module. Operations check
their input, append facts (or a retraction, rate adjustment, lifecycle
stamp) to the store, and log what was recorded. The derivation engine
never validates; anything it is given has passed through here.

Business facts (amount, date, reference) live on the fact. Recording facts
(who entered it, when, why) live on the store's log entry. Optional
recording details are passed in a RecordOptions value.

Operations:
    - board_contract / validate_boarding: contract, fees and schedule
    - create_facility: credit line
    - record_payment, record_disbursement, record_refund, record_excess_return
    - receive_deposit, refund_deposit, offset_deposit, transfer_deposit
    - record_principal_allocation
    - mark_disbursed, write_off: lifecycle stamps
    - adjust_rates / adjust_rate: step-up re-pricing of profit_due
    - retract_payment, retract_disbursement, retract_deposit,
      retract_principal_allocation: corrections
    - create_party, add_guarantor / remove_guarantor, add_signatory /
      remove_signatory, record_ownership / remove_ownership: parties
    - preview_payment, quote_settlement: read-side helpers
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import EngineConfig
from .contract import (
    compose_state, compute_waterfall_total, enrich_fees, enrich_installments,
    load_facts, resolve_fee_due_dates,
)
from .core import (
    RATE_ADJUSTMENT_PRECISION, ZERO,
    AllocationType, Contract, ContractNotFound, ContractParty, ContractRole,
    Deposit, DepositSource, DepositType, Disbursement, DisbursementType,
    Facility, FactNotFound, FactView, Fee, Installment, InstallmentNotFound,
    Ownership, Party, PartyView, Payment, PrincipalAllocation, RetractionReason,
    ValidationError, ValidationIssue, fact_id, to_decimal, working_context,
)
from .dates import DateLike, to_date
from .logging import get_logger
from .party import validate_borrower, validate_ownership, validate_party, validate_signatory
from .portfolio import facility_state
from .settlement import SettlementResult, calculate_settlement
from .store import FactStore, LogEntry
from .waterfall import allocate

logger = get_logger(__name__)


# ============================================================================
# OPTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class RecordOptions:
    """
    Optional recording details shared by all operations.

    Attributes:
        author: Who entered the record (audit)
        note: Free-text explanation (audit)
        reference: External reference: bank transfer id, cheque number
        channel: Payment channel, e.g. "bank-transfer"
        source_contract_id: Contract funding this payment (refinancing)
        iban: Destination IBAN for disbursements
        bank: Destination bank for disbursements
        deposit_source: Where a received deposit came from
        fee_id: Fee settled by a fee-settlement principal allocation
    """
    author: str = "system"
    note: Optional[str] = None
    reference: Optional[str] = None
    channel: Optional[str] = None
    source_contract_id: Optional[str] = None
    iban: Optional[str] = None
    bank: Optional[str] = None
    deposit_source: Optional[DepositSource] = None
    fee_id: Optional[str] = None


DEFAULT_OPTIONS = RecordOptions()


@dataclass(frozen=True, slots=True)
class RateAdjustment:
    """Re-price installments from_seq..to_seq (inclusive) at an annual rate."""
    from_seq: int
    to_seq: int
    rate: Decimal


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def _reject(message: str, field: str, code: str) -> ValidationError:
    logger.warning("Rejected: %s (%s: %s)", message, field, code)
    return ValidationError(message, field=field, code=code)


def _positive_amount(amount, field: str = "amount") -> Decimal:
    value = to_decimal(amount)
    if value <= ZERO:
        raise _reject(f"{field} must be positive, got {value}", field, "non-positive-amount")
    return value


def _require_contract(store: FactStore, contract_id: str) -> Contract:
    contract = store.get_live(contract_id)
    if not isinstance(contract, Contract):
        logger.warning("Rejected: contract not found: %s", contract_id)
        raise ContractNotFound(contract_id)
    return contract


def _raise_issues(issues: List[ValidationIssue], what: str) -> None:
    """Raise ValidationError carrying every issue; the first names field and code."""
    if issues:
        first = issues[0]
        logger.warning("%s rejected: %d issue(s)", what, len(issues))
        raise ValidationError(first.message, field=first.field, code=first.code,
                              issues=tuple(issues))


def _waterfall_funds(store: FactStore, contract_id: str, without: Optional[str] = None) -> Decimal:
    """Live waterfall total for a contract, leaving out the fact with id without."""
    def live(facts):
        return [f for f in facts if fact_id(f) != without]

    return compute_waterfall_total(
        live(store.list_payments(contract_id)),
        live(store.list_disbursements(contract_id)),
        live(store.list_deposits(contract_id)),
        live(store.list_principal_allocations(contract_id)),
    )


def validate_boarding(
    contract: Contract,
    fees: Sequence[Fee],
    installments: Sequence[Installment],
    view: Optional[FactView] = None,
) -> List[ValidationIssue]:
    """
    Check a contract, its fees and schedule before boarding.

    Checks:
    1. Principal is positive
    2. Every installment belongs to the contract and has remaining_principal
    3. Installment principals sum to the contract principal
    4. Sequences are unique and contiguous from 1
    5. Due dates do not go backwards in seq order
    6. Fees belong to the contract, have positive amounts and a due date
       or days_after_disbursement
    7. With a view: contract id and external id unused, facility exists and
       has capacity for the principal, borrower (when named) is a known
       company

    Returns:
        Every issue found; empty when the input can be boarded
    """
    issues: List[ValidationIssue] = []

    def add(field: str, code: str, message: str) -> None:
        issues.append(ValidationIssue(field, code, message))

    if contract.principal <= ZERO:
        add("principal", "non-positive-amount", "Principal must be positive")

    for inst in installments:
        if inst.contract_id != contract.contract_id:
            add("installment.contract_id", "wrong-contract",
                f"Installment {inst.seq} belongs to {inst.contract_id}")
        if inst.remaining_principal is None:
            add("installment.remaining_principal", "missing-remaining-principal",
                f"Installment {inst.seq} missing remaining_principal")
        if inst.principal_due < ZERO or inst.profit_due < ZERO:
            add("installment.amount", "negative-amount",
                f"Installment {inst.seq} has a negative amount")

    if installments:
        principal_sum = sum((i.principal_due for i in installments), ZERO)
        if principal_sum != contract.principal:
            add("installment.principal_due", "principal-mismatch",
                f"Installment principals sum to {principal_sum} "
                f"but contract principal is {contract.principal}")

        seqs = sorted(i.seq for i in installments)
        if seqs != list(range(1, len(installments) + 1)):
            add("installment.seq", "non-contiguous-seq",
                f"Sequences must be contiguous from 1. Got: {seqs}")

        due_dates = [i.due_date for i in sorted(installments, key=lambda i: i.seq)]
        if any(later < earlier for earlier, later in zip(due_dates, due_dates[1:])):
            add("installment.due_date", "unordered-due-dates",
                "Due dates must be chronologically ordered")

    for index, fee in enumerate(fees, start=1):
        if fee.contract_id != contract.contract_id:
            add("fee.contract_id", "wrong-contract", f"Fee {index} belongs to {fee.contract_id}")
        if fee.amount <= ZERO:
            add("fee.amount", "non-positive-amount", f"Fee {index} amount must be positive")
        if fee.due_date is None and fee.days_after_disbursement is None:
            add("fee.days_after_disbursement", "missing-due-date",
                f"Fee {index} needs a due date or days_after_disbursement")
        if fee.days_after_disbursement is not None and fee.days_after_disbursement < 0:
            add("fee.days_after_disbursement", "negative-offset",
                f"Fee {index} days_after_disbursement must not be negative")

    if view is not None:
        if view.get_contract(contract.contract_id) is not None:
            add("contract_id", "duplicate-id", f"Contract {contract.contract_id} already exists")
        if contract.external_id is not None and any(
            c.external_id == contract.external_id for c in view.list_contracts()
        ):
            add("external_id", "duplicate-external-id",
                f"External ID '{contract.external_id}' already exists")
        if contract.facility_id is not None:
            if view.get_facility(contract.facility_id) is None:
                add("facility_id", "unknown-facility", f"Facility {contract.facility_id} not found")
            else:
                capacity = facility_state(view, contract.facility_id, contract.start_date)
                if contract.principal > capacity.available:
                    add("facility_id", "facility-capacity-exceeded",
                        f"Facility capacity exceeded. Available: {capacity.available}, "
                        f"requested: {contract.principal}")
        if contract.borrower_id is not None and isinstance(view, PartyView):
            issues.extend(validate_borrower(view, contract.borrower_id))

    return issues


# ============================================================================
# BOARDING
# ============================================================================

def create_facility(
    store: FactStore,
    facility: Facility,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> Facility:
    if facility.limit <= ZERO:
        raise _reject("Facility limit must be positive", "limit", "non-positive-limit")
    store.record([facility], options.author,
                 note=options.note or f"Facility created: {facility.external_id}")
    logger.info("Created facility %s with limit %s", facility.facility_id, facility.limit)
    return facility


def board_contract(
    store: FactStore,
    contract: Contract,
    fees: Sequence[Fee],
    installments: Sequence[Installment],
    options: RecordOptions = DEFAULT_OPTIONS,
) -> LogEntry:
    """
    Record a contract with its fees and schedule as one boarding event.

    Lifecycle stamps are not accepted here; disbursement and write-off are
    recorded later with mark_disbursed() and write_off().

    Raises:
        ValidationError: validate_boarding() found problems; issues holds all
    """
    issues = validate_boarding(contract, fees, installments, store.snapshot())
    if contract.disbursed_at is not None or contract.written_off_at is not None:
        issues.append(ValidationIssue("lifecycle", "lifecycle-at-boarding",
                                      "Lifecycle timestamps are recorded separately"))
    _raise_issues(issues, f"Boarding of {contract.contract_id}")

    entry = store.record([contract, *fees, *installments], options.author,
                         contract_id=contract.contract_id, kind="boarding", note=options.note)
    logger.info("Boarded contract %s: principal %s, %d fees, %d installments",
                contract.contract_id, contract.principal, len(fees), len(installments))
    return entry


# ============================================================================
# MONEY MOVEMENTS
# ============================================================================

def record_payment(
    store: FactStore,
    contract_id: str,
    amount,
    on: DateLike,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> Payment:
    """
    Record money received. It flows through the waterfall on the next
    composition.

    on is the business date the money arrived; the store stamps the
    recording time separately.
    """
    value = _positive_amount(amount)
    _require_contract(store, contract_id)
    if options.source_contract_id is not None:
        _require_contract(store, options.source_contract_id)
    payment = Payment(
        payment_id=store.next_id("pay"),
        contract_id=contract_id,
        amount=value,
        date=to_date(on),
        reference=options.reference,
        channel=options.channel,
        source_contract_id=options.source_contract_id,
    )
    store.record([payment], options.author, contract_id=contract_id, note=options.note)
    logger.info("Recorded payment %s on %s: %s", payment.payment_id, contract_id, value)
    return payment


def _record_disbursement(
    store: FactStore,
    contract_id: str,
    disbursement_type: DisbursementType,
    amount,
    on: DateLike,
    options: RecordOptions,
) -> Disbursement:
    value = _positive_amount(amount)
    _require_contract(store, contract_id)
    disbursement = Disbursement(
        disbursement_id=store.next_id("dsb"),
        contract_id=contract_id,
        disbursement_type=disbursement_type,
        amount=value,
        date=to_date(on),
        reference=options.reference,
        iban=options.iban,
        bank=options.bank,
    )
    store.record([disbursement], options.author, contract_id=contract_id, note=options.note)
    logger.info("Recorded %s disbursement %s on %s: %s", disbursement_type.value,
                disbursement.disbursement_id, contract_id, value)
    return disbursement


def record_disbursement(store: FactStore, contract_id: str, amount, on: DateLike,
                        options: RecordOptions = DEFAULT_OPTIONS) -> Disbursement:
    """Funding sent to the customer. Does not touch the waterfall."""
    return _record_disbursement(store, contract_id, DisbursementType.FUNDING, amount, on, options)


def record_refund(store: FactStore, contract_id: str, amount, on: DateLike,
                  options: RecordOptions = DEFAULT_OPTIONS) -> Disbursement:
    """
    Money returned to the customer. Reduces waterfall funds.

    Not a correction: a mistaken payment is retracted, not refunded.

    Raises:
        ValidationError: The refund is larger than the contract's waterfall
            funds (code refund-exceeds-funds)
    """
    value = _positive_amount(amount)
    _require_contract(store, contract_id)
    funds = _waterfall_funds(store, contract_id)
    if value > funds:
        raise _reject(f"Refund {value} exceeds waterfall funds {funds} on {contract_id}",
                      "amount", "refund-exceeds-funds")
    return _record_disbursement(store, contract_id, DisbursementType.REFUND, value, on, options)


def record_excess_return(store: FactStore, contract_id: str, amount, on: DateLike,
                         options: RecordOptions = DEFAULT_OPTIONS) -> Disbursement:
    """Unused principal returned at origination. Outside the waterfall."""
    return _record_disbursement(store, contract_id, DisbursementType.EXCESS_RETURN,
                                amount, on, options)


def _record_deposit(
    store: FactStore,
    contract_id: str,
    deposit_type: DepositType,
    amount,
    on: DateLike,
    options: RecordOptions,
    target_contract_id: Optional[str] = None,
    source: Optional[DepositSource] = None,
) -> Deposit:
    value = _positive_amount(amount)
    _require_contract(store, contract_id)
    deposit = Deposit(
        deposit_id=store.next_id("dep"),
        contract_id=contract_id,
        deposit_type=deposit_type,
        amount=value,
        date=to_date(on),
        target_contract_id=target_contract_id,
        source=source,
        reference=options.reference,
    )
    store.record([deposit], options.author, contract_id=contract_id, note=options.note)
    logger.info("Recorded deposit %s %s on %s: %s", deposit_type.value,
                deposit.deposit_id, contract_id, value)
    return deposit


def receive_deposit(store: FactStore, contract_id: str, amount, on: DateLike,
                    options: RecordOptions = DEFAULT_OPTIONS) -> Deposit:
    """Collateral received, from funding or from the customer."""
    return _record_deposit(store, contract_id, DepositType.RECEIVED, amount, on, options,
                           source=options.deposit_source or DepositSource.CUSTOMER)


def refund_deposit(store: FactStore, contract_id: str, amount, on: DateLike,
                   options: RecordOptions = DEFAULT_OPTIONS) -> Deposit:
    """Collateral returned to the customer."""
    return _record_deposit(store, contract_id, DepositType.REFUND, amount, on, options)


def offset_deposit(store: FactStore, contract_id: str, amount, on: DateLike,
                   options: RecordOptions = DEFAULT_OPTIONS) -> Deposit:
    """
    Apply collateral to the outstanding balance.

    Reduces deposit held AND flows through the waterfall like a payment.
    """
    return _record_deposit(store, contract_id, DepositType.OFFSET, amount, on, options)


def transfer_deposit(
    store: FactStore,
    source_contract_id: str,
    target_contract_id: str,
    amount,
    on: DateLike,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> Deposit:
    """Move collateral from one contract to another (e.g. on refinancing)."""
    if source_contract_id == target_contract_id:
        raise _reject("Deposit transfer needs two different contracts",
                      "target_contract_id", "same-contract")
    _require_contract(store, target_contract_id)
    return _record_deposit(store, source_contract_id, DepositType.TRANSFER, amount, on,
                           options, target_contract_id=target_contract_id)


def record_principal_allocation(
    store: FactStore,
    contract_id: str,
    allocation_type: AllocationType,
    amount,
    on: DateLike,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> PrincipalAllocation:
    """
    Divert principal at origination to settle a fee, prepay an installment,
    or fund the security deposit.
    """
    value = _positive_amount(amount)
    _require_contract(store, contract_id)
    allocation_type = AllocationType(allocation_type)
    if options.fee_id is not None:
        fee = store.get_live(options.fee_id)
        if not isinstance(fee, Fee) or fee.contract_id != contract_id:
            raise _reject(f"Fee {options.fee_id} not found on {contract_id}",
                          "fee_id", "unknown-fee")
    allocation = PrincipalAllocation(
        allocation_id=store.next_id("pal"),
        contract_id=contract_id,
        allocation_type=allocation_type,
        amount=value,
        date=to_date(on),
        reference=options.reference,
        fee_id=options.fee_id,
    )
    store.record([allocation], options.author, contract_id=contract_id, note=options.note)
    logger.info("Recorded %s principal allocation %s on %s: %s", allocation_type.value,
                allocation.allocation_id, contract_id, value)
    return allocation


# ============================================================================
# LIFECYCLE
# ============================================================================

def mark_disbursed(store: FactStore, contract_id: str, at: datetime,
                   options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    """Stamp the disbursement time. Fee offsets are counted from it."""
    contract = _require_contract(store, contract_id)
    if contract.disbursed_at is not None:
        raise _reject(f"Contract {contract_id} is already disbursed",
                      "disbursed_at", "already-disbursed")
    entry = store.stamp(contract_id, "disbursed_at", at, options.author, "disbursed", options.note)
    logger.info("Contract %s disbursed at %s", contract_id, at)
    return entry


def write_off(store: FactStore, contract_id: str, at: datetime,
              options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    contract = _require_contract(store, contract_id)
    if contract.written_off_at is not None:
        raise _reject(f"Contract {contract_id} is already written off",
                      "written_off_at", "already-written-off")
    entry = store.stamp(contract_id, "written_off_at", at, options.author, "written-off",
                        options.note)
    logger.info("Contract %s written off at %s", contract_id, at)
    return entry


# ============================================================================
# RATE ADJUSTMENT
# ============================================================================

def calculate_profit(principal_due: Decimal, annual_rate: Decimal, months: int = 1) -> Decimal:
    """
    Profit for one installment: principal_due * rate * months / 12.

    Evaluated at 10 significant digits, half-up.
    """
    with localcontext(working_context(RATE_ADJUSTMENT_PRECISION)):
        return principal_due * annual_rate * months / 12


def adjust_rates(
    store: FactStore,
    contract_id: str,
    adjustments: Iterable[RateAdjustment],
    options: RecordOptions = DEFAULT_OPTIONS,
) -> LogEntry:
    """
    Re-price installments for a step-up review as ONE recorded event.

    If an installment was already paid at the old profit, the waterfall
    moves the difference on to the next obligation at the next composition.

    Raises:
        InstallmentNotFound: No installment falls in any of the ranges
        ValidationError: A range is inverted or a rate is negative
    """
    _require_contract(store, contract_id)
    adjustments = list(adjustments)
    installments = store.list_installments(contract_id)

    changes: List[Tuple[str, Decimal]] = []
    for adj in adjustments:
        rate = to_decimal(adj.rate)
        if adj.from_seq > adj.to_seq:
            raise _reject(f"Inverted range {adj.from_seq}..{adj.to_seq}", "from_seq",
                          "inverted-range")
        if rate < ZERO:
            raise _reject(f"Rate must not be negative: {rate}", "rate", "negative-rate")
        for inst in installments:
            if adj.from_seq <= inst.seq <= adj.to_seq:
                changes.append((inst.installment_id, calculate_profit(inst.principal_due, rate)))

    if not changes:
        logger.warning("Rate adjustment on %s matched no installments", contract_id)
        raise InstallmentNotFound(
            f"No installments matched the adjustment ranges on {contract_id}"
        )

    entry = store.adjust_profit(contract_id, changes, options.author, options.note)
    logger.info("Adjusted profit on %d installment(s) of %s", len(changes), contract_id)
    return entry


def adjust_rate(
    store: FactStore,
    contract_id: str,
    from_seq: int,
    to_seq: int,
    rate,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> LogEntry:
    """Single-range adjust_rates()."""
    return adjust_rates(store, contract_id, [RateAdjustment(from_seq, to_seq, to_decimal(rate))],
                        options)


# ============================================================================
# RETRACTIONS
# ============================================================================

def _retract(
    store: FactStore,
    fact_type: type,
    target_id: str,
    reason: RetractionReason,
    options: RecordOptions,
) -> LogEntry:
    fact = store.get_live(target_id)
    if not isinstance(fact, fact_type):
        logger.warning("Rejected retraction: no live %s %s", fact_type.__name__, target_id)
        raise FactNotFound(target_id)
    try:
        reason = RetractionReason(reason)
    except ValueError:
        raise _reject(f"Unknown retraction reason: {reason!r}", "reason",
                      "unknown-reason") from None
    funds = _waterfall_funds(store, fact.contract_id, without=target_id)
    if funds < ZERO:
        raise _reject(f"Retracting {target_id} would leave {fact.contract_id} with "
                      f"negative waterfall funds: {funds}",
                      "fact_id", "retraction-leaves-negative-funds")
    return store.retract(target_id, reason, options.author, options.note)


def retract_payment(store: FactStore, payment_id: str, reason: RetractionReason,
                    options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    """
    Withdraw a payment recorded in error (typo, wrong contract, duplicate).

    For real money going back to the customer use record_refund().
    """
    return _retract(store, Payment, payment_id, reason, options)


def retract_disbursement(store: FactStore, disbursement_id: str, reason: RetractionReason,
                         options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    return _retract(store, Disbursement, disbursement_id, reason, options)


def retract_deposit(store: FactStore, deposit_id: str, reason: RetractionReason,
                    options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    return _retract(store, Deposit, deposit_id, reason, options)


def retract_principal_allocation(store: FactStore, allocation_id: str, reason: RetractionReason,
                                 options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    return _retract(store, PrincipalAllocation, allocation_id, reason, options)


# ============================================================================
# PARTIES
# ============================================================================

def create_party(
    store: FactStore,
    party: Party,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> Party:
    """
    Record a company or person.

    Raises:
        ValidationError: validate_party() found problems; issues holds all
    """
    _raise_issues(validate_party(party, store.snapshot()), f"Party {party.party_id}")
    store.record([party], options.author,
                 note=options.note or f"Party created: {party.legal_name}")
    logger.info("Created %s party %s", party.party_type.value, party.party_id)
    return party


def _add_contract_party(
    store: FactStore,
    contract_id: str,
    party_id: str,
    role: ContractRole,
    issues: List[ValidationIssue],
    options: RecordOptions,
) -> ContractParty:
    _require_contract(store, contract_id)
    if any(link.role is role for link in
           store.list_contract_parties(contract_id=contract_id, party_id=party_id)):
        issues.append(ValidationIssue("party_id", "duplicate-role",
                                      f"Party {party_id} is already {role.value} on {contract_id}"))
    _raise_issues(issues, f"Adding {role.value} {party_id} to {contract_id}")

    link = ContractParty(store.next_id("cpt"), contract_id, party_id, role)
    store.record([link], options.author, contract_id=contract_id,
                 kind=f"add-{role.value}", note=options.note)
    logger.info("Added %s %s to %s", role.value, party_id, contract_id)
    return link


def _release_contract_party(
    store: FactStore,
    contract_id: str,
    party_id: str,
    role: ContractRole,
    options: RecordOptions,
) -> LogEntry:
    links = [link for link in store.list_contract_parties(contract_id=contract_id,
                                                         party_id=party_id)
             if link.role is role]
    if not links:
        logger.warning("Rejected release: %s is not %s on %s", party_id, role.value, contract_id)
        raise FactNotFound(party_id)
    entry = store.retract(links[0].link_id, RetractionReason.RELEASE, options.author,
                          options.note)
    logger.info("Released %s %s from %s", role.value, party_id, contract_id)
    return entry


def add_guarantor(store: FactStore, contract_id: str, party_id: str,
                  options: RecordOptions = DEFAULT_OPTIONS) -> ContractParty:
    """Guarantors may be companies or persons."""
    issues: List[ValidationIssue] = []
    if store.get_party(party_id) is None:
        issues.append(ValidationIssue("party_id", "unknown-party", f"Party not found: {party_id}"))
    return _add_contract_party(store, contract_id, party_id, ContractRole.GUARANTOR, issues,
                               options)


def remove_guarantor(store: FactStore, contract_id: str, party_id: str,
                     options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    return _release_contract_party(store, contract_id, party_id, ContractRole.GUARANTOR,
                                   options)


def add_signatory(store: FactStore, contract_id: str, party_id: str,
                  options: RecordOptions = DEFAULT_OPTIONS) -> ContractParty:
    """Authorized signatories must be persons."""
    return _add_contract_party(store, contract_id, party_id, ContractRole.AUTHORIZED_SIGNATORY,
                               validate_signatory(store, party_id), options)


def remove_signatory(store: FactStore, contract_id: str, party_id: str,
                     options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    return _release_contract_party(store, contract_id, party_id,
                                   ContractRole.AUTHORIZED_SIGNATORY, options)


def record_ownership(
    store: FactStore,
    owner_id: str,
    company_id: str,
    percentage,
    options: RecordOptions = DEFAULT_OPTIONS,
) -> Ownership:
    """
    Record that owner_id holds percentage of company_id.

    Raises:
        ValidationError: validate_ownership() found problems; issues holds all
    """
    value = to_decimal(percentage)
    _raise_issues(validate_ownership(store, owner_id, company_id, value),
                  f"Ownership of {company_id}")
    ownership = Ownership(store.next_id("own"), owner_id, company_id, value)
    store.record([ownership], options.author,
                 note=options.note or f"Ownership recorded: {value}% of {company_id}")
    logger.info("Recorded ownership %s: %s holds %s%% of %s", ownership.ownership_id,
                owner_id, value, company_id)
    return ownership


def remove_ownership(store: FactStore, ownership_id: str,
                     reason: RetractionReason = RetractionReason.CORRECTION,
                     options: RecordOptions = DEFAULT_OPTIONS) -> LogEntry:
    if not isinstance(store.get_live(ownership_id), Ownership):
        logger.warning("Rejected retraction: no live Ownership %s", ownership_id)
        raise FactNotFound(ownership_id)
    return store.retract(ownership_id, RetractionReason(reason), options.author, options.note)


# ============================================================================
# READ-SIDE HELPERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PreviewChange:
    """What a previewed payment would apply to one obligation."""
    kind: str
    fact_id: str
    amount: Decimal
    seq: Optional[int] = None
    profit_applied: Decimal = ZERO
    principal_applied: Decimal = ZERO
    description: str = ""


@dataclass(frozen=True, slots=True)
class PaymentPreview:
    amount: Decimal
    before_outstanding: Decimal
    before_credit_balance: Decimal
    after_outstanding: Decimal
    after_credit_balance: Decimal
    changes: Tuple[PreviewChange, ...]


def preview_payment(
    view: FactView,
    contract_id: str,
    amount,
    as_of: DateLike,
) -> PaymentPreview:
    """
    Show how a payment would be allocated, without recording it.

    Runs the waterfall twice over the same facts, before and after adding
    amount, and diffs the allocations.
    """
    value = _positive_amount(amount)
    facts = load_facts(view, contract_id)
    fees = resolve_fee_due_dates(facts.fees, facts.contract.disbursed_at, as_of)
    total = compute_waterfall_total(facts.payments, facts.disbursements, facts.deposits,
                                    facts.principal_allocations)

    before = allocate(fees, facts.installments, total)
    after = allocate(fees, facts.installments, total + value)
    fees_before, fees_after = enrich_fees(fees, before), enrich_fees(fees, after)
    insts_before = enrich_installments(facts.installments, before, {}, as_of)
    insts_after = enrich_installments(facts.installments, after, {}, as_of)

    changes: List[PreviewChange] = []
    for fb, fa in zip(fees_before, fees_after):
        if fa.paid != fb.paid:
            label = "PAID" if fa.outstanding == ZERO else "partial"
            changes.append(PreviewChange("fee", fa.fee_id, fa.paid - fb.paid,
                                         description=f"{fa.fee_type.value} fee - {label}"))
    for ib, ia in zip(insts_before, insts_after):
        profit = ia.profit_paid - ib.profit_paid
        principal = ia.principal_paid - ib.principal_paid
        if profit > ZERO or principal > ZERO:
            parts = [f"Installment #{ia.seq}"]
            if profit > ZERO:
                parts.append(f"Profit: {profit:.2f}")
            if principal > ZERO:
                parts.append(f"Principal: {principal:.2f}")
            changes.append(PreviewChange("installment", ia.installment_id, profit + principal,
                                         ia.seq, profit, principal, " - ".join(parts)))

    def outstanding(fee_states, inst_states) -> Decimal:
        return (sum((f.outstanding for f in fee_states), ZERO)
                + sum((i.outstanding for i in inst_states), ZERO))

    return PaymentPreview(
        amount=value,
        before_outstanding=outstanding(fees_before, insts_before),
        before_credit_balance=before.credit_balance,
        after_outstanding=outstanding(fees_after, insts_after),
        after_credit_balance=after.credit_balance,
        changes=tuple(changes),
    )


def quote_settlement(
    view: FactView,
    contract_id: str,
    settlement_date: DateLike,
    penalty_days: int,
    manual_override=None,
    config: Optional[EngineConfig] = None,
) -> SettlementResult:
    """
    Validate a settlement request, compose state as of the settlement date,
    and calculate.

    Raises:
        ValidationError: penalty_days is negative or the override is negative
        ContractNotFound: No such contract
    """
    if penalty_days < 0:
        raise _reject(f"penalty_days must not be negative, got {penalty_days}",
                      "penalty_days", "negative-penalty-days")
    override = to_decimal(manual_override) if manual_override is not None else None
    if override is not None and override < ZERO:
        raise _reject("manual_override must not be negative", "manual_override",
                      "negative-override")
    state = compose_state(view, contract_id, settlement_date)
    return calculate_settlement(state, settlement_date, penalty_days, override, config)
