"""
contract.py - Point-in-Time Contract State Composition

Turns a contract's raw facts into a complete snapshot: paid amounts,
outstanding balances, statuses, credit balance, deposit held, maturity.
Nothing here is stored; every figure is recomputed from facts on demand.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. ADAPTER (load_facts):
   - Reads every fact collection for one contract from ONE FactView
   - The ONLY place that touches the view during composition

2. PURE CALCULATION FUNCTIONS:
   - resolve_fee_due_dates, compute_waterfall_total, compute_thresholds,
     find_paid_dates, enrich_fees, enrich_installments, compute_totals,
     compute_deposit_held, derive_maturity_date, derive_contract_status,
     funding_breakdown
   - Take all inputs explicitly; no view, no clock

3. COMPOSITION (compose_from_facts, compose_state):
   - compose_state(view, contract_id, as_of) = load_facts + compose_from_facts

Key Formulas:
    waterfall_total = payments - refund disbursements + deposit offsets
                      + non-deposit principal allocations
    deposit_held    = received - (refund + offset) + transfers in
    days_delinquent = days_between(due_date, paid_date or as_of)

Money sources feeding the waterfall:
    payments (+), refund disbursements (-), deposit offsets (+),
    fee-settlement and installment-prepayment principal allocations (+).
Funding and excess-return disbursements never touch the waterfall.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .core import (
    ZERO,
    AdminEvent, Contract, ContractNotFound, ContractStatus,
    Deposit, DepositSource, DepositType, Disbursement, DisbursementType, Fee,
    FactView, FeeStatus, FeeType, HistoryView, Installment, InstallmentStatus,
    Payment, PrincipalAllocation, Retraction,
)
from .dates import DateLike, add_days, days_between, is_after, latest, to_date
from .logging import get_logger
from .waterfall import (
    WaterfallResult, allocate, allocation_for_fee, allocation_for_installment,
    waterfall_order,
)

logger = get_logger(__name__)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class ContractFacts:
    """Every fact of one contract, read from a single snapshot."""
    contract: Contract
    fees: Tuple[Fee, ...]
    installments: Tuple[Installment, ...]
    payments: Tuple[Payment, ...]
    disbursements: Tuple[Disbursement, ...]
    deposits: Tuple[Deposit, ...]
    principal_allocations: Tuple[PrincipalAllocation, ...]


@dataclass(frozen=True, slots=True)
class FeeState:
    """A fee with its resolved due date and what the waterfall paid it."""
    fee_id: str
    fee_type: FeeType
    amount: Decimal
    due_date: date
    paid: Decimal
    outstanding: Decimal
    status: FeeStatus


@dataclass(frozen=True, slots=True)
class InstallmentState:
    """An installment with the waterfall's allocation and derived status."""
    installment_id: str
    seq: int
    due_date: date
    principal_due: Decimal
    profit_due: Decimal
    remaining_principal: Optional[Decimal]
    profit_paid: Decimal
    principal_paid: Decimal
    total_paid: Decimal
    outstanding: Decimal
    status: InstallmentStatus
    paid_date: Optional[date]
    days_delinquent: int

    @property
    def total_due(self) -> Decimal:
        return self.principal_due + self.profit_due


@dataclass(frozen=True, slots=True)
class ContractTotals:
    total_fees_due: Decimal
    total_fees_paid: Decimal
    total_principal_due: Decimal
    total_principal_paid: Decimal
    total_profit_due: Decimal
    total_profit_paid: Decimal
    total_outstanding: Decimal


@dataclass(frozen=True, slots=True)
class ContractState:
    """
    The full derived snapshot of one contract as of a date.

    Plain value structure: fees and installments in the order the fact view
    returned them, totals, and contract-level derivations.
    """
    contract: Contract
    as_of: date
    fees: Tuple[FeeState, ...]
    installments: Tuple[InstallmentState, ...]
    totals: ContractTotals
    waterfall_total: Decimal
    credit_balance: Decimal
    deposit_held: Decimal
    maturity_date: Optional[date]
    status: ContractStatus


@dataclass(frozen=True, slots=True)
class FundingBreakdown:
    """Where the gross principal went at origination, plus a balance check."""
    principal: Decimal
    fee_deductions: Decimal
    deposit_from_funding: Decimal
    merchant_disbursement: Decimal
    excess_returned: Decimal
    total_allocated: Decimal
    balanced: bool


@dataclass(frozen=True, slots=True)
class WaterfallDelta:
    """One signed change to the money available to the waterfall."""
    date: date
    amount: Decimal


# ============================================================================
# ADAPTER - the only reader of the fact view
# ============================================================================

def load_facts(view: FactView, contract_id: str) -> ContractFacts:
    """
    Load every fact collection for a contract from one view.

    Raises:
        ContractNotFound: The view has no such contract
    """
    contract = view.get_contract(contract_id)
    if contract is None:
        raise ContractNotFound(contract_id)
    return ContractFacts(
        contract=contract,
        fees=tuple(view.list_fees(contract_id)),
        installments=tuple(view.list_installments(contract_id)),
        payments=tuple(view.list_payments(contract_id)),
        disbursements=tuple(view.list_disbursements(contract_id)),
        deposits=tuple(view.list_deposits(contract_id)),
        principal_allocations=tuple(view.list_principal_allocations(contract_id)),
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def resolve_fee_due_dates(
    fees: Iterable[Fee],
    disbursed_at: Optional[DateLike],
    today: DateLike,
) -> Tuple[Fee, ...]:
    """
    Give every fee an effective due date.

    A stored due date wins. Otherwise the due date is the disbursement date
    (or today, while the contract is undisbursed) plus
    days_after_disbursement. A fee with neither is returned unchanged and
    rejected later by allocate().
    """
    anchor = to_date(disbursed_at) if disbursed_at is not None else to_date(today)
    resolved = []
    for fee in fees:
        if fee.due_date is None and fee.days_after_disbursement is not None:
            fee = replace(fee, due_date=add_days(anchor, fee.days_after_disbursement))
        resolved.append(fee)
    return tuple(resolved)


def compute_waterfall_total(
    payments: Iterable[Payment],
    disbursements: Iterable[Disbursement],
    deposits: Iterable[Deposit],
    principal_allocations: Iterable[PrincipalAllocation],
) -> Decimal:
    """
    Total money flowing through the waterfall.

    All stored amounts are positive; direction comes from the fact type.
    """
    paid_in = sum((p.amount for p in payments), ZERO)
    refunded = sum((d.amount for d in disbursements
                    if d.disbursement_type is DisbursementType.REFUND), ZERO)
    offsets = sum((d.amount for d in deposits
                   if d.deposit_type is DepositType.OFFSET), ZERO)
    allocated = sum((a.amount for a in principal_allocations if a.feeds_waterfall), ZERO)
    return paid_in - refunded + offsets + allocated


def compute_thresholds(
    fees: Sequence[Fee],
    installments: Sequence[Installment],
) -> Dict[str, Decimal]:
    """
    Cumulative money needed to fully pay each installment.

    Walks fees and installments in waterfall order, so a fee due before an
    installment raises that installment's threshold. Insertion order of the
    returned dict is waterfall order.

    Example:
        fee 5,000 (Jan 1), inst1 110,000 (Feb 1), inst2 110,000 (Mar 1)
        => {inst1: 115,000, inst2: 225,000}
    """
    thresholds: Dict[str, Decimal] = {}
    cumulative = ZERO
    for item in waterfall_order(fees, installments):
        match item:
            case Fee():
                cumulative += item.amount
            case Installment():
                cumulative += item.total_due
                thresholds[item.installment_id] = cumulative
    return thresholds


def waterfall_deltas(
    payments: Iterable[Payment],
    disbursements: Iterable[Disbursement],
    deposits: Iterable[Deposit],
    principal_allocations: Iterable[PrincipalAllocation],
) -> List[WaterfallDelta]:
    """
    Signed waterfall movements in business-date order.

    Movements on the same date keep this order: payments, refunds, deposit
    offsets, principal allocations (each in fact-view order).
    """
    deltas: List[WaterfallDelta] = [WaterfallDelta(p.date, p.amount) for p in payments]
    deltas.extend(WaterfallDelta(d.date, -d.amount) for d in disbursements
                  if d.disbursement_type is DisbursementType.REFUND)
    deltas.extend(WaterfallDelta(d.date, d.amount) for d in deposits
                  if d.deposit_type is DepositType.OFFSET)
    deltas.extend(WaterfallDelta(a.date, a.amount) for a in principal_allocations
                  if a.feeds_waterfall)
    return sorted(deltas, key=lambda delta: delta.date)


def find_paid_dates(
    fees: Sequence[Fee],
    installments: Sequence[Installment],
    payments: Iterable[Payment],
    disbursements: Iterable[Disbursement],
    deposits: Iterable[Deposit],
    principal_allocations: Iterable[PrincipalAllocation],
) -> Dict[str, date]:
    """
    Replay waterfall movements to find when each installment became paid.

    The running total is compared against precomputed thresholds after every
    movement. Only a positive movement may set a paid date; any movement that
    leaves the total below a crossed threshold clears that paid date.

    Returns:
        {installment_id: paid_date} for installments fully paid after the
        last movement
    """
    thresholds = compute_thresholds(fees, installments)
    paid_dates: Dict[str, date] = {}
    running = ZERO

    for delta in waterfall_deltas(payments, disbursements, deposits, principal_allocations):
        running += delta.amount
        for installment_id, threshold in thresholds.items():
            if running >= threshold:
                if delta.amount > ZERO and installment_id not in paid_dates:
                    paid_dates[installment_id] = delta.date
            else:
                paid_dates.pop(installment_id, None)

    return paid_dates


def derive_installment_status(
    total_paid: Decimal,
    total_due: Decimal,
    due_date: DateLike,
    as_of: DateLike,
) -> InstallmentStatus:
    """
    Interpret payment facts as a status.

    PAID: paid >= due. PARTIAL: 0 < paid < due. OVERDUE: nothing paid and
    as_of is past the due date. SCHEDULED otherwise.
    """
    if total_paid >= total_due:
        return InstallmentStatus.PAID
    if total_paid > ZERO:
        return InstallmentStatus.PARTIAL
    if is_after(as_of, due_date):
        return InstallmentStatus.OVERDUE
    return InstallmentStatus.SCHEDULED


def enrich_fees(fees: Iterable[Fee], result: WaterfallResult) -> Tuple[FeeState, ...]:
    enriched = []
    for fee in fees:
        allocation = allocation_for_fee(result, fee.fee_id)
        paid = allocation.amount if allocation is not None else ZERO
        enriched.append(FeeState(
            fee_id=fee.fee_id,
            fee_type=fee.fee_type,
            amount=fee.amount,
            due_date=fee.due_date,
            paid=paid,
            outstanding=fee.amount - paid,
            status=FeeStatus.PAID if paid >= fee.amount else FeeStatus.UNPAID,
        ))
    return tuple(enriched)


def enrich_installments(
    installments: Iterable[Installment],
    result: WaterfallResult,
    paid_dates: Dict[str, date],
    as_of: DateLike,
) -> Tuple[InstallmentState, ...]:
    enriched = []
    for inst in installments:
        allocation = allocation_for_installment(result, inst.installment_id)
        profit_paid = allocation.profit_paid if allocation is not None else ZERO
        principal_paid = allocation.principal_paid if allocation is not None else ZERO
        total_paid = profit_paid + principal_paid
        paid_date = paid_dates.get(inst.installment_id)
        enriched.append(InstallmentState(
            installment_id=inst.installment_id,
            seq=inst.seq,
            due_date=inst.due_date,
            principal_due=inst.principal_due,
            profit_due=inst.profit_due,
            remaining_principal=inst.remaining_principal,
            profit_paid=profit_paid,
            principal_paid=principal_paid,
            total_paid=total_paid,
            outstanding=inst.total_due - total_paid,
            status=derive_installment_status(total_paid, inst.total_due, inst.due_date, as_of),
            paid_date=paid_date,
            days_delinquent=days_between(inst.due_date, paid_date or as_of),
        ))
    return tuple(enriched)


def compute_totals(
    fees: Sequence[FeeState],
    installments: Sequence[InstallmentState],
) -> ContractTotals:
    outstanding = (sum((f.outstanding for f in fees), ZERO)
                   + sum((i.outstanding for i in installments), ZERO))
    return ContractTotals(
        total_fees_due=sum((f.amount for f in fees), ZERO),
        total_fees_paid=sum((f.paid for f in fees), ZERO),
        total_principal_due=sum((i.principal_due for i in installments), ZERO),
        total_principal_paid=sum((i.principal_paid for i in installments), ZERO),
        total_profit_due=sum((i.profit_due for i in installments), ZERO),
        total_profit_paid=sum((i.profit_paid for i in installments), ZERO),
        total_outstanding=outstanding,
    )


def compute_deposit_held(deposits: Iterable[Deposit], contract_id: str) -> Decimal:
    """
    Net collateral held: received - (refund + offset) + transfers in.

    deposits may include transfers recorded against other contracts; only
    those whose target is contract_id count, as transfers in. A transfer
    recorded against contract_id itself does not reduce what it holds.
    """
    held = ZERO
    for deposit in deposits:
        match deposit.deposit_type:
            case DepositType.RECEIVED if deposit.contract_id == contract_id:
                held += deposit.amount
            case DepositType.REFUND | DepositType.OFFSET if deposit.contract_id == contract_id:
                held -= deposit.amount
            case DepositType.TRANSFER if deposit.target_contract_id == contract_id:
                held += deposit.amount
    return held


def derive_maturity_date(installments: Iterable[Installment]) -> Optional[date]:
    """Latest installment due date; None without installments."""
    return latest(inst.due_date for inst in installments)


def derive_contract_status(
    contract: Contract,
    payments: Iterable[Payment],
    total_outstanding: Decimal,
) -> ContractStatus:
    """
    Contract status by strict priority:

        WRITTEN_OFF > REFINANCED > CLOSED > ACTIVE > PENDING

    REFINANCED means some payment was funded by another contract.
    CLOSED requires disbursement and nothing outstanding.
    """
    if contract.written_off_at is not None:
        return ContractStatus.WRITTEN_OFF
    if any(p.source_contract_id is not None for p in payments):
        return ContractStatus.REFINANCED
    if contract.disbursed_at is not None and total_outstanding == ZERO:
        return ContractStatus.CLOSED
    if contract.disbursed_at is not None:
        return ContractStatus.ACTIVE
    return ContractStatus.PENDING


def funding_breakdown(
    contract: Contract,
    principal_allocations: Iterable[PrincipalAllocation],
    deposits: Iterable[Deposit],
    disbursements: Iterable[Disbursement],
) -> FundingBreakdown:
    """
    Derive how principal was split at origination.

    principal = fee deductions + deposit kept from funding
                + merchant disbursement + excess returned

    Deposit-type principal allocations mirror the funded deposit and are
    counted once, through the received deposit.
    """
    fee_deductions = sum((a.amount for a in principal_allocations if a.feeds_waterfall), ZERO)
    deposit_from_funding = sum(
        (d.amount for d in deposits
         if d.deposit_type is DepositType.RECEIVED
         and d.source is DepositSource.FUNDING
         and d.contract_id == contract.contract_id),
        ZERO,
    )
    merchant = sum((d.amount for d in disbursements
                    if d.disbursement_type is DisbursementType.FUNDING), ZERO)
    excess = sum((d.amount for d in disbursements
                  if d.disbursement_type is DisbursementType.EXCESS_RETURN), ZERO)
    total = fee_deductions + deposit_from_funding + merchant + excess
    return FundingBreakdown(
        principal=contract.principal,
        fee_deductions=fee_deductions,
        deposit_from_funding=deposit_from_funding,
        merchant_disbursement=merchant,
        excess_returned=excess,
        total_allocated=total,
        balanced=total == contract.principal,
    )


# ============================================================================
# COMPOSITION
# ============================================================================

def compose_from_facts(facts: ContractFacts, as_of: DateLike) -> ContractState:
    """
    Compose a contract's state from already-loaded facts.

    Deterministic: the same facts and as_of always give an equal state.
    """
    as_of = to_date(as_of)
    contract = facts.contract

    fees = resolve_fee_due_dates(facts.fees, contract.disbursed_at, as_of)
    total = compute_waterfall_total(
        facts.payments, facts.disbursements, facts.deposits, facts.principal_allocations,
    )
    result = allocate(fees, facts.installments, total)
    paid_dates = find_paid_dates(
        fees, facts.installments, facts.payments, facts.disbursements,
        facts.deposits, facts.principal_allocations,
    )

    fee_states = enrich_fees(fees, result)
    installment_states = enrich_installments(facts.installments, result, paid_dates, as_of)
    totals = compute_totals(fee_states, installment_states)

    return ContractState(
        contract=contract,
        as_of=as_of,
        fees=fee_states,
        installments=installment_states,
        totals=totals,
        waterfall_total=total,
        credit_balance=result.credit_balance,
        deposit_held=compute_deposit_held(facts.deposits, contract.contract_id),
        maturity_date=derive_maturity_date(facts.installments),
        status=derive_contract_status(contract, facts.payments, totals.total_outstanding),
    )


def compose_state(view: FactView, contract_id: str, as_of: DateLike) -> ContractState:
    """
    Compute the complete state of a contract as of a date.

    Args:
        view: One consistent point-in-time snapshot of the fact store
        contract_id: Contract to compose
        as_of: Business date for overdue and delinquency derivations

    Raises:
        ContractNotFound: The view has no such contract
    """
    facts = load_facts(view, contract_id)
    state = compose_from_facts(facts, as_of)
    logger.debug("Composed %s as of %s: status=%s outstanding=%s credit=%s",
                 contract_id, state.as_of, state.status.value,
                 state.totals.total_outstanding, state.credit_balance)
    return state


def compute_funding_breakdown(view: FactView, contract_id: str) -> FundingBreakdown:
    facts = load_facts(view, contract_id)
    return funding_breakdown(
        facts.contract, facts.principal_allocations, facts.deposits, facts.disbursements,
    )


# ============================================================================
# EVENT TIMELINE
# ============================================================================

@dataclass(frozen=True, slots=True)
class TimelineEvent:
    """
    One row of a contract's transaction timeline.

    kind is "payment", "disbursement", "deposit", "principal-allocation",
    "retracted-<fact kind>" or an admin event kind ("boarding",
    "rate-adjustment", "disbursed", "written-off").
    """
    kind: str
    date: datetime
    fact_id: Optional[str] = None
    amount: Optional[Decimal] = None
    sub_type: Optional[str] = None
    reference: Optional[str] = None
    original_date: Optional[date] = None
    reason: Optional[str] = None
    author: Optional[str] = None
    note: Optional[str] = None


def _at_midnight(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)


def _fact_event(fact) -> TimelineEvent:
    match fact:
        case Payment():
            return TimelineEvent("payment", _at_midnight(fact.date), fact.payment_id,
                                 fact.amount, fact.channel, fact.reference)
        case Disbursement():
            return TimelineEvent("disbursement", _at_midnight(fact.date), fact.disbursement_id,
                                 fact.amount, fact.disbursement_type.value, fact.reference)
        case Deposit():
            return TimelineEvent("deposit", _at_midnight(fact.date), fact.deposit_id,
                                 fact.amount, fact.deposit_type.value, fact.reference)
        case PrincipalAllocation():
            return TimelineEvent("principal-allocation", _at_midnight(fact.date),
                                 fact.allocation_id, fact.amount,
                                 fact.allocation_type.value, fact.reference)
    raise TypeError(f"No timeline entry for {type(fact).__name__}")


def _retraction_event(retraction: Retraction) -> TimelineEvent:
    event = _fact_event(retraction.fact)
    return replace(
        event,
        kind=f"retracted-{event.kind}",
        date=_at_midnight(retraction.recorded_at),
        original_date=to_date(event.date),
        reason=retraction.reason.value,
        author=retraction.author,
        note=retraction.note,
    )


def _admin_event(event: AdminEvent) -> TimelineEvent:
    return TimelineEvent(event.kind, _at_midnight(event.recorded_at),
                         author=event.author, note=event.note)


def build_timeline(
    view: FactView,
    history: HistoryView,
    contract_id: str,
) -> Tuple[TimelineEvent, ...]:
    """
    Chronological timeline of everything that happened to a contract.

    Merges current money movements with admin events and retracted facts.
    Money movements are placed at their business date, admin events and
    retractions at their recording time. Ties keep the merge order.
    """
    facts = load_facts(view, contract_id)
    events: List[TimelineEvent] = []
    for collection in (facts.payments, facts.disbursements, facts.deposits,
                       facts.principal_allocations):
        events.extend(_fact_event(fact) for fact in collection)
    events.extend(_retraction_event(r) for r in history.list_retractions(contract_id)
                  if isinstance(r.fact, (Payment, Disbursement, Deposit, PrincipalAllocation)))
    events.extend(_admin_event(e) for e in history.list_admin_events(contract_id))
    return tuple(sorted(events, key=lambda event: event.date))
