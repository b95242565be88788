"""
settlement.py - Early Settlement Calculation

Derives the cost to close a contract on a given date from its composed
state. Nothing is stored; a quote can be computed for any past or future
date without side effects.

Installment classification relative to the settlement date:
    PAST:    due_date <= settlement_date  -> full profit_due accrued
    CURRENT: first installment due after  -> pro-rata accrual
    FUTURE:  the rest                     -> nothing accrued

Key Formulas:
    accrued_profit = sum(past profit_due)
                     + current.profit_due / period_days * accrued_days
    penalty        = daily profit walked forward penalty_days from the
                     settlement date through the remaining schedule
    raw            = outstanding_principal + effective_accrued_unpaid_profit
                     + outstanding_fees + penalty - credit_balance
    settlement     = max(0, raw); refund_due = -raw when raw < 0

Divisions and the products built from them run at the configured working
precision (at least 20 significant digits), rounding half-up.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, localcontext
from typing import List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .contract import ContractState, InstallmentState
from .core import ZERO, InvariantViolation
from .dates import DateLike, days_between, is_after, to_date
from .logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class InstallmentClassification:
    past: Tuple[InstallmentState, ...]
    current: Optional[InstallmentState]
    future: Tuple[InstallmentState, ...]


@dataclass(frozen=True, slots=True)
class SettlementResult:
    """
    Early-payoff breakdown. settlement_amount and refund_due are mutually
    exclusive: at most one of them is non-zero.
    """
    contract_id: str
    settlement_date: date
    outstanding_principal: Decimal
    accrued_profit: Decimal
    profit_already_paid: Decimal
    accrued_unpaid_profit: Decimal
    effective_accrued_unpaid_profit: Decimal
    unearned_profit: Decimal
    outstanding_fees: Decimal
    penalty_days: int
    penalty_amount: Decimal
    credit_balance: Decimal
    settlement_amount: Decimal
    refund_due: Optional[Decimal]
    current_period_start: Optional[date]
    current_period_end: Optional[date]
    accrued_days: int
    manual_override_applied: bool


@dataclass(frozen=True, slots=True)
class _Period:
    profit_due: Decimal
    period_days: int
    available: int


# ============================================================================
# SCHEDULE HELPERS
# ============================================================================

def previous_installment(
    ordered: Sequence[InstallmentState],
    seq: int,
) -> Optional[InstallmentState]:
    """The installment immediately before seq. Gaps in seq are tolerated."""
    earlier = [inst for inst in ordered if inst.seq < seq]
    return earlier[-1] if earlier else None


def period_days_for(
    inst: InstallmentState,
    ordered: Sequence[InstallmentState],
    start_date: DateLike,
) -> int:
    """Calendar days from the previous due date (or contract start) to inst's."""
    prev = previous_installment(ordered, inst.seq)
    period_start = prev.due_date if prev is not None else start_date
    return days_between(period_start, inst.due_date)


def classify_installments(
    installments: Sequence[InstallmentState],
    settlement_date: DateLike,
) -> InstallmentClassification:
    ordered = sorted(installments, key=lambda inst: inst.seq)
    past = tuple(inst for inst in ordered if not is_after(inst.due_date, settlement_date))
    upcoming = [inst for inst in ordered if is_after(inst.due_date, settlement_date)]
    current = upcoming[0] if upcoming else None
    return InstallmentClassification(past, current, tuple(upcoming[1:]))


# ============================================================================
# PENALTY
# ============================================================================

def walk_forward_profit(
    n_days: int,
    current: Optional[InstallmentState],
    future: Sequence[InstallmentState],
    period_days: int,
    accrued_days: int,
    ordered: Sequence[InstallmentState],
    start_date: DateLike,
) -> Decimal:
    """
    Profit for n_days walking forward from the settlement date.

    Each period's profit is spread evenly over its calendar days. The walk
    consumes the unused part of the current period, then future periods in
    order. Days left over once the schedule runs out are charged at the last
    period's daily rate.

    Call inside the working decimal context.
    """
    if n_days == 0:
        return ZERO

    periods: List[_Period] = []
    if current is not None and period_days > 0 and period_days > accrued_days:
        periods.append(_Period(current.profit_due, period_days, period_days - accrued_days))
    for inst in future:
        days = period_days_for(inst, ordered, start_date)
        if days > 0:
            periods.append(_Period(inst.profit_due, days, days))

    remaining = n_days
    profit = ZERO
    last_daily: Optional[Decimal] = None
    for period in periods:
        if remaining == 0:
            break
        daily = period.profit_due / period.period_days
        take = min(remaining, period.available)
        profit += daily * take
        remaining -= take
        last_daily = daily

    if remaining > 0 and last_daily is not None:
        profit += last_daily * remaining
    return profit


# ============================================================================
# SETTLEMENT
# ============================================================================

def calculate_settlement(
    state: ContractState,
    settlement_date: DateLike,
    penalty_days: int,
    manual_override: Optional[Decimal] = None,
    config: Optional[EngineConfig] = None,
) -> SettlementResult:
    """
    Derive the settlement amount for a contract as of settlement_date.

    Args:
        state: Composed contract state (normally as of settlement_date)
        settlement_date: Date the contract would be closed
        penalty_days: Days of forward profit charged as penalty (>= 0)
        manual_override: Replaces the accrued-unpaid profit used in the
            settlement amount; the computed figure is still reported
        config: Working precision and output rounding

    Raises:
        InvariantViolation: penalty_days is negative. The recording
            boundary rejects that before calling here.

    Extreme dates never raise. Before the schedule the current period simply
    starts at the contract start; after it the penalty is extrapolated from
    the last installment's daily rate.
    """
    if penalty_days < 0:
        raise InvariantViolation(f"penalty_days must not be negative: {penalty_days}")

    config = config or DEFAULT_CONFIG
    settlement_date = to_date(settlement_date)
    start_date = state.contract.start_date
    ordered = sorted(state.installments, key=lambda inst: inst.seq)
    classes = classify_installments(ordered, settlement_date)
    current = classes.current

    # Period boundaries. With every installment past, the period starts at the
    # last due date and has no end.
    if current is not None:
        prev = previous_installment(ordered, current.seq)
        period_start: Optional[date] = prev.due_date if prev is not None else start_date
        period_end: Optional[date] = current.due_date
    elif classes.past:
        period_start, period_end = classes.past[-1].due_date, None
    else:
        period_start, period_end = None, None

    # A settlement date before the contract start accrues nothing.
    accrued_days = (max(0, days_between(period_start, settlement_date))
                    if period_start is not None else 0)
    period_days = (days_between(period_start, period_end)
                   if period_start is not None and period_end is not None else 0)

    totals = state.totals
    past_profit = sum((inst.profit_due for inst in classes.past), ZERO)

    with localcontext(config.decimal_context()):
        if current is not None and period_days > 0:
            current_accrued = current.profit_due / period_days * accrued_days
        else:
            current_accrued = ZERO

        if penalty_days == 0:
            penalty = ZERO
        elif current is not None:
            penalty = walk_forward_profit(penalty_days, current, classes.future,
                                          period_days, accrued_days, ordered, start_date)
        elif classes.past:
            last_past = classes.past[-1]
            last_days = period_days_for(last_past, ordered, start_date)
            penalty = (last_past.profit_due / last_days * penalty_days
                       if last_days > 0 else ZERO)
        else:
            penalty = ZERO

    accrued_profit = past_profit + current_accrued
    outstanding_principal = totals.total_principal_due - totals.total_principal_paid
    accrued_unpaid = accrued_profit - totals.total_profit_paid
    outstanding_fees = totals.total_fees_due - totals.total_fees_paid
    effective_unpaid = manual_override if manual_override is not None else accrued_unpaid
    unearned = totals.total_profit_due - accrued_profit

    raw = (outstanding_principal + effective_unpaid + outstanding_fees + penalty
           - state.credit_balance)

    q = config.quantize
    settlement_amount = q(max(ZERO, raw))
    refund_due = q(-raw) if raw < ZERO else None

    logger.debug("Settlement for %s on %s: raw=%s penalty=%s override=%s",
                 state.contract.contract_id, settlement_date, raw, penalty,
                 manual_override is not None)

    return SettlementResult(
        contract_id=state.contract.contract_id,
        settlement_date=settlement_date,
        outstanding_principal=outstanding_principal,
        accrued_profit=q(accrued_profit),
        profit_already_paid=totals.total_profit_paid,
        accrued_unpaid_profit=q(accrued_unpaid),
        effective_accrued_unpaid_profit=q(effective_unpaid),
        unearned_profit=q(unearned),
        outstanding_fees=outstanding_fees,
        penalty_days=penalty_days,
        penalty_amount=q(penalty),
        credit_balance=state.credit_balance,
        settlement_amount=settlement_amount,
        refund_due=refund_due,
        current_period_start=period_start,
        current_period_end=period_end,
        accrued_days=accrued_days,
        manual_override_applied=manual_override is not None,
    )
