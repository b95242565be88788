"""
waterfall.py - Payment Waterfall Allocation

Decides which obligation each unit of money pays first:

1. Fees and installments merged into one sequence, oldest due date first
2. On an exact due-date tie the fee is paid before the installment
3. Within an installment, profit-due before principal-due

Whatever is left after the last obligation is the credit balance
(overpayment).

PURE FUNCTIONS. No fact view, no side effects. The state composer and the
payment preview both call allocate() with the same inputs and get the same
answer.

Key Formula:
    total_funds = sum(fee allocations) + sum(profit + principal allocations)
                  + credit_balance
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .core import ZERO, Fee, Installment, InvariantViolation
from .logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class FeeAllocation:
    """Money applied to one fee."""
    fee_id: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class InstallmentAllocation:
    """Money applied to one installment, profit and principal kept apart."""
    installment_id: str
    seq: int
    profit_paid: Decimal
    principal_paid: Decimal

    @property
    def amount(self) -> Decimal:
        return self.profit_paid + self.principal_paid


Allocation = Union[FeeAllocation, InstallmentAllocation]


@dataclass(frozen=True, slots=True)
class WaterfallResult:
    """Allocations in waterfall order plus the leftover credit."""
    allocations: Tuple[Allocation, ...]
    credit_balance: Decimal


@dataclass(frozen=True, slots=True)
class WaterfallCheck:
    """Outcome of verify_waterfall()."""
    valid: bool
    total_in: Decimal
    total_allocated: Decimal
    credit_balance: Decimal
    difference: Decimal


# ============================================================================
# ORDERING
# ============================================================================

def _due_date(item: Union[Fee, Installment]) -> date:
    match item:
        case Fee(due_date=None):
            raise InvariantViolation(
                f"Fee {item.fee_id} has no resolved due date; "
                f"resolve_fee_due_dates() must run before allocation"
            )
        case Fee():
            return item.due_date
        case Installment():
            return item.due_date
    raise TypeError(f"Cannot order {type(item).__name__} in the waterfall")


def waterfall_order(
    fees: Iterable[Fee],
    installments: Iterable[Installment],
) -> List[Union[Fee, Installment]]:
    """
    Merge fees and installments into allocation order.

    Fees are placed ahead of installments BEFORE the sort. Python's sort is
    stable, so on an exact due-date tie the fee keeps its place in front.
    Reversing the concatenation silently inverts the tie-break.
    """
    items: List[Union[Fee, Installment]] = [*fees, *installments]
    return sorted(items, key=_due_date)


# ============================================================================
# ALLOCATION
# ============================================================================

def allocate(
    fees: Sequence[Fee],
    installments: Sequence[Installment],
    total_funds: Decimal,
) -> WaterfallResult:
    """
    Allocate total_funds across fees and installments in waterfall order.

    Args:
        fees: Fees with resolved due dates
        installments: Installments of one contract, any order
        total_funds: Money available to the waterfall (>= 0)

    Returns:
        WaterfallResult with one allocation per fee and installment (zero
        amounts included) and the remaining credit balance

    Raises:
        InvariantViolation: total_funds is negative, or a fee has no due date

    Example:
        fee 1,000 due 2024-01-01; installment due 2024-02-01 with profit
        10,000 and principal 100,000; total_funds 50,000
        => fee 1,000; profit 10,000; principal 39,000; credit 0
    """
    if total_funds < ZERO:
        raise InvariantViolation(f"Waterfall funds must not be negative: {total_funds}")

    remaining = total_funds
    allocations: List[Allocation] = []

    for item in waterfall_order(fees, installments):
        match item:
            case Fee():
                to_fee = min(remaining, item.amount)
                remaining -= to_fee
                allocations.append(FeeAllocation(item.fee_id, to_fee))
            case Installment():
                to_profit = min(remaining, item.profit_due)
                remaining -= to_profit
                to_principal = min(remaining, item.principal_due)
                remaining -= to_principal
                allocations.append(
                    InstallmentAllocation(item.installment_id, item.seq, to_profit, to_principal)
                )

    logger.debug("Allocated %s across %d items, credit %s",
                 total_funds, len(allocations), remaining)
    return WaterfallResult(tuple(allocations), remaining)


# ============================================================================
# QUERIES
# ============================================================================

def allocation_for_fee(result: WaterfallResult, fee_id: str) -> Optional[FeeAllocation]:
    for allocation in result.allocations:
        if isinstance(allocation, FeeAllocation) and allocation.fee_id == fee_id:
            return allocation
    return None


def allocation_for_installment(
    result: WaterfallResult,
    installment_id: str,
) -> Optional[InstallmentAllocation]:
    for allocation in result.allocations:
        if isinstance(allocation, InstallmentAllocation) and allocation.installment_id == installment_id:
            return allocation
    return None


def total_allocated(result: WaterfallResult) -> Decimal:
    """Sum of all money applied to obligations (credit balance excluded)."""
    return sum((a.amount for a in result.allocations), ZERO)


def verify_waterfall(result: WaterfallResult, total_in: Decimal) -> WaterfallCheck:
    """
    Check conservation: allocated + credit must equal what went in.

    Used as a reconciliation report; a mismatch means the result was not
    produced by allocate() from total_in.
    """
    allocated = total_allocated(result)
    difference = total_in - (allocated + result.credit_balance)
    return WaterfallCheck(
        valid=difference == ZERO,
        total_in=total_in,
        total_allocated=allocated,
        credit_balance=result.credit_balance,
        difference=difference,
    )
