"""
test_waterfall.py - Unit tests for payment waterfall allocation

Tests:
- Reference allocation scenarios (fee first, fee after, overpayment)
- Fee-before-installment tie-break on an equal due date
- Profit paid before principal within an installment
- Zero and negative funds
- Allocation lookups and conservation check
"""

import pytest
from datetime import date
from decimal import Decimal

from servicing import (
    FeeAllocation,
    InstallmentAllocation,
    InvariantViolation,
    allocate,
    allocation_for_fee,
    allocation_for_installment,
    total_allocated,
    verify_waterfall,
)
from servicing.waterfall import waterfall_order
from tests.fake_view import fee, installment


def _one_installment():
    return [installment("C-1", 1, date(2024, 2, 1))]


# ============================================================================
# REFERENCE SCENARIOS
# ============================================================================

class TestReferenceScenarios:
    """Allocation of a single payment across one fee and one installment."""

    def test_fee_due_first_is_paid_first(self):
        """Fee due Jan 1 takes 1,000; the installment gets profit then principal."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 1, 1))]
        result = allocate(fees, _one_installment(), Decimal("50000"))

        assert allocation_for_fee(result, "F-1").amount == Decimal("1000")
        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.profit_paid == Decimal("10000")
        assert inst.principal_paid == Decimal("39000")
        assert result.credit_balance == Decimal("0")

    def test_fee_due_after_installment_waits(self):
        """Fee due Mar 1 receives nothing while the Feb 1 installment absorbs funds."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 3, 1))]
        result = allocate(fees, _one_installment(), Decimal("50000"))

        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.profit_paid == Decimal("10000")
        assert inst.principal_paid == Decimal("40000")
        assert allocation_for_fee(result, "F-1").amount == Decimal("0")
        assert result.credit_balance == Decimal("0")

    def test_overpayment_becomes_credit(self):
        """Everything is paid and the excess is the credit balance."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 1, 1))]
        result = allocate(fees, _one_installment(), Decimal("1111000"))

        assert allocation_for_fee(result, "F-1").amount == Decimal("1000")
        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.amount == Decimal("110000")
        assert result.credit_balance == Decimal("1000000")


# ============================================================================
# ORDERING RULES
# ============================================================================

class TestOrdering:
    """Tie-breaks and ordering inside the waterfall."""

    def test_fee_wins_due_date_tie(self):
        """On the same due date the fee is paid before the installment."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 2, 1))]
        result = allocate(fees, _one_installment(), Decimal("500"))

        assert allocation_for_fee(result, "F-1").amount == Decimal("500")
        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.profit_paid == Decimal("0")
        assert inst.principal_paid == Decimal("0")

    def test_fee_first_among_same_date_installments(self):
        """The fee still goes first when several installments share its date."""
        installments = [
            installment("C-1", 1, date(2024, 2, 1)),
            installment("C-1", 2, date(2024, 2, 1)),
        ]
        fees = [fee("C-1", "F-1", "300", due_date=date(2024, 2, 1))]
        order = waterfall_order(fees, installments)
        assert order[0].fee_id == "F-1"
        assert [item.seq for item in order[1:]] == [1, 2]

    def test_fees_on_same_date_keep_input_order(self):
        """Two fees due together are paid in the order given."""
        fees = [
            fee("C-1", "F-B", "700", due_date=date(2024, 1, 1)),
            fee("C-1", "F-A", "700", due_date=date(2024, 1, 1)),
        ]
        result = allocate(fees, [], Decimal("1000"))

        assert allocation_for_fee(result, "F-B").amount == Decimal("700")
        assert allocation_for_fee(result, "F-A").amount == Decimal("300")

    def test_installments_given_out_of_order(self):
        """Installments are paid by due date regardless of input order."""
        installments = [
            installment("C-1", 2, date(2024, 3, 1)),
            installment("C-1", 1, date(2024, 2, 1)),
        ]
        result = allocate([], installments, Decimal("110000"))

        assert allocation_for_installment(result, "C-1-I1").amount == Decimal("110000")
        assert allocation_for_installment(result, "C-1-I2").amount == Decimal("0")

    def test_profit_before_principal(self):
        """A partial payment covers profit before any principal."""
        result = allocate([], _one_installment(), Decimal("4000"))

        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.profit_paid == Decimal("4000")
        assert inst.principal_paid == Decimal("0")

    def test_allocations_listed_in_waterfall_order(self):
        """Result entries follow the allocation sequence."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 3, 1))]
        result = allocate(fees, _one_installment(), Decimal("0"))

        assert isinstance(result.allocations[0], InstallmentAllocation)
        assert isinstance(result.allocations[1], FeeAllocation)


# ============================================================================
# EDGE CASES
# ============================================================================

class TestEdgeCases:
    """Zero funds, empty inputs, rejected preconditions."""

    def test_zero_funds_allocates_nothing(self):
        """Every obligation gets an entry of zero."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 1, 1))]
        result = allocate(fees, _one_installment(), Decimal("0"))

        assert len(result.allocations) == 2
        assert all(a.amount == Decimal("0") for a in result.allocations)
        assert result.credit_balance == Decimal("0")

    def test_no_obligations_everything_is_credit(self):
        """Funds with nothing to pay are all credit."""
        result = allocate([], [], Decimal("250"))
        assert result.allocations == ()
        assert result.credit_balance == Decimal("250")

    def test_negative_funds_rejected(self):
        """Negative funds are a broken precondition."""
        with pytest.raises(InvariantViolation):
            allocate([], _one_installment(), Decimal("-1"))

    def test_fee_without_due_date_rejected(self):
        """An unresolved fee cannot be ordered."""
        fees = [fee("C-1", "F-1", "1000", days_after_disbursement=5)]
        with pytest.raises(InvariantViolation, match="F-1"):
            allocate(fees, _one_installment(), Decimal("100"))

    def test_fractional_amounts_exact(self):
        """Cent amounts are allocated without rounding."""
        installments = [installment("C-1", 1, date(2024, 2, 1),
                                    principal_due="100.10", profit_due="0.05")]
        result = allocate([], installments, Decimal("100.12"))

        inst = allocation_for_installment(result, "C-1-I1")
        assert inst.profit_paid == Decimal("0.05")
        assert inst.principal_paid == Decimal("100.07")


# ============================================================================
# QUERIES AND VERIFICATION
# ============================================================================

class TestQueries:
    """Lookups, totals and the conservation report."""

    def test_lookup_missing_ids(self):
        """Unknown ids return None."""
        result = allocate([], _one_installment(), Decimal("10"))
        assert allocation_for_fee(result, "nope") is None
        assert allocation_for_installment(result, "nope") is None

    def test_total_allocated_excludes_credit(self):
        """Credit balance is not counted as allocated."""
        fees = [fee("C-1", "F-1", "1000", due_date=date(2024, 1, 1))]
        result = allocate(fees, _one_installment(), Decimal("200000"))
        assert total_allocated(result) == Decimal("111000")
        assert result.credit_balance == Decimal("89000")

    def test_verify_waterfall_balanced(self):
        """A result from allocate() always reconciles."""
        result = allocate([], _one_installment(), Decimal("75000"))
        check = verify_waterfall(result, Decimal("75000"))
        assert check.valid
        assert check.difference == Decimal("0")
        assert check.total_allocated == Decimal("75000")

    def test_verify_waterfall_detects_mismatch(self):
        """Checking against a different input total reports the gap."""
        result = allocate([], _one_installment(), Decimal("75000"))
        check = verify_waterfall(result, Decimal("80000"))
        assert not check.valid
        assert check.difference == Decimal("5000")
