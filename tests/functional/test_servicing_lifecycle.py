"""
test_servicing_lifecycle.py - End-to-end servicing scenarios

Drives the store through recording operations and checks the derived
picture at each step:
- Boarding on a facility, origination funding and its breakdown
- Scheduled payments, a corrected typo, delinquency
- Settlement quote and refinancing into a new contract
- Deposit transfer, rate adjustment, write-off
- Overpayment returned to the customer
- Timeline and point-in-time history
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from servicing import (
    AllocationType,
    ContractStatus,
    DepositSource,
    Facility,
    FactStore,
    FeeStatus,
    InstallmentStatus,
    RecordOptions,
    RetractionReason,
    adjust_rate,
    board_contract,
    build_timeline,
    compose_state,
    compute_funding_breakdown,
    contracts_by_status,
    create_facility,
    facility_state,
    mark_disbursed,
    quote_settlement,
    receive_deposit,
    record_disbursement,
    record_payment,
    record_principal_allocation,
    record_refund,
    retract_payment,
    transfer_deposit,
    write_off,
)
from tests.fake_view import contract, fee, installment, simple_schedule, working


OPS = RecordOptions(author="ops")


def _at(store, day, hour=9):
    store.advance_time(datetime(day.year, day.month, day.day, hour, 0))


def _three_month_schedule(contract_id):
    return [
        installment(contract_id, 1, date(2024, 2, 1), remaining_principal="300000"),
        installment(contract_id, 2, date(2024, 3, 1), remaining_principal="200000"),
        installment(contract_id, 3, date(2024, 4, 1)),
    ]


@pytest.fixture
def funded_store():
    """C-1 on facility F-1: boarded, disbursed and funded on 2024-01-02."""
    store = FactStore("servicing", initial_time=datetime(2024, 1, 1, 9, 0))
    create_facility(store, Facility("F-1", Decimal("1000000"), external_id="FAC-1",
                                    customer_name="Merchant Co", funder="Fund A"), OPS)
    board_contract(
        store,
        contract("C-1", "300000", date(2024, 1, 1), external_id="LN-1", facility_id="F-1",
                 security_deposit=Decimal("20000")),
        [fee("C-1", "F-1-PROC", "6000", days_after_disbursement=0)],
        _three_month_schedule("C-1"),
        OPS,
    )

    _at(store, date(2024, 1, 2))
    mark_disbursed(store, "C-1", datetime(2024, 1, 2, 10, 0), OPS)
    record_principal_allocation(store, "C-1", AllocationType.FEE_SETTLEMENT, "6000",
                                date(2024, 1, 2), RecordOptions(author="ops", fee_id="F-1-PROC"))
    record_principal_allocation(store, "C-1", AllocationType.DEPOSIT, "20000",
                                date(2024, 1, 2), OPS)
    receive_deposit(store, "C-1", "20000", date(2024, 1, 2),
                    RecordOptions(author="ops", deposit_source=DepositSource.FUNDING))
    record_disbursement(store, "C-1", "274000", date(2024, 1, 2),
                        RecordOptions(author="ops", iban="SA03 8000 0000 6080 1016 7519"))
    return store


class TestOrigination:
    """State right after funding."""

    def test_funding_breakdown_balanced(self, funded_store):
        breakdown = compute_funding_breakdown(funded_store.snapshot(), "C-1")

        assert breakdown.fee_deductions == Decimal("6000")
        assert breakdown.deposit_from_funding == Decimal("20000")
        assert breakdown.merchant_disbursement == Decimal("274000")
        assert breakdown.balanced

    def test_fee_settled_from_principal(self, funded_store):
        state = compose_state(funded_store.snapshot(), "C-1", date(2024, 1, 10))

        assert state.status == ContractStatus.ACTIVE
        assert state.fees[0].due_date == date(2024, 1, 2)
        assert state.fees[0].status == FeeStatus.PAID
        assert state.waterfall_total == Decimal("6000")
        assert state.deposit_held == Decimal("20000")
        assert state.maturity_date == date(2024, 4, 1)
        assert state.totals.total_outstanding == Decimal("330000")

    def test_facility_utilization(self, funded_store):
        facility = facility_state(funded_store.snapshot(), "F-1", date(2024, 1, 10))
        assert facility.utilization == Decimal("300000")
        assert facility.available == Decimal("700000")


class TestRepaymentAndRefinancing:
    """Payments, a corrected typo, a settlement quote and refinancing."""

    def test_full_journey(self, funded_store):
        store = funded_store

        # On-time first installment
        _at(store, date(2024, 2, 1))
        record_payment(store, "C-1", "110000", date(2024, 2, 1),
                       RecordOptions(author="teller", channel="bank-transfer"))
        state = compose_state(store.snapshot(), "C-1", date(2024, 2, 1))
        first = state.installments[0]
        assert first.status == InstallmentStatus.PAID
        assert first.paid_date == date(2024, 2, 1)
        assert first.days_delinquent == 0

        # Second installment late; a typo is entered and retracted
        _at(store, date(2024, 3, 5))
        typo = record_payment(store, "C-1", "11000", date(2024, 3, 5), OPS)
        retract_payment(store, typo.payment_id, RetractionReason.CORRECTION,
                        RecordOptions(author="supervisor", note="amount typo"))
        record_payment(store, "C-1", "110000", date(2024, 3, 5), OPS)

        state = compose_state(store.snapshot(), "C-1", date(2024, 3, 15))
        second = state.installments[1]
        assert second.paid_date == date(2024, 3, 5)
        assert second.days_delinquent == 4
        assert state.installments[2].status == InstallmentStatus.SCHEDULED

        # Settlement quote mid third period
        quote = quote_settlement(store.snapshot(), "C-1", date(2024, 3, 15), 0)
        accrued_current = working(lambda: Decimal("10000") / 31 * 14)
        assert quote.outstanding_principal == Decimal("100000")
        assert quote.accrued_unpaid_profit == accrued_current
        assert quote.settlement_amount == Decimal("100000") + accrued_current
        assert quote.unearned_profit == Decimal("10000") - accrued_current

        # Refinance into C-2 on the same facility
        _at(store, date(2024, 3, 15))
        board_contract(store,
                       contract("C-2", "200000", date(2024, 3, 15), external_id="LN-2",
                                facility_id="F-1", refinances_id="C-1"),
                       [], [installment("C-2", 1, date(2024, 4, 15), remaining_principal="200000"),
                            installment("C-2", 2, date(2024, 5, 15))], OPS)
        mark_disbursed(store, "C-2", datetime(2024, 3, 15, 12, 0), OPS)
        record_payment(store, "C-1", quote.settlement_amount, date(2024, 3, 15),
                       RecordOptions(author="ops", source_contract_id="C-2"))
        transfer_deposit(store, "C-1", "C-2", "20000", date(2024, 3, 15), OPS)

        snapshot = store.snapshot()
        old = compose_state(snapshot, "C-1", date(2024, 3, 16))
        new = compose_state(snapshot, "C-2", date(2024, 3, 16))
        assert old.status == ContractStatus.REFINANCED
        assert new.status == ContractStatus.ACTIVE
        assert new.deposit_held == Decimal("20000")

        refinanced = contracts_by_status(snapshot, date(2024, 3, 16), ContractStatus.REFINANCED)
        assert [s.contract.contract_id for s in refinanced] == ["C-1"]
        assert facility_state(snapshot, "F-1", date(2024, 3, 16)).utilization \
            == Decimal("200000")

        # Step-up review on the new contract, then write-off
        _at(store, date(2024, 4, 20))
        adjust_rate(store, "C-2", 2, 2, "0.15", RecordOptions(author="risk", note="step-up"))
        assert compose_state(store.snapshot(), "C-2", date(2024, 4, 20)) \
            .installments[1].profit_due == Decimal("1250")

        _at(store, date(2024, 9, 1))
        write_off(store, "C-2", datetime(2024, 9, 1, 17, 0), OPS)
        state = compose_state(store.snapshot(), "C-2", date(2024, 9, 1))
        assert state.status == ContractStatus.WRITTEN_OFF
        assert state.installments[0].status == InstallmentStatus.OVERDUE
        assert facility_state(store.snapshot(), "F-1", date(2024, 9, 1)).utilization \
            == Decimal("0")

        # History: the retracted typo is in the timeline, not in the balances
        timeline = build_timeline(store.snapshot(), store.snapshot(), "C-1")
        kinds = [event.kind for event in timeline]
        assert kinds[0] == "boarding"
        assert "disbursed" in kinds
        retracted = next(e for e in timeline if e.kind == "retracted-payment")
        assert retracted.fact_id == typo.payment_id
        assert retracted.original_date == date(2024, 3, 5)
        assert retracted.author == "supervisor"
        assert [e.date for e in timeline] == sorted(e.date for e in timeline)


class TestOverpayment:
    """Credit balance returned to the customer."""

    def test_credit_refunded_then_closed(self, store):
        board_contract(store, contract("C-1"), [], simple_schedule("C-1"), OPS)
        mark_disbursed(store, "C-1", datetime(2024, 1, 1, 12, 0), OPS)

        _at(store, date(2024, 2, 1))
        record_payment(store, "C-1", "225000", date(2024, 2, 1), OPS)
        state = compose_state(store.snapshot(), "C-1", date(2024, 2, 1))
        assert state.credit_balance == Decimal("5000")
        assert state.status == ContractStatus.CLOSED

        # Quoted once every installment is past, so all profit is earned
        quote = quote_settlement(store.snapshot(), "C-1", date(2024, 3, 1), 0)
        assert quote.settlement_amount == Decimal("0")
        assert quote.refund_due == Decimal("5000")

        _at(store, date(2024, 3, 2))
        record_refund(store, "C-1", quote.refund_due, date(2024, 3, 2), OPS)
        state = compose_state(store.snapshot(), "C-1", date(2024, 3, 2))
        assert state.credit_balance == Decimal("0")
        assert state.status == ContractStatus.CLOSED
        assert all(i.paid_date == date(2024, 2, 1) for i in state.installments)


class TestPointInTime:
    """Snapshots recreate what the system showed at an earlier time."""

    def test_state_before_retraction(self, funded_store):
        store = funded_store
        _at(store, date(2024, 2, 1))
        p = record_payment(store, "C-1", "110000", date(2024, 2, 1), OPS)
        _at(store, date(2024, 2, 10))
        retract_payment(store, p.payment_id, RetractionReason.ERRONEOUS_ENTRY, OPS)

        before = compose_state(store.snapshot(as_of=datetime(2024, 2, 5)), "C-1",
                               date(2024, 2, 5))
        now = compose_state(store.snapshot(), "C-1", date(2024, 2, 5))

        assert before.installments[0].status == InstallmentStatus.PAID
        assert now.installments[0].status == InstallmentStatus.OVERDUE
        assert len(store.list_retractions("C-1")) == 1
