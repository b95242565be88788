"""
test_portfolio.py - Unit tests for many-contract composition

Tests:
- Parallel composition preserves input order and matches serial results
- Thread-pool size from EngineConfig; workers use the caller's Decimal context
- Status filtering
- Facility utilization and available capacity
"""

import decimal
import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext, localcontext
from unittest.mock import patch

from servicing import (
    ContractNotFound,
    ContractStatus,
    EngineConfig,
    Facility,
    FactNotFound,
    compose_state,
    compose_states,
    contracts_by_status,
    facility_state,
)
from tests.fake_view import FakeView, contract, disbursed, payment, simple_schedule


@pytest.fixture
def facility_view():
    """Facility F-1 with an active, a closed and a pending contract."""
    return FakeView([
        Facility("F-1", Decimal("500000"), external_id="FAC-1", funder="Fund A"),
        disbursed(contract("C-1", facility_id="F-1")),
        *simple_schedule("C-1"),
        disbursed(contract("C-2", facility_id="F-1")),
        *simple_schedule("C-2"),
        payment("C-2", "P-1", "220000", date(2024, 2, 1)),
        contract("C-3", facility_id="F-1"),
        *simple_schedule("C-3"),
        disbursed(contract("C-4")),
        *simple_schedule("C-4"),
    ])


class TestComposeStates:
    """Fan-out composition over a thread pool."""

    def test_results_in_input_order(self, facility_view):
        states = compose_states(facility_view, ["C-3", "C-1", "C-2"], date(2024, 3, 15))
        assert [s.contract.contract_id for s in states] == ["C-3", "C-1", "C-2"]

    def test_matches_serial_composition(self, facility_view):
        ids = ["C-1", "C-2", "C-3", "C-4"]
        parallel = compose_states(facility_view, ids, date(2024, 3, 15),
                                  EngineConfig(max_workers=4))
        serial = tuple(compose_state(facility_view, cid, date(2024, 3, 15)) for cid in ids)
        assert parallel == serial

    def test_empty(self, facility_view):
        assert compose_states(facility_view, [], date(2024, 3, 15)) == ()

    def test_missing_contract_propagates(self, facility_view):
        with pytest.raises(ContractNotFound):
            compose_states(facility_view, ["C-1", "C-404"], date(2024, 3, 15))

    def test_pool_size_from_config(self, facility_view):
        with patch("servicing.portfolio.ThreadPoolExecutor", wraps=ThreadPoolExecutor) as pool:
            compose_states(facility_view, ["C-1"], date(2024, 3, 15), EngineConfig(max_workers=2))
            facility_state(facility_view, "F-1", date(2024, 3, 15), EngineConfig(max_workers=3))
            contracts_by_status(facility_view, date(2024, 3, 15), config=EngineConfig(max_workers=1))

        assert [c.kwargs["max_workers"] for c in pool.call_args_list] == [2, 3, 1]

    def test_workers_use_caller_context(self, facility_view):
        """Worker threads see the calling thread's Decimal context, not DefaultContext."""
        with localcontext() as ctx:
            ctx.rounding = ROUND_DOWN
            with patch("servicing.portfolio.compose_state",
                       side_effect=lambda view, cid, as_of: getcontext().rounding):
                roundings = compose_states(facility_view, ["C-1", "C-2"], date(2024, 3, 15))

        assert roundings == (ROUND_DOWN, ROUND_DOWN)

    def test_default_context_untouched(self):
        assert decimal.DefaultContext.rounding == ROUND_HALF_EVEN


class TestContractsByStatus:

    def test_filter(self, facility_view):
        active = contracts_by_status(facility_view, date(2024, 3, 15), ContractStatus.ACTIVE)
        assert [s.contract.contract_id for s in active] == ["C-1", "C-4"]

    def test_all(self, facility_view):
        states = contracts_by_status(facility_view, date(2024, 3, 15))
        assert {s.contract.contract_id: s.status for s in states} == {
            "C-1": ContractStatus.ACTIVE,
            "C-2": ContractStatus.CLOSED,
            "C-3": ContractStatus.PENDING,
            "C-4": ContractStatus.ACTIVE,
        }


class TestFacilityState:
    """Utilization counts principals of active contracts only."""

    def test_utilization(self, facility_view):
        state = facility_state(facility_view, "F-1", date(2024, 3, 15))

        assert state.limit == Decimal("500000")
        assert state.utilization == Decimal("200000")
        assert state.available == Decimal("300000")
        assert state.funder == "Fund A"
        assert [c.contract_id for c in state.contracts] == ["C-1", "C-2", "C-3"]

    def test_written_off_not_utilized(self):
        view = FakeView([
            Facility("F-1", Decimal("100000")),
            contract("C-1", facility_id="F-1", disbursed_at=datetime(2024, 1, 1),
                     written_off_at=datetime(2024, 6, 1)),
            *simple_schedule("C-1"),
        ])
        assert facility_state(view, "F-1", date(2024, 7, 1)).utilization == Decimal("0")

    def test_over_limit_goes_negative(self):
        view = FakeView([
            Facility("F-1", Decimal("100000")),
            disbursed(contract("C-1", facility_id="F-1")),
            *simple_schedule("C-1"),
        ])
        assert facility_state(view, "F-1", date(2024, 3, 1)).available == Decimal("-100000")

    def test_unknown_facility(self, facility_view):
        with pytest.raises(FactNotFound):
            facility_state(facility_view, "F-404", date(2024, 3, 15))
