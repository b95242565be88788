"""
conftest.py - Shared pytest fixtures for servicing tests

Provides common fixtures used across unit, conformance and functional tests:
- Fact views for the two-installment reference contract
- A fact store with a boarded, disbursed contract
"""

import pytest
from datetime import date, datetime
from servicing import (
    FactStore, RecordOptions, board_contract, mark_disbursed,
)
from tests.fake_view import FakeView, contract, simple_schedule


@pytest.fixture
def simple_contract():
    """Principal 200,000 starting 2024-01-01, not yet disbursed."""
    return contract("C-1", "200000", date(2024, 1, 1))


@pytest.fixture
def simple_view(simple_contract):
    """FakeView holding the reference contract and its two installments."""
    return FakeView([simple_contract, *simple_schedule("C-1")])


@pytest.fixture
def store():
    """Empty fact store with its clock at 2024-01-01."""
    return FactStore("test", initial_time=datetime(2024, 1, 1))


@pytest.fixture
def boarded_store(store, simple_contract):
    """Store with the reference contract boarded and disbursed."""
    options = RecordOptions(author="tester")
    board_contract(store, simple_contract, [], simple_schedule("C-1"), options)
    store.advance_time(datetime(2024, 1, 2))
    mark_disbursed(store, "C-1", datetime(2024, 1, 2, 10, 0), options)
    return store
