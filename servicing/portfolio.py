"""
portfolio.py - Many-Contract Orchestration

Composition is a closed computation over one snapshot, so contracts can be
composed in parallel without coordination. This module fans composition out
over a thread pool and derives facility utilization from the results.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, getcontext, localcontext
from typing import Iterable, Optional, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .contract import ContractState, compose_state
from .core import ZERO, ContractStatus, FactNotFound, FactView
from .dates import DateLike
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class FacilityContract:
    contract_id: str
    external_id: Optional[str]
    principal: Decimal
    status: ContractStatus


@dataclass(frozen=True, slots=True)
class FacilityState:
    """Credit line usage. available = limit - utilization (may go negative)."""
    facility_id: str
    external_id: Optional[str]
    customer_name: Optional[str]
    funder: Optional[str]
    limit: Decimal
    utilization: Decimal
    available: Decimal
    contracts: Tuple[FacilityContract, ...]


def compose_states(
    view: FactView,
    contract_ids: Iterable[str],
    as_of: DateLike,
    config: Optional[EngineConfig] = None,
) -> Tuple[ContractState, ...]:
    """
    Compose many contracts from one view, in parallel.

    Pass a snapshot, not a live store, so every contract sees the same
    point in time. Results come back in input order; the first failure
    (e.g. ContractNotFound) propagates.

    Workers use config.max_workers threads and run under a copy of the
    caller's Decimal context.
    """
    config = config or DEFAULT_CONFIG
    ids = list(contract_ids)
    if not ids:
        return ()
    context = getcontext().copy()

    def compose(contract_id: str) -> ContractState:
        with localcontext(context):
            return compose_state(view, contract_id, as_of)

    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        states = tuple(pool.map(compose, ids))
    logger.debug("Composed %d contracts as of %s", len(states), as_of)
    return states


def contracts_by_status(
    view: FactView,
    as_of: DateLike,
    status: Optional[ContractStatus] = None,
    config: Optional[EngineConfig] = None,
) -> Tuple[ContractState, ...]:
    """All contracts in the view, optionally filtered by derived status."""
    ids = [c.contract_id for c in view.list_contracts()]
    states = compose_states(view, ids, as_of, config)
    return tuple(s for s in states if status is None or s.status is status)


def facility_state(
    view: FactView,
    facility_id: str,
    as_of: DateLike,
    config: Optional[EngineConfig] = None,
) -> FacilityState:
    """
    Derive facility utilization and available capacity.

    Utilization is the sum of principals of contracts whose derived status
    is ACTIVE.

    Raises:
        FactNotFound: No such facility in the view
    """
    facility = view.get_facility(facility_id)
    if facility is None:
        raise FactNotFound(facility_id)

    contracts = view.list_contracts(facility_id)
    states = compose_states(view, [c.contract_id for c in contracts], as_of, config)
    utilization = sum((s.contract.principal for s in states
                       if s.status is ContractStatus.ACTIVE), ZERO)

    return FacilityState(
        facility_id=facility.facility_id,
        external_id=facility.external_id,
        customer_name=facility.customer_name,
        funder=facility.funder,
        limit=facility.limit,
        utilization=utilization,
        available=facility.limit - utilization,
        contracts=tuple(
            FacilityContract(s.contract.contract_id, s.contract.external_id,
                             s.contract.principal, s.status)
            for s in states
        ),
    )
