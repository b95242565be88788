"""
servicing - Loan-Servicing Ledger

Records immutable facts about credit contracts and money movements and
derives every balance, status and settlement figure from them on demand.

Usage:
    from datetime import date, datetime
    from servicing import (
        FactStore, Contract, Installment, board_contract, record_payment,
        mark_disbursed, compose_state, quote_settlement, RecordOptions,
    )

    store = FactStore("servicing", initial_time=datetime(2024, 1, 1))
    board_contract(store, contract, fees, installments, RecordOptions(author="ops"))
    mark_disbursed(store, contract.contract_id, datetime(2024, 1, 2))
    record_payment(store, contract.contract_id, "50000", date(2024, 1, 15))

    state = compose_state(store.snapshot(), contract.contract_id, date(2024, 2, 1))
    quote = quote_settlement(store.snapshot(), contract.contract_id, date(2024, 2, 15), 90)
"""

# Core types
from .core import (
    ZERO,
    WORKING_PRECISION,
    working_context,
    FeeType,
    DisbursementType,
    DepositType,
    DepositSource,
    AllocationType,
    InstallmentStatus,
    FeeStatus,
    ContractStatus,
    RetractionReason,
    PartyType,
    ContractRole,
    ServicingError,
    ContractNotFound,
    InstallmentNotFound,
    FactNotFound,
    ValidationError,
    ValidationIssue,
    InvariantViolation,
    Contract,
    Installment,
    Fee,
    Payment,
    Disbursement,
    Deposit,
    PrincipalAllocation,
    Facility,
    Party,
    ContractParty,
    Ownership,
    Retraction,
    AdminEvent,
    FactView,
    HistoryView,
    PartyView,
    to_decimal,
    to_plain,
    canonical_digest,
)

# Dates
from .dates import to_date, parse_date, days_between, is_after

# Configuration and logging
from .config import EngineConfig, DEFAULT_CONFIG
from .logging import setup_logging, get_logger, JsonFormatter

# Waterfall
from .waterfall import (
    FeeAllocation,
    InstallmentAllocation,
    WaterfallResult,
    WaterfallCheck,
    allocate,
    allocation_for_fee,
    allocation_for_installment,
    total_allocated,
    verify_waterfall,
)

# State composition
from .contract import (
    ContractFacts,
    FeeState,
    InstallmentState,
    ContractTotals,
    ContractState,
    FundingBreakdown,
    TimelineEvent,
    load_facts,
    resolve_fee_due_dates,
    compute_waterfall_total,
    compute_thresholds,
    find_paid_dates,
    derive_installment_status,
    enrich_fees,
    enrich_installments,
    compute_totals,
    compute_deposit_held,
    derive_maturity_date,
    derive_contract_status,
    funding_breakdown,
    compute_funding_breakdown,
    compose_from_facts,
    compose_state,
    build_timeline,
)

# Settlement
from .settlement import (
    InstallmentClassification,
    SettlementResult,
    classify_installments,
    walk_forward_profit,
    calculate_settlement,
)

# Fact store
from .store import FactStore, FactSnapshot, LogEntry

# Recording operations
from .operations import (
    RecordOptions,
    RateAdjustment,
    PaymentPreview,
    PreviewChange,
    validate_boarding,
    create_facility,
    board_contract,
    record_payment,
    record_disbursement,
    record_refund,
    record_excess_return,
    receive_deposit,
    refund_deposit,
    offset_deposit,
    transfer_deposit,
    record_principal_allocation,
    mark_disbursed,
    write_off,
    calculate_profit,
    adjust_rates,
    adjust_rate,
    retract_payment,
    retract_disbursement,
    retract_deposit,
    retract_principal_allocation,
    create_party,
    add_guarantor,
    remove_guarantor,
    add_signatory,
    remove_signatory,
    record_ownership,
    remove_ownership,
    preview_payment,
    quote_settlement,
)

# Parties
from .party import (
    PartyContract,
    get_borrower,
    get_guarantors,
    get_signatories,
    party_contracts,
    get_ownership,
    get_ownerships_for_party,
    validate_party,
    validate_borrower,
    validate_signatory,
    validate_ownership,
)

# Portfolio
from .portfolio import (
    FacilityContract,
    FacilityState,
    compose_states,
    contracts_by_status,
    facility_state,
)

__all__ = [
    # Core
    'ZERO', 'WORKING_PRECISION', 'working_context',
    'FeeType', 'DisbursementType', 'DepositType', 'DepositSource', 'AllocationType',
    'InstallmentStatus', 'FeeStatus', 'ContractStatus', 'RetractionReason',
    'PartyType', 'ContractRole',
    'ServicingError', 'ContractNotFound', 'InstallmentNotFound', 'FactNotFound',
    'ValidationError', 'ValidationIssue', 'InvariantViolation',
    'Contract', 'Installment', 'Fee', 'Payment', 'Disbursement', 'Deposit',
    'PrincipalAllocation', 'Facility', 'Party', 'ContractParty', 'Ownership',
    'Retraction', 'AdminEvent',
    'FactView', 'HistoryView', 'PartyView', 'to_decimal', 'to_plain', 'canonical_digest',
    # Dates
    'to_date', 'parse_date', 'days_between', 'is_after',
    # Config / logging
    'EngineConfig', 'DEFAULT_CONFIG', 'setup_logging', 'get_logger', 'JsonFormatter',
    # Waterfall
    'FeeAllocation', 'InstallmentAllocation', 'WaterfallResult', 'WaterfallCheck',
    'allocate', 'allocation_for_fee', 'allocation_for_installment',
    'total_allocated', 'verify_waterfall',
    # State composition
    'ContractFacts', 'FeeState', 'InstallmentState', 'ContractTotals', 'ContractState',
    'FundingBreakdown', 'TimelineEvent', 'load_facts', 'resolve_fee_due_dates',
    'compute_waterfall_total', 'compute_thresholds', 'find_paid_dates',
    'derive_installment_status', 'enrich_fees', 'enrich_installments', 'compute_totals',
    'compute_deposit_held', 'derive_maturity_date', 'derive_contract_status',
    'funding_breakdown', 'compute_funding_breakdown', 'compose_from_facts',
    'compose_state', 'build_timeline',
    # Settlement
    'InstallmentClassification', 'SettlementResult', 'classify_installments',
    'walk_forward_profit', 'calculate_settlement',
    # Store
    'FactStore', 'FactSnapshot', 'LogEntry',
    # Operations
    'RecordOptions', 'RateAdjustment', 'PaymentPreview', 'PreviewChange',
    'validate_boarding', 'create_facility', 'board_contract', 'record_payment',
    'record_disbursement', 'record_refund', 'record_excess_return', 'receive_deposit',
    'refund_deposit', 'offset_deposit', 'transfer_deposit', 'record_principal_allocation',
    'mark_disbursed', 'write_off', 'calculate_profit', 'adjust_rates', 'adjust_rate',
    'retract_payment', 'retract_disbursement', 'retract_deposit',
    'retract_principal_allocation', 'create_party', 'add_guarantor', 'remove_guarantor',
    'add_signatory', 'remove_signatory', 'record_ownership', 'remove_ownership',
    'preview_payment', 'quote_settlement',
    # Parties
    'PartyContract', 'get_borrower', 'get_guarantors', 'get_signatories',
    'party_contracts', 'get_ownership', 'get_ownerships_for_party', 'validate_party',
    'validate_borrower', 'validate_signatory', 'validate_ownership',
    # Portfolio
    'FacilityContract', 'FacilityState', 'compose_states', 'contracts_by_status',
    'facility_state',
]
