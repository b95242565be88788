"""
Core types and pure helpers for the loan-servicing ledger.

This module provides the foundational data structures for the servicing engine:
1. Decimal context: the working precision used by pro-rata and penalty arithmetic
2. Enums: fee, disbursement, deposit and allocation subtypes, derived statuses
3. Immutable facts: Contract, Installment, Fee, Payment, Disbursement, Deposit,
   PrincipalAllocation, Facility, Party, ContractParty, Ownership
4. Protocols: FactView (current facts), HistoryView (tombstoned facts, audit)
   and PartyView (parties, contract roles, ownership)
5. Exceptions: ServicingError and its domain-specific subclasses
6. Canonical serialization: to_plain() and canonical_digest()

Facts are never edited in place. A correction is a retraction recorded by the
fact store; every balance and status is derived from whatever facts remain.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from decimal import Context, Decimal, ROUND_HALF_UP, getcontext
from enum import Enum
import hashlib
from typing import (
    Any, Dict, Optional, Protocol, Tuple, Union, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Sums and differences of money are exact at any reasonable precision, so the
# global context only needs headroom. Divisions (daily profit rates) and the
# products built from them run inside working_context(), which fixes the
# significant digits and rounds half-up.
#
# Only the importing thread's context is changed. Worker threads run under a
# copy of the caller's context (see portfolio.compose_states).
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_SERVICING_DECIMAL_CONTEXT = getcontext()
_SERVICING_DECIMAL_CONTEXT.prec = 50
_SERVICING_DECIMAL_CONTEXT.rounding = ROUND_HALF_UP


# ============================================================================
# CONSTANTS
# ============================================================================

ZERO = Decimal("0")

# Minimum significant digits for pro-rata and penalty arithmetic.
WORKING_PRECISION = 20

# Precision used when re-pricing installments from an annual rate.
RATE_ADJUSTMENT_PRECISION = 10


def working_context(precision: int = WORKING_PRECISION) -> Context:
    """Decimal context for divisions and products: fixed digits, half-up."""
    return Context(prec=precision, rounding=ROUND_HALF_UP)


# ============================================================================
# ENUMS
# ============================================================================

class FeeType(Enum):
    MANAGEMENT = "management"
    LATE = "late"
    PROCESSING = "processing"
    INSURANCE = "insurance"
    DOCUMENTATION = "documentation"


class DisbursementType(Enum):
    """Money sent out. Only REFUND takes funds back out of the waterfall."""
    FUNDING = "funding"
    REFUND = "refund"
    EXCESS_RETURN = "excess-return"


class DepositType(Enum):
    """Collateral movement. Only OFFSET feeds the waterfall."""
    RECEIVED = "received"
    REFUND = "refund"
    OFFSET = "offset"
    TRANSFER = "transfer"


class DepositSource(Enum):
    """Where a received deposit came from."""
    FUNDING = "funding"
    CUSTOMER = "customer"


class AllocationType(Enum):
    """Principal diverted at origination. DEPOSIT is excluded from the waterfall."""
    FEE_SETTLEMENT = "fee-settlement"
    INSTALLMENT_PREPAYMENT = "installment-prepayment"
    DEPOSIT = "deposit"


class InstallmentStatus(Enum):
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    SCHEDULED = "scheduled"


class FeeStatus(Enum):
    PAID = "paid"
    UNPAID = "unpaid"


class ContractStatus(Enum):
    WRITTEN_OFF = "written-off"
    REFINANCED = "refinanced"
    CLOSED = "closed"
    ACTIVE = "active"
    PENDING = "pending"


class RetractionReason(Enum):
    CORRECTION = "correction"
    DUPLICATE_REMOVAL = "duplicate-removal"
    ERRONEOUS_ENTRY = "erroneous-entry"
    RELEASE = "release"


class PartyType(Enum):
    COMPANY = "company"
    PERSON = "person"


class ContractRole(Enum):
    """
    Roles a party holds on a contract. The borrower is Contract.borrower_id;
    guarantors and signatories are ContractParty facts.
    """
    BORROWER = "borrower"
    GUARANTOR = "guarantor"
    AUTHORIZED_SIGNATORY = "authorized-signatory"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ServicingError(Exception):
    """Base exception for all servicing-ledger errors."""
    pass


class ContractNotFound(ServicingError):
    """Raised when a contract id is not present in the fact view."""

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


class InstallmentNotFound(ServicingError):
    """Raised when an operation targets installments that do not exist."""
    pass


class FactNotFound(ServicingError):
    """Raised when retracting a fact that is unknown or already retracted."""

    def __init__(self, fact_id: str):
        self.fact_id = fact_id
        super().__init__(f"Fact not found: {fact_id}")


class ValidationError(ServicingError):
    """
    Raised by the recording boundary when input is rejected before it
    becomes a fact.

    Attributes:
        field: Name of the offending input
        code: Machine-readable error code (e.g. "non-positive-amount")
        issues: Every problem found, when validation collects more than one
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: Optional[str] = None,
        issues: Tuple["ValidationIssue", ...] = (),
    ):
        self.field = field
        self.code = code
        self.issues = issues
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    field: str
    code: str
    message: str


class InvariantViolation(ServicingError):
    """
    Raised when the derivation core meets input the recording boundary
    should have rejected (negative funds, a fee without a due date).

    This indicates a corrupted fact set. Callers must not catch and retry it.
    """
    pass


# ============================================================================
# COERCION HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be float or bool: {value!r}")
    return Decimal(str(value))


def _coerce_decimals(obj: Any, *names: str) -> None:
    for name in names:
        value = getattr(obj, name)
        if value is not None and not isinstance(value, Decimal):
            object.__setattr__(obj, name, to_decimal(value))


def _coerce_dates(obj: Any, *names: str) -> None:
    for name in names:
        value = getattr(obj, name)
        if isinstance(value, datetime):
            object.__setattr__(obj, name, value.date())


def _coerce_enum(obj: Any, name: str, enum_type: type) -> None:
    value = getattr(obj, name)
    if value is not None and not isinstance(value, enum_type):
        object.__setattr__(obj, name, enum_type(value))


# ============================================================================
# FACTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Contract:
    """
    Immutable contract terms.

    disbursed_at and written_off_at are the only lifecycle facts. They are
    recorded as separate events and applied by the fact store when a
    snapshot is taken. Status is never stored.
    """
    contract_id: str
    principal: Decimal
    start_date: date
    external_id: Optional[str] = None
    customer_name: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    written_off_at: Optional[datetime] = None
    facility_id: Optional[str] = None
    refinances_id: Optional[str] = None
    security_deposit: Optional[Decimal] = None
    borrower_id: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'principal', 'security_deposit')
        _coerce_dates(self, 'start_date')


@dataclass(frozen=True, slots=True)
class Installment:
    """
    One scheduled obligation. seq is unique and contiguous from 1 within a
    contract. profit_due changes only through a recorded rate adjustment.
    """
    installment_id: str
    contract_id: str
    seq: int
    due_date: date
    principal_due: Decimal
    profit_due: Decimal
    remaining_principal: Optional[Decimal]

    def __post_init__(self):
        _coerce_decimals(self, 'principal_due', 'profit_due', 'remaining_principal')
        _coerce_dates(self, 'due_date')

    @property
    def total_due(self) -> Decimal:
        return self.principal_due + self.profit_due


@dataclass(frozen=True, slots=True)
class Fee:
    """
    A fee obligation. The due date is either stored directly or derived as
    disbursement date + days_after_disbursement (see resolve_fee_due_dates).
    """
    fee_id: str
    contract_id: str
    fee_type: FeeType
    amount: Decimal
    due_date: Optional[date] = None
    days_after_disbursement: Optional[int] = None

    def __post_init__(self):
        _coerce_decimals(self, 'amount')
        _coerce_dates(self, 'due_date')
        _coerce_enum(self, 'fee_type', FeeType)


@dataclass(frozen=True, slots=True)
class Payment:
    """
    Money received. source_contract_id marks a payment funded by another
    contract (refinancing settlement).
    """
    payment_id: str
    contract_id: str
    amount: Decimal
    date: date
    reference: Optional[str] = None
    channel: Optional[str] = None
    source_contract_id: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'amount')
        _coerce_dates(self, 'date')


@dataclass(frozen=True, slots=True)
class Disbursement:
    disbursement_id: str
    contract_id: str
    disbursement_type: DisbursementType
    amount: Decimal
    date: date
    reference: Optional[str] = None
    iban: Optional[str] = None
    bank: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'amount')
        _coerce_dates(self, 'date')
        _coerce_enum(self, 'disbursement_type', DisbursementType)


@dataclass(frozen=True, slots=True)
class Deposit:
    """
    Collateral movement. A TRANSFER is recorded against its source contract
    and names the receiving contract in target_contract_id.
    """
    deposit_id: str
    contract_id: str
    deposit_type: DepositType
    amount: Decimal
    date: date
    target_contract_id: Optional[str] = None
    source: Optional[DepositSource] = None
    reference: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'amount')
        _coerce_dates(self, 'date')
        _coerce_enum(self, 'deposit_type', DepositType)
        _coerce_enum(self, 'source', DepositSource)


@dataclass(frozen=True, slots=True)
class PrincipalAllocation:
    """
    Principal diverted at origination to settle an obligation without a
    cash movement. fee_id optionally names the fee a FEE_SETTLEMENT covers.
    """
    allocation_id: str
    contract_id: str
    allocation_type: AllocationType
    amount: Decimal
    date: date
    reference: Optional[str] = None
    fee_id: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'amount')
        _coerce_dates(self, 'date')
        _coerce_enum(self, 'allocation_type', AllocationType)

    @property
    def feeds_waterfall(self) -> bool:
        return self.allocation_type is not AllocationType.DEPOSIT


@dataclass(frozen=True, slots=True)
class Facility:
    """An approved credit line. Utilization is derived from its contracts."""
    facility_id: str
    limit: Decimal
    external_id: Optional[str] = None
    customer_name: Optional[str] = None
    funder: Optional[str] = None

    def __post_init__(self):
        _coerce_decimals(self, 'limit')


@dataclass(frozen=True, slots=True)
class Party:
    """
    A legal entity: a company (identified by its commercial registration
    number) or a natural person (identified by national id).
    """
    party_id: str
    party_type: PartyType
    legal_name: str
    cr_number: Optional[str] = None
    national_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self):
        _coerce_enum(self, 'party_type', PartyType)


@dataclass(frozen=True, slots=True)
class ContractParty:
    """A guarantor or signatory on a contract. Released by retraction."""
    link_id: str
    contract_id: str
    party_id: str
    role: ContractRole

    def __post_init__(self):
        _coerce_enum(self, 'role', ContractRole)


@dataclass(frozen=True, slots=True)
class Ownership:
    """owner_id holds percentage (0, 100] of the company company_id."""
    ownership_id: str
    owner_id: str
    company_id: str
    percentage: Decimal

    def __post_init__(self):
        _coerce_decimals(self, 'percentage')


# Every fact kind the store accepts; used for dispatch and id lookup.
Fact = Union[Contract, Installment, Fee, Payment, Disbursement, Deposit,
             PrincipalAllocation, Facility, Party, ContractParty, Ownership]


def fact_id(fact: Fact) -> str:
    """Return the identifier of any fact."""
    match fact:
        case Contract():
            return fact.contract_id
        case Installment():
            return fact.installment_id
        case Fee():
            return fact.fee_id
        case Payment():
            return fact.payment_id
        case Disbursement():
            return fact.disbursement_id
        case Deposit():
            return fact.deposit_id
        case PrincipalAllocation():
            return fact.allocation_id
        case Facility():
            return fact.facility_id
        case Party():
            return fact.party_id
        case ContractParty():
            return fact.link_id
        case Ownership():
            return fact.ownership_id
    raise TypeError(f"Not a fact: {fact!r}")


# ============================================================================
# AUDIT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Retraction:
    """A tombstone: the retracted fact plus who withdrew it and why."""
    fact: Fact
    reason: RetractionReason
    author: str
    recorded_at: datetime
    note: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AdminEvent:
    """
    A recording event without a business entity of its own: boarding,
    rate adjustment, disbursement stamp, write-off.
    """
    kind: str
    contract_id: str
    author: str
    recorded_at: datetime
    note: Optional[str] = None


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class FactView(Protocol):
    """
    Read-only query surface over one consistent point-in-time snapshot.

    Every collection is returned in recording order with tombstoned facts
    excluded. Functions accepting a FactView declare their read-only intent;
    compose_state reads all collections from the same view instance.
    """

    def get_contract(self, contract_id: str) -> Optional[Contract]: ...

    def list_contracts(self, facility_id: Optional[str] = None) -> Tuple[Contract, ...]: ...

    def get_facility(self, facility_id: str) -> Optional[Facility]: ...

    def list_fees(self, contract_id: str) -> Tuple[Fee, ...]: ...

    def list_installments(self, contract_id: str) -> Tuple[Installment, ...]: ...

    def list_payments(self, contract_id: str) -> Tuple[Payment, ...]: ...

    def list_disbursements(self, contract_id: str) -> Tuple[Disbursement, ...]: ...

    def list_deposits(self, contract_id: str) -> Tuple[Deposit, ...]: ...

    def list_principal_allocations(self, contract_id: str) -> Tuple[PrincipalAllocation, ...]: ...


@runtime_checkable
class HistoryView(Protocol):
    """Audit surface: tombstoned facts and admin events, kept for history."""

    def list_retractions(self, contract_id: str) -> Tuple[Retraction, ...]: ...

    def list_admin_events(self, contract_id: str) -> Tuple[AdminEvent, ...]: ...


@runtime_checkable
class PartyView(Protocol):
    """Parties, their roles on contracts, and company ownership."""

    def get_party(self, party_id: str) -> Optional[Party]: ...

    def list_parties(self, party_type: Optional[PartyType] = None) -> Tuple[Party, ...]: ...

    def list_contract_parties(
        self,
        contract_id: Optional[str] = None,
        party_id: Optional[str] = None,
    ) -> Tuple[ContractParty, ...]: ...

    def list_ownerships(
        self,
        company_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Tuple[Ownership, ...]: ...


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal so that Decimal("1.0") and Decimal("1.00") serialize
    identically. Fixed-point notation, no exponent.
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def to_plain(value: Any) -> Any:
    """
    Convert a derived value (ContractState, SettlementResult, ...) into plain
    serializable data: dicts, lists, strings, ints, bools and None.

    Decimals become normalized strings, dates ISO strings, enums their value.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return _normalize_decimal(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string for hashing: sorted keys, normalized decimals,
    type-tagged scalars.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, list):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return _canonicalize(to_plain(value))


def canonical_digest(value: Any) -> str:
    """SHA-256 of the canonical form. Equal derived values hash equally."""
    return hashlib.sha256(_canonicalize(value).encode("utf-8")).hexdigest()
