"""
party.py - Parties, Contract Roles and Ownership

Parties are the legal entities behind a contract: companies (identified by
commercial registration number) and natural persons (identified by national
id). A contract names its borrower directly; guarantors and authorized
signatories are ContractParty facts, released by retraction. Ownership facts
record that a party holds a share of a company.

Nothing here affects balances. The functions are read-side queries and the
pure validators the recording operations call before admitting party facts.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .core import (
    ZERO, ContractNotFound, ContractRole, Ownership,
    Party, PartyType, PartyView, ValidationIssue,
)

HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class PartyContract:
    """One role a party holds on one contract."""
    contract_id: str
    external_id: Optional[str]
    role: ContractRole


# ============================================================================
# QUERIES
# ============================================================================

def _by_name(parties) -> Tuple[Party, ...]:
    return tuple(sorted(parties, key=lambda p: p.legal_name))


def _role_parties(view, contract_id: str, role: ContractRole) -> Tuple[Party, ...]:
    if view.get_contract(contract_id) is None:
        raise ContractNotFound(contract_id)
    links = view.list_contract_parties(contract_id=contract_id)
    parties = (view.get_party(link.party_id) for link in links if link.role is role)
    return _by_name(p for p in parties if p is not None)


def get_borrower(view, contract_id: str) -> Optional[Party]:
    """
    The borrower party of a contract, or None when none is recorded.

    Raises:
        ContractNotFound: No such contract in the view
    """
    contract = view.get_contract(contract_id)
    if contract is None:
        raise ContractNotFound(contract_id)
    if contract.borrower_id is None:
        return None
    return view.get_party(contract.borrower_id)


def get_guarantors(view, contract_id: str) -> Tuple[Party, ...]:
    """Guarantors of a contract, sorted by legal name."""
    return _role_parties(view, contract_id, ContractRole.GUARANTOR)


def get_signatories(view, contract_id: str) -> Tuple[Party, ...]:
    """Authorized signatories of a contract, sorted by legal name."""
    return _role_parties(view, contract_id, ContractRole.AUTHORIZED_SIGNATORY)


def party_contracts(view, party_id: str) -> Tuple[PartyContract, ...]:
    """
    Every contract on which a party holds a role.

    Borrower roles come first, then guarantor and signatory roles in
    recording order.
    """
    contracts = {c.contract_id: c for c in view.list_contracts()}
    roles: List[PartyContract] = [
        PartyContract(c.contract_id, c.external_id, ContractRole.BORROWER)
        for c in contracts.values() if c.borrower_id == party_id
    ]
    for role in (ContractRole.GUARANTOR, ContractRole.AUTHORIZED_SIGNATORY):
        for link in view.list_contract_parties(party_id=party_id):
            if link.role is role and link.contract_id in contracts:
                contract = contracts[link.contract_id]
                roles.append(PartyContract(contract.contract_id, contract.external_id, role))
    return tuple(roles)


def get_ownership(view: PartyView, company_id: str) -> Tuple[Ownership, ...]:
    """Owners of a company, largest stake first."""
    return tuple(sorted(view.list_ownerships(company_id=company_id),
                        key=lambda o: o.percentage, reverse=True))


def get_ownerships_for_party(view: PartyView, owner_id: str) -> Tuple[Ownership, ...]:
    """Companies a party holds shares in, largest stake first."""
    return tuple(sorted(view.list_ownerships(owner_id=owner_id),
                        key=lambda o: o.percentage, reverse=True))


# ============================================================================
# VALIDATION
# ============================================================================

def validate_party(party: Party, view: Optional[PartyView] = None) -> List[ValidationIssue]:
    """
    Check a party before it is created.

    Checks:
    1. legal_name is present
    2. A company has a cr_number; a person has a national_id
    3. With a view: the id, cr_number and national_id are not in use
    """
    issues: List[ValidationIssue] = []
    if not party.legal_name:
        issues.append(ValidationIssue("legal_name", "missing-legal-name",
                                      "Missing required field: legal_name"))
    if party.party_type is PartyType.COMPANY and not party.cr_number:
        issues.append(ValidationIssue("cr_number", "missing-cr-number",
                                      "Company must have cr_number"))
    if party.party_type is PartyType.PERSON and not party.national_id:
        issues.append(ValidationIssue("national_id", "missing-national-id",
                                      "Person must have national_id"))

    if view is not None:
        existing = view.list_parties()
        if view.get_party(party.party_id) is not None:
            issues.append(ValidationIssue("party_id", "duplicate-id",
                                          f"Party {party.party_id} already exists"))
        if party.cr_number and any(p.cr_number == party.cr_number for p in existing):
            issues.append(ValidationIssue("cr_number", "duplicate-cr-number",
                                          f"CR number {party.cr_number} already registered"))
        if party.national_id and any(p.national_id == party.national_id for p in existing):
            issues.append(ValidationIssue("national_id", "duplicate-national-id",
                                          f"National ID {party.national_id} already registered"))
    return issues


def _require_type(view: PartyView, party_id: str, party_type: PartyType,
                  field: str, code: str, message: str) -> List[ValidationIssue]:
    party = view.get_party(party_id)
    if party is None:
        return [ValidationIssue(field, "unknown-party", f"Party not found: {party_id}")]
    if party.party_type is not party_type:
        return [ValidationIssue(field, code, message)]
    return []


def validate_borrower(view: PartyView, party_id: str) -> List[ValidationIssue]:
    """A borrower must be an existing company."""
    return _require_type(view, party_id, PartyType.COMPANY, "borrower_id",
                         "borrower-not-company", "Borrower must be a company")


def validate_signatory(view: PartyView, party_id: str) -> List[ValidationIssue]:
    """An authorized signatory must be an existing person."""
    return _require_type(view, party_id, PartyType.PERSON, "party_id",
                         "signatory-not-person", "Authorized signatory must be a person")


def validate_ownership(
    view: PartyView,
    owner_id: str,
    company_id: str,
    percentage: Decimal,
) -> List[ValidationIssue]:
    """
    Check an ownership stake.

    Checks:
    1. Owner and company exist, and the company is a company
    2. 0 < percentage <= 100
    3. The company's total recorded ownership stays at or below 100
    """
    issues: List[ValidationIssue] = []
    if view.get_party(owner_id) is None:
        issues.append(ValidationIssue("owner_id", "unknown-party",
                                      f"Owner party not found: {owner_id}"))
    issues.extend(_require_type(view, company_id, PartyType.COMPANY, "company_id",
                                "owned-not-company", "Owned entity must be a company"))

    if not ZERO < percentage <= HUNDRED:
        issues.append(ValidationIssue("percentage", "percentage-out-of-range",
                                      "Percentage must be between 0 (exclusive) and 100"))
    else:
        existing = sum((o.percentage for o in view.list_ownerships(company_id=company_id)),
                       ZERO)
        if existing + percentage > HUNDRED:
            issues.append(ValidationIssue(
                "percentage", "ownership-exceeds-total",
                f"Total ownership would exceed 100% (existing: {existing}%, "
                f"new: {percentage}%)",
            ))
    return issues
