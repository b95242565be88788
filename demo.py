#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn Loan Servicing Step by Step

A walk through one financing contract, from boarding to refinancing.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation   - The fact store, facilities, boarding a contract
  4-5:   Origination  - Disbursement, principal allocations, funding breakdown
  6-8:   Repayment    - The waterfall, paid dates, delinquency, previews
  9-10:  Corrections  - Retractions, point-in-time snapshots, the timeline
  11-12: Payoff       - Settlement quotes, refinancing, facility usage

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import sys

from servicing import (
    # Store and facts
    FactStore, Facility, Contract, Installment, Fee,
    FeeType, AllocationType, DepositSource, RetractionReason, ContractStatus,
    # Operations
    RecordOptions, create_facility, board_contract, mark_disbursed,
    record_principal_allocation, receive_deposit, record_disbursement,
    record_payment, retract_payment, preview_payment, transfer_deposit,
    quote_settlement,
    # Derivation
    compose_state, compute_funding_breakdown, build_timeline,
    contracts_by_status, facility_state,
    # Configuration
    EngineConfig,
    # Errors
    ValidationError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2024, 1, 1, 9, 0, 0)

    facility_limit: Decimal = Decimal("1000000")

    principal: Decimal = Decimal("300000")
    monthly_principal: Decimal = Decimal("100000")
    monthly_profit: Decimal = Decimal("10000")
    processing_fee: Decimal = Decimal("6000")
    security_deposit: Decimal = Decimal("20000")

    penalty_days: int = 0


CONFIG = DemoConfig()
OPS = RecordOptions(author="ops")

# Engine settings from SERVICING_* and LOG_* environment variables
ENGINE = EngineConfig.from_env()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def at(store: FactStore, day: date, hour: int = 9):
    store.advance_time(datetime(day.year, day.month, day.day, hour, 0))


def show_installments(state):
    print(f"  {'#':>2}  {'due':>10}  {'paid':>10}  {'outstanding':>12}  "
          f"{'status':>9}  {'paid on':>10}  {'days late':>9}")
    for inst in state.installments:
        paid_on = inst.paid_date.isoformat() if inst.paid_date else "-"
        print(f"  {inst.seq:>2}  {inst.due_date.isoformat():>10}  {inst.total_paid:>10}  "
              f"{inst.outstanding:>12}  {inst.status.value:>9}  {paid_on:>10}  "
              f"{inst.days_delinquent:>9}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_fact_store():
    """Create an empty fact store."""
    step_header(1, "The Fact Store", "Understand what is stored and what is derived")

    print("""
The store holds FACTS: contracts, schedules, payments, refunds, deposits.
Facts are immutable. Balances, statuses and paid dates are never stored;
they are DERIVED from the facts every time you ask.
""")
    print(">>> store = FactStore('tutorial', initial_time=datetime(2024, 1, 1, 9, 0))")
    store = FactStore("tutorial", initial_time=CONFIG.start_time)

    print(f"\nStore name:    {store.name}")
    print(f"Current time:  {store.current_time}")
    print(f"Log entries:   {len(store.log)}")
    print("""
The store has its own logical clock. Every append is stamped with it, so
you can later ask "what did the system show at 10:00 on Feb 5?".
""")
    return store


def step_02_facility(store: FactStore):
    """Open a credit line."""
    step_header(2, "A Facility", "Create the credit line contracts draw on")

    print(">>> create_facility(store, Facility('F-1', Decimal('1000000'), ...))")
    create_facility(store, Facility("F-1", CONFIG.facility_limit, external_id="FAC-1",
                                    customer_name="Merchant Co", funder="Fund A"), OPS)

    state = facility_state(store.snapshot(), "F-1", CONFIG.start_time, ENGINE)
    print(f"\nLimit:        {state.limit}")
    print(f"Utilization:  {state.utilization}")
    print(f"Available:    {state.available}")
    return store


def step_03_boarding(store: FactStore):
    """Board a contract with its fee and schedule."""
    step_header(3, "Boarding", "Record contract terms, fees and schedule as one event")

    contract = Contract("C-1", CONFIG.principal, date(2024, 1, 1), external_id="LN-1",
                        customer_name="Merchant Co", facility_id="F-1",
                        security_deposit=CONFIG.security_deposit)
    fees = [Fee("C-1-PROC", "C-1", FeeType.PROCESSING, CONFIG.processing_fee,
                days_after_disbursement=0)]
    remaining = CONFIG.principal
    installments = []
    for seq, due in enumerate([date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)], start=1):
        installments.append(Installment(f"C-1-I{seq}", "C-1", seq, due,
                                        CONFIG.monthly_principal, CONFIG.monthly_profit,
                                        remaining))
        remaining -= CONFIG.monthly_principal

    section_header("A bad boarding is rejected with every problem listed")
    broken = Contract("C-X", "999", date(2024, 1, 1), facility_id="F-404")
    try:
        board_contract(store, broken, [], installments, OPS)
    except ValidationError as e:
        for issue in e.issues:
            print(f"  {issue.code:<28} {issue.message}")

    section_header("The real contract")
    print(">>> board_contract(store, contract, fees, installments, OPS)")
    entry = board_contract(store, contract, fees, installments, OPS)
    print(f"\nLog entry #{entry.sequence}: kind={entry.kind}, author={entry.author}")

    state = compose_state(store.snapshot(), "C-1", date(2024, 1, 1))
    print(f"Status before disbursement: {state.status.value}")
    print(f"Total outstanding:          {state.totals.total_outstanding}")
    return store


# ============================================================================
# PHASE 2: ORIGINATION (Steps 4-5)
# ============================================================================

def step_04_disbursement(store: FactStore):
    """Disburse and split the principal."""
    step_header(4, "Disbursement", "Stamp disbursement and record where the principal went")

    at(store, date(2024, 1, 2))
    mark_disbursed(store, "C-1", datetime(2024, 1, 2, 10, 0), OPS)
    record_principal_allocation(store, "C-1", AllocationType.FEE_SETTLEMENT,
                                CONFIG.processing_fee, date(2024, 1, 2),
                                RecordOptions(author="ops", fee_id="C-1-PROC"))
    record_principal_allocation(store, "C-1", AllocationType.DEPOSIT,
                                CONFIG.security_deposit, date(2024, 1, 2), OPS)
    receive_deposit(store, "C-1", CONFIG.security_deposit, date(2024, 1, 2),
                    RecordOptions(author="ops", deposit_source=DepositSource.FUNDING))
    net = CONFIG.principal - CONFIG.processing_fee - CONFIG.security_deposit
    record_disbursement(store, "C-1", net, date(2024, 1, 2), OPS)

    print("""
Out of the principal, the processing fee is settled directly, the security
deposit is set aside, and the rest goes to the merchant.
""")
    return store


def step_05_funding_breakdown(store: FactStore):
    step_header(5, "Funding Breakdown", "Check that every unit of principal is accounted for")

    b = compute_funding_breakdown(store.snapshot(), "C-1")
    print(f"Principal:               {b.principal}")
    print(f"  Fee deductions:        {b.fee_deductions}")
    print(f"  Deposit from funding:  {b.deposit_from_funding}")
    print(f"  Merchant disbursement: {b.merchant_disbursement}")
    print(f"  Excess returned:       {b.excess_returned}")
    print(f"Balanced:                {b.balanced}")

    state = compose_state(store.snapshot(), "C-1", date(2024, 1, 10))
    print(f"\nFee status:    {state.fees[0].status.value} (due {state.fees[0].due_date})")
    print(f"Deposit held:  {state.deposit_held}")
    print(f"Status:        {state.status.value}")
    return store


# ============================================================================
# PHASE 3: REPAYMENT (Steps 6-8)
# ============================================================================

def step_06_waterfall(store: FactStore):
    """Pay the first installment on time."""
    step_header(6, "The Waterfall", "See how money is allocated")

    print("""
All money received is pooled and poured over obligations by due date:
fees and installments in date order, profit before principal within an
installment. Whatever is left becomes a credit balance.
""")
    at(store, date(2024, 2, 1))
    record_payment(store, "C-1", "110000", date(2024, 2, 1),
                   RecordOptions(author="teller", channel="bank-transfer"))
    show_installments(compose_state(store.snapshot(), "C-1", date(2024, 2, 1)))
    return store


def step_07_preview(store: FactStore):
    step_header(7, "Payment Preview", "Ask what a payment would do before recording it")

    preview = preview_payment(store.snapshot(), "C-1", "55000", date(2024, 3, 1))
    for change in preview.changes:
        print(f"  {change.description}")
    print(f"\nOutstanding: {preview.before_outstanding} -> {preview.after_outstanding}")
    print("Nothing was recorded: the store log is unchanged.")
    return store


def step_08_delinquency(store: FactStore):
    """A late payment."""
    step_header(8, "Delinquency", "Paid dates come from the payment that completed an installment")

    at(store, date(2024, 3, 5))
    record_payment(store, "C-1", "110000", date(2024, 3, 5), OPS)
    show_installments(compose_state(store.snapshot(), "C-1", date(2024, 3, 15)))
    print("""
Installment 2 was completed on Mar 5, four days after its due date.
Negative days late would mean it was paid early.
""")
    return store


# ============================================================================
# PHASE 4: CORRECTIONS (Steps 9-10)
# ============================================================================

def step_09_retraction(store: FactStore):
    step_header(9, "Retractions", "Correct mistakes without deleting history")

    at(store, date(2024, 3, 6))
    typo = record_payment(store, "C-1", "1000000", date(2024, 3, 6), OPS)
    state = compose_state(store.snapshot(), "C-1", date(2024, 3, 6))
    print(f"After the typo:       credit balance {state.credit_balance}, "
          f"status {state.status.value}")

    at(store, date(2024, 3, 6), hour=11)
    retract_payment(store, typo.payment_id, RetractionReason.DUPLICATE_REMOVAL,
                    RecordOptions(author="supervisor", note="keyed twice"))
    state = compose_state(store.snapshot(), "C-1", date(2024, 3, 6))
    print(f"After the retraction: credit balance {state.credit_balance}, "
          f"status {state.status.value}")

    section_header("What did we show at 10:00?")
    earlier = store.snapshot(as_of=datetime(2024, 3, 6, 10, 0))
    print(f"Status then: {compose_state(earlier, 'C-1', date(2024, 3, 6)).status.value}")
    return store


def step_10_timeline(store: FactStore):
    step_header(10, "Timeline", "Everything that happened to the contract, in order")

    for event in build_timeline(store.snapshot(), store.snapshot(), "C-1"):
        amount = f"{event.amount}" if event.amount is not None else ""
        who = f"by {event.author}" if event.author else ""
        print(f"  {event.date:%Y-%m-%d}  {event.kind:<22} {amount:>12}  {who}")
    return store


# ============================================================================
# PHASE 5: PAYOFF (Steps 11-12)
# ============================================================================

def step_11_settlement(store: FactStore):
    step_header(11, "Settlement Quote", "How much closes the contract today?")

    quote = quote_settlement(store.snapshot(), "C-1", date(2024, 3, 15), CONFIG.penalty_days,
                             config=ENGINE)
    print(f"Outstanding principal:  {quote.outstanding_principal}")
    print(f"Accrued profit:         {quote.accrued_profit}")
    print(f"  already paid:         {quote.profit_already_paid}")
    print(f"  accrued unpaid:       {quote.accrued_unpaid_profit}")
    print(f"Unearned (waived):      {quote.unearned_profit}")
    print(f"Outstanding fees:       {quote.outstanding_fees}")
    print(f"Penalty ({quote.penalty_days} days):      {quote.penalty_amount}")
    print(f"Settlement amount:      {quote.settlement_amount}")
    print(f"Accrued {quote.accrued_days} days of period "
          f"{quote.current_period_start} to {quote.current_period_end}")
    return store, quote


def step_12_refinance(store: FactStore, quote):
    step_header(12, "Refinancing", "Pay off C-1 from a new contract on the same facility")

    at(store, date(2024, 3, 15))
    board_contract(store,
                   Contract("C-2", "200000", date(2024, 3, 15), external_id="LN-2",
                            facility_id="F-1", refinances_id="C-1"),
                   [],
                   [Installment("C-2-I1", "C-2", 1, date(2024, 4, 15), "100000", "8000", "200000"),
                    Installment("C-2-I2", "C-2", 2, date(2024, 5, 15), "100000", "8000", "100000")],
                   OPS)
    mark_disbursed(store, "C-2", datetime(2024, 3, 15, 12, 0), OPS)
    record_payment(store, "C-1", quote.settlement_amount, date(2024, 3, 15),
                   RecordOptions(author="ops", source_contract_id="C-2"))
    transfer_deposit(store, "C-1", "C-2", CONFIG.security_deposit, date(2024, 3, 15), OPS)

    snapshot = store.snapshot()
    for state in contracts_by_status(snapshot, date(2024, 3, 16), config=ENGINE):
        print(f"  {state.contract.contract_id}: {state.status.value:<10} "
              f"deposit held {state.deposit_held}")

    facility = facility_state(snapshot, "F-1", date(2024, 3, 16), ENGINE)
    print(f"\nFacility utilization: {facility.utilization} of {facility.limit}")
    refinanced = contracts_by_status(snapshot, date(2024, 3, 16), ContractStatus.REFINANCED,
                                     ENGINE)
    print(f"Refinanced contracts: {[s.contract.contract_id for s in refinanced]}")
    return store


# ============================================================================
# MAIN
# ============================================================================

def main():
    ENGINE.configure_logging()
    print("=" * 70)
    print("       LOAN SERVICING TUTORIAL")
    print("=" * 70)

    store = step_01_fact_store()
    wait_for_enter()

    store = step_02_facility(store)
    wait_for_enter()

    store = step_03_boarding(store)
    wait_for_enter()

    store = step_04_disbursement(store)
    wait_for_enter()

    store = step_05_funding_breakdown(store)
    wait_for_enter()

    store = step_06_waterfall(store)
    wait_for_enter()

    store = step_07_preview(store)
    wait_for_enter()

    store = step_08_delinquency(store)
    wait_for_enter()

    store = step_09_retraction(store)
    wait_for_enter()

    store = step_10_timeline(store)
    wait_for_enter()

    store, quote = step_11_settlement(store)
    wait_for_enter()

    step_12_refinance(store, quote)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:

    FOUNDATION
      - Facts are stored, balances are derived
      - Boarding validates everything at once

    REPAYMENT
      - One waterfall: by due date, profit before principal
      - Paid dates replay money movements in date order

    CORRECTIONS
      - Retractions keep history; snapshots show the past

    PAYOFF
      - Settlement charges accrued profit and waives the rest

    Next steps:
      - See servicing/*.py for the derivation code
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
