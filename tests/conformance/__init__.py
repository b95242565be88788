"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the servicing derivation engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. waterfall_conservation.py - Money is allocated, never created or lost;
   fees win due-date ties; profit before principal
2. composition_determinism.py - Same facts and as_of give the same state
3. paid_date_reversibility.py - Paid dates follow the allocation; refunds
   and retractions undo them

These tests use hypothesis for property-based testing.
"""
