"""
Conformance Test Suite

Invariants every strategy action must keep, whatever its parameters:
1. test_action_atomicity.py - A failing entry point leaves the ledger untouched
2. test_managed_assets.py - Ladder moves preserve managed assets and supply

These tests use hypothesis for property-based testing.
"""
