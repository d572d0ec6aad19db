"""
Conformance Test Suite

Properties every run of the factoring engine must satisfy, whatever the
sequence of operations.

The tests are organized by invariant:
1. fee_properties.py - Fee bounds, caps and the settlement identity
2. pool_invariants.py - Capital roll-forward, double entry, liquidity and queue bounds

These tests use hypothesis for property-based testing.
"""
