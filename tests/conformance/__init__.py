"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the options protocol.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Token supply, pool books and utilization cap
2. atomicity.py - All-or-nothing operation semantics
3. terminal_states.py - Options and tranches settle exactly once

These tests use hypothesis for property-based testing.
"""
