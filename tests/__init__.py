"""
repstate Test Suite
===================

Test organization:
- tests/unit/          - Unit tests against the in-memory datastore, mock ledger and mock prover
- tests/helpers.py     - Shared sign-up and transition flows

Run tests:
    pytest                          # All tests
    pytest tests/unit/test_user_state.py
"""
