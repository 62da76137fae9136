"""Test suite for scpipe.

Test organization:
- fixtures/: Synthetic count-matrix generators
- unit/: Unit tests for individual modules
- integration/: End-to-end pipeline and CLI runs

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
