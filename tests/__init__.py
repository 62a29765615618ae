"""Test suite for Detection-Refinery.

Test organization:
- fixtures/: Mock hierarchies, detectors and test utilities
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
