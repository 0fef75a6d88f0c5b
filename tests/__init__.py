"""Test suite for scrna-workflow.

Test organization:
- fixtures/: Mock count data generators and file writers
- unit/: Unit tests for individual modules
- integration/: Stage-to-stage workflow runs on mock 10x directories

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
