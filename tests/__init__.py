"""
Test suite for the catalog import backend.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run the scenarios: pytest tests/test_import_pipeline_end_to_end.py -v
"""
