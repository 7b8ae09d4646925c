"""
Tests for the payments app.

Usage:
    pytest payments/tests/
    pytest payments/tests/test_fees.py
"""
