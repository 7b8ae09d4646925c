"""
Tests for the notifications app.

Usage:
    pytest notifications/tests/
"""
