"""
Test configuration and fixtures for notification tests.
"""

import pytest

from authentication.tests.factories import UserFactory


@pytest.fixture
def user(db):
    """A user to receive notifications."""
    return UserFactory()
