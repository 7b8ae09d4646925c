"""
Fixtures for authentication tests.
"""

import pytest
from rest_framework.test import APIClient

from authentication.tests.factories import AdminFactory, UserFactory


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def donor(db):
    """A donor account."""
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """A platform administrator."""
    return AdminFactory()
