"""
Fixtures for campaign tests.
"""

import pytest

from authentication.tests.factories import AdminFactory, UserFactory
from campaigns.tests.factories import CampaignFactory


@pytest.fixture
def campaign(db):
    """An active campaign with an empty ledger."""
    return CampaignFactory()


@pytest.fixture
def admin_user(db):
    return AdminFactory()


@pytest.fixture
def donor(db):
    return UserFactory()
