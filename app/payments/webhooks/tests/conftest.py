"""
Pytest fixtures for webhook tests.

Provides the mock Stripe adapter, a pending donation with its payment
session, and WebhookEvent rows in each processing state.
"""

import pytest

from authentication.tests.factories import UserFactory
from campaigns.tests.factories import CampaignFactory
from payments.services import DonationStateMachine
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import (
    PaymentSessionFactory,
    WebhookEventFactory,
    charge_payload,
    source_payload,
)


@pytest.fixture(autouse=True)
def stripe_settings(settings):
    settings.STRIPE_MAX_RETRIES = 3
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    return settings


@pytest.fixture
def fake_stripe(mocker):
    """Mock adapter injected into DonationStateMachine."""
    adapter = mocker.MagicMock(name="StripeAdapter")
    adapter.find_charge_for_source.return_value = None
    mocker.patch("payments.services.donation_state_machine.time.sleep")
    DonationStateMachine.set_stripe_adapter(adapter)
    yield adapter
    DonationStateMachine.set_stripe_adapter(None)


@pytest.fixture
def campaign(db):
    return CampaignFactory()


@pytest.fixture
def pending_session(db, campaign):
    """Pending donation of 1000 (net 970, total 1049) with a source."""
    return PaymentSessionFactory(
        donation__campaign=campaign,
        donation__donor=UserFactory(),
        donation__amount_cents=1000,
        provider_source_id="src_webhook_1",
    )


# =============================================================================
# WebhookEvent Fixtures
# =============================================================================


@pytest.fixture
def source_chargeable_event(db, pending_session):
    payload = source_payload(
        "src_webhook_1", donation_id=pending_session.donation_id, event_id="evt_src_1"
    )
    return WebhookEventFactory(
        provider_event_id="evt_src_1",
        event_type="source.chargeable",
        payload=payload,
    )


@pytest.fixture
def charge_succeeded_event(db, pending_session):
    payload = charge_payload(
        "ch_webhook_1",
        source_id="src_webhook_1",
        donation_id=pending_session.donation_id,
        event_id="evt_charge_1",
    )
    return WebhookEventFactory(
        provider_event_id="evt_charge_1",
        event_type="charge.succeeded",
        payload=payload,
    )


@pytest.fixture
def pending_webhook_event(db):
    return WebhookEventFactory(event_type="customer.created")


@pytest.fixture
def processed_webhook_event(db):
    return WebhookEventFactory(status=WebhookEventStatus.PROCESSED, retry_count=1)


@pytest.fixture
def failed_webhook_event(db):
    return WebhookEventFactory(
        status=WebhookEventStatus.FAILED,
        retry_count=1,
        error_message="Handler error",
    )
