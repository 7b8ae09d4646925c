"""
Pytest fixtures for payment tests.

Stripe is never called: tests that drive the state machine or checkout
inject ``fake_stripe`` (a MagicMock standing in for StripeAdapter).

Usage:
    def test_chargeable_source_completes(pending_session, fake_stripe):
        fake_stripe.create_charge.return_value = make_charge("ch_1")
        DonationStateMachine.advance(pending_session.donation_id, "chargeable")
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import AdminFactory, UserFactory
from campaigns.tests.factories import CampaignFactory
from payments.services import CheckoutService, DonationStateMachine
from payments.tests.factories import PaymentSessionFactory, WebhookEventFactory


@pytest.fixture(autouse=True)
def fee_settings(settings):
    """5% platform fee on top, 30 flat provider fee."""
    settings.PLATFORM_FEE_PERCENT = 5
    settings.PROVIDER_FEE_PERCENT = 0
    settings.PROVIDER_FEE_FIXED_CENTS = 30
    settings.FEE_POLICY = "platform_on_top"
    settings.MIN_DONATION_CENTS = 100
    settings.MAX_DONATION_CENTS = 10_000_000
    settings.MIN_NET_AMOUNT_CENTS = 50
    settings.STRIPE_MAX_RETRIES = 3
    return settings


@pytest.fixture
def fake_stripe(mocker):
    """Inject a mock adapter into the services that call Stripe."""
    adapter = mocker.MagicMock(name="StripeAdapter")
    adapter.find_charge_for_source.return_value = None
    mocker.patch("payments.services.donation_state_machine.time.sleep")
    DonationStateMachine.set_stripe_adapter(adapter)
    CheckoutService.set_stripe_adapter(adapter)
    yield adapter
    DonationStateMachine.set_stripe_adapter(None)
    CheckoutService.set_stripe_adapter(None)


@pytest.fixture
def donor(db):
    return UserFactory()


@pytest.fixture
def admin_user(db):
    return AdminFactory()


@pytest.fixture
def campaign(db):
    return CampaignFactory()


@pytest.fixture
def pending_session(db, campaign, donor):
    """Pending donation of 1000 with its session (net 970, platform fee 49, total 1049)."""
    return PaymentSessionFactory(
        donation__campaign=campaign,
        donation__donor=donor,
        donation__amount_cents=1000,
    )


@pytest.fixture
def pending_webhook(db):
    return WebhookEventFactory()


@pytest.fixture
def failed_webhook(db):
    webhook = WebhookEventFactory()
    webhook.mark_failed("Processing error: test failure")
    webhook.retry_count = 1
    webhook.save()
    return webhook


@pytest.fixture
def api_client():
    return APIClient()


def bearer_client(user):
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def donor_client(donor):
    """API client authenticated as ``donor`` with a JWT access token."""
    return bearer_client(donor)


@pytest.fixture
def admin_client(admin_user):
    return bearer_client(admin_user)


@pytest.fixture
def client_for():
    """Build an authenticated client for any user."""
    return bearer_client
