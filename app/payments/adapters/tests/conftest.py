"""
Pytest fixtures for Stripe adapter tests.

This module provides fixtures for testing the Stripe adapter, including
mock Stripe API responses and error conditions.

Sections:
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """
    Mock Stripe API object with to_dict support.

    Like stripe.StripeObject it is both attribute-accessible and a
    mapping, so dict(obj.metadata) and truthiness checks behave as they
    do on real responses.
    """

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        value = self.data.get(name)
        if isinstance(value, dict):
            return MockStripeObject(value)
        return value

    def keys(self):
        return self.data.keys()

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __iter__(self):
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@dataclass
class MockStripeList:
    """Mock Stripe search/list response with data attribute."""

    items: list[MockStripeObject]
    has_more: bool = False

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items


@pytest.fixture
def mock_source():
    """Create a mock Source response."""

    def _create(
        id: str = "src_test123456",
        status: str = "pending",
        amount: int = 1049,
        currency: str = "php",
        redirect_url: str | None = "https://hooks.stripe.com/redirect/authenticate/src_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "source",
                "type": "gcash",
                "status": status,
                "amount": amount,
                "currency": currency,
                "redirect": {"url": redirect_url, "status": "pending"} if redirect_url else None,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_charge():
    """Create a mock Charge response."""

    def _create(
        id: str = "ch_test123456",
        status: str = "succeeded",
        amount: int = 1049,
        currency: str = "php",
        failure_message: str | None = None,
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "charge",
                "status": status,
                "amount": amount,
                "currency": currency,
                "failure_message": failure_message,
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 970,
        currency: str = "php",
        status: str = "succeeded",
        charge: str = "ch_test123456",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "charge": charge,
                "metadata": metadata or {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.error.CardError:
        error = stripe.error.CardError(
            message=message,
            param=None,
            code=code,
        )
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such source: 'src_missing'",
        param: str | None = "source",
        code: str = "resource_missing",
    ) -> stripe.error.InvalidRequestError:
        return stripe.error.InvalidRequestError(
            message=message,
            param=param,
            code=code,
        )

    return _create


@pytest.fixture
def rate_limit_error():
    """Create a Stripe RateLimitError."""
    return stripe.error.RateLimitError(
        message="Too many requests hit the API too quickly.",
    )


@pytest.fixture
def api_connection_error():
    """Create a Stripe APIConnectionError."""
    return stripe.error.APIConnectionError(
        message="Could not connect to Stripe.",
    )


@pytest.fixture
def timeout_error():
    """APIConnectionError raised when the HTTP client times out."""
    return stripe.error.APIConnectionError(
        message="Request to Stripe timed out",
    )


@pytest.fixture
def api_error():
    """Create a Stripe APIError."""
    return stripe.error.APIError(
        message="Something went wrong on Stripe's end.",
    )


@pytest.fixture
def signature_verification_error():
    """Create a Stripe SignatureVerificationError."""
    return stripe.error.SignatureVerificationError(
        message="Unable to verify webhook signature.",
        sig_header="bad_signature",
    )


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """Mock stripe.http_client.RequestsClient."""
    with patch("stripe.http_client.RequestsClient") as mock:
        yield mock


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    """Retries in the adapter sleep between attempts; skip the wait."""
    with patch("payments.adapters.stripe_adapter.time.sleep") as mock:
        yield mock


@pytest.fixture
def mock_stripe_source(mock_source):
    """Mock stripe.Source API."""
    with patch("stripe.Source") as mock:
        mock.create.return_value = mock_source()
        mock.retrieve.return_value = mock_source(status="chargeable")
        yield mock


@pytest.fixture
def mock_stripe_charge(mock_charge):
    """Mock stripe.Charge API."""
    with patch("stripe.Charge") as mock:
        mock.create.return_value = mock_charge()
        mock.search.return_value = MockStripeList(items=[])
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API."""
    with patch("stripe.Webhook") as mock:
        mock.construct_event.return_value = MockStripeObject(
            {
                "id": "evt_test123",
                "type": "source.chargeable",
                "data": {
                    "object": {
                        "id": "src_test123",
                        "object": "source",
                        "status": "chargeable",
                    }
                },
            }
        )
        yield mock
