"""
Payment domain models.

- Donation: A donor's contribution to a campaign
- PaymentSession: Provider source and frozen fee breakdown for a donation
- WebhookEvent: Event ledger of provider notifications (idempotency store)
"""

from payments.models.donation import Donation
from payments.models.payment_session import PaymentSession
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES, WebhookEvent

__all__ = [
    "Donation",
    "MAX_WEBHOOK_RETRIES",
    "PaymentSession",
    "WebhookEvent",
]
