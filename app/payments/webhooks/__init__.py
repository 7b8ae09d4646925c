"""
Webhook handling for payment events from Stripe.

Deliveries are signature-checked, recorded once in the event ledger and
processed by a Celery task that drives the affected donation forward.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
