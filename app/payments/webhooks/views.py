"""
Webhook endpoint views for Stripe.

The view:
1. Verifies the webhook signature
2. Records the event in the event ledger (insert-if-absent)
3. Queues new events for async processing
4. Returns immediately

Response codes tell Stripe whether to redeliver: 2xx for events that are
accepted or already known, 400 for requests that will never verify, and
503 only when the event could not be queued and must be sent again.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import StripeInvalidRequestError
from payments.services.event_ledger import EventLedger

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Stripe webhook events.

    Security:
    - Signature verification (HMAC-SHA256 over the raw body) prevents
      spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.provider_event_id is unique
    - A duplicate delivery returns 200 without being queued again

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing/invalid signature or malformed event
        - 503: Event could not be queued; Stripe should retry

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    try:
        event_data = StripeAdapter.verify_webhook_signature(payload, signature)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)

    provider_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not provider_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={
            "provider_event_id": provider_event_id,
            "event_type": event_type,
        },
    )

    # Step 2: Insert-if-absent
    recorded = EventLedger.record_if_new(provider_event_id, event_type, event_data)
    if not recorded.is_new:
        return HttpResponse("Already received", status=200)

    # Step 3: Queue for async processing
    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(recorded.event.id))
    except Exception:
        logger.error(
            "Failed to queue webhook, asking Stripe to retry",
            extra={"provider_event_id": provider_event_id},
            exc_info=True,
        )
        EventLedger.forget(recorded.event)
        return HttpResponse("Temporarily unavailable", status=503)

    logger.info(
        "Webhook queued for processing",
        extra={
            "provider_event_id": provider_event_id,
            "webhook_event_id": str(recorded.event.id),
        },
    )
    return HttpResponse("Accepted", status=200)
