"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing Stripe webhook events
- Retrying failed webhook events
- Periodic cleanup of old/stuck events
- Expiring payment sessions the donor never completed
- Re-applying campaign credits that failed after a successful charge

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(webhook_event_id)

    # Re-apply a missed campaign credit
    from payments.tasks import retry_campaign_credit
    retry_campaign_credit.apply_async(args=[str(donation_id)], countdown=60)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from payments.models import MAX_WEBHOOK_RETRIES, Donation, PaymentSession, WebhookEvent
from payments.services.event_ledger import EventLedger
from payments.state_machines import DonationStatus, PaymentSessionStatus, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
UNCREDITED_GRACE_MINUTES = 10
MAX_CREDIT_RETRIES = 10


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a Stripe webhook event asynchronously.

    This task:
    1. Claims the WebhookEvent (PENDING/FAILED -> PROCESSING)
    2. Dispatches to the handler for its event type
    3. Marks it processed or failed

    Handlers are not wrapped in a transaction: they call Stripe and manage
    their own transactions and locks.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    # Import here to avoid circular imports
    from payments.webhooks.handlers import dispatch_webhook

    webhook_event_id = str(webhook_event_id)

    webhook_event = EventLedger.claim(webhook_event_id)
    if webhook_event is None:
        logger.info(
            "WebhookEvent not claimable, skipping",
            extra={"webhook_event_id": webhook_event_id},
        )
        return {"status": "skipped", "webhook_event_id": webhook_event_id}

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": webhook_event_id,
            "provider_event_id": webhook_event.provider_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        # Unexpected exception - mark as failed and let Celery retry
        error_msg = f"{type(e).__name__}: {str(e)}"
        EventLedger.mark_failed(webhook_event, error_msg)
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": webhook_event_id,
                "provider_event_id": webhook_event.provider_event_id,
                "error": error_msg,
            },
        )
        raise

    if result.success:
        EventLedger.mark_processed(webhook_event)
        logger.info(
            "Webhook processed successfully",
            extra={
                "webhook_event_id": webhook_event_id,
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        return {
            "status": "processed",
            "webhook_event_id": webhook_event_id,
            "provider_event_id": webhook_event.provider_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    EventLedger.mark_failed(webhook_event, error_msg)
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={
            "webhook_event_id": webhook_event_id,
            "provider_event_id": webhook_event.provider_event_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": webhook_event_id,
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Finds failed webhooks that haven't exceeded max retries and
    re-queues them for processing.

    Scheduled via celery-beat every 5 minutes.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )
            continue
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Finds webhooks that have been in PROCESSING status for too long
    and resets them to FAILED so they can be retried. This handles
    workers that crashed mid-processing.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        EventLedger.mark_failed(webhook, "Processing timed out - reset for retry")
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int = 90) -> dict:
    """
    Periodic task to clean up old processed webhook events.

    Failed webhooks are kept for debugging.

    Args:
        days: Delete processed webhooks older than this many days

    Returns:
        Dict with count of webhooks deleted
    """
    cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}


# =============================================================================
# Donation Maintenance Tasks
# =============================================================================


@shared_task
def expire_stale_payment_sessions() -> dict:
    """
    Fail donations whose payment session expired before being charged.

    Chargeable sessions are left alone: the donor authorized the payment
    and the charge may still be in flight.

    Returns:
        Dict with counts of expired sessions and errors
    """
    from payments.services.donation_state_machine import DonationStateMachine

    stale = PaymentSession.objects.filter(
        status=PaymentSessionStatus.PENDING,
        expires_at__lt=timezone.now(),
        donation__status=DonationStatus.PENDING,
    ).values_list("donation_id", flat=True)[:500]

    stats = {"expired": 0, "errors": 0}
    for donation_id in stale:
        try:
            DonationStateMachine.expire_session(donation_id)
            stats["expired"] += 1
        except Exception as e:
            stats["errors"] += 1
            logger.error(
                f"Failed to expire payment session: {e}",
                extra={"donation_id": str(donation_id)},
                exc_info=True,
            )

    if stats["expired"] or stats["errors"]:
        logger.info("Expired stale payment sessions", extra=stats)

    return stats


@shared_task(
    bind=True,
    max_retries=MAX_CREDIT_RETRIES,
    acks_late=True,
)
def retry_campaign_credit(self, donation_id: str) -> dict:
    """
    Re-apply the campaign credit of a completed donation.

    Queued by the state machine when the credit failed after a
    successful charge. Donation.ledger_credited makes repeated runs safe.
    """
    from payments.services.donation_state_machine import DonationStateMachine

    credited = DonationStateMachine.credit_campaign(donation_id)
    donation = Donation.objects.filter(pk=donation_id).first()
    still_missing = (
        donation is not None
        and donation.status == DonationStatus.COMPLETED
        and not donation.ledger_credited
    )

    if still_missing:
        logger.warning(
            "Campaign credit still missing, retrying",
            extra={"donation_id": donation_id, "retries": self.request.retries},
        )
        raise self.retry(countdown=min(60 * 2**self.request.retries, 3600))

    return {"donation_id": donation_id, "credited": credited}


@shared_task
def reconcile_uncredited_donations() -> dict:
    """
    Periodic safety net for campaign credits.

    Finds completed donations that were never credited (for example when
    queueing retry_campaign_credit itself failed) and credits them.
    """
    from payments.services.donation_state_machine import DonationStateMachine

    cutoff = timezone.now() - timedelta(minutes=UNCREDITED_GRACE_MINUTES)
    donation_ids = Donation.objects.filter(
        status=DonationStatus.COMPLETED,
        ledger_credited=False,
        completed_at__lt=cutoff,
    ).values_list("id", flat=True)[:500]

    stats = {"checked": 0, "credited": 0}
    for donation_id in donation_ids:
        stats["checked"] += 1
        if DonationStateMachine.credit_campaign(donation_id):
            stats["credited"] += 1

    if stats["checked"]:
        logger.warning("Reconciled uncredited donations", extra=stats)

    return stats
