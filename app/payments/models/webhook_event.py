"""
WebhookEvent model - the event ledger.

Every notification received from Stripe is recorded here before any
processing happens. The unique provider_event_id is the idempotency key:
inserting a second row for the same event fails, which is how the
webhook endpoint recognises replays (see payments.services.event_ledger).

Usage:
    from payments.services import EventLedger

    result = EventLedger.record_if_new("evt_123", "source.chargeable", payload)
    if result.is_new:
        process_webhook_event.delay(str(result.event.id))
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Durable record of an inbound provider notification.

    Processing Flow:
        1. Webhook arrives, verify Stripe signature
        2. Insert WebhookEvent with provider_event_id (insert-if-absent)
        3. Duplicate insert -> return 200 without processing
        4. New row -> queue process_webhook_event
        5. Task claims the row (PENDING/FAILED -> PROCESSING)
        6. Route to the handler for event_type
        7. Set status to PROCESSED or FAILED
        8. FAILED rows are picked up by retry_failed_webhooks

    Fields:
        provider_event_id: Stripe Event ID (evt_xxx), unique
        event_type: Type of webhook event
        payload: Full JSON payload from Stripe
        received_at: When the delivery was first recorded
        status: Processing status
        processed_at: When event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    provider_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'source.chargeable')",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )

    received_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the event was first received",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payments_we_status_7a1c2d_idx"),
            models.Index(
                fields=["event_type", "created_at"], name="payments_we_event_t_3f6b8e_idx"
            ),
            models.Index(fields=["status", "retry_count"], name="payments_we_status_c4d5e9_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider_event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        """Failed events below the retry ceiling are retried by the beat task."""
        return (
            self.status == WebhookEventStatus.FAILED
            and self.retry_count < MAX_WEBHOOK_RETRIES
        )

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_object(self) -> dict:
        """Return payload.data.object, or an empty dict if absent."""
        try:
            obj = self.payload.get("data", {}).get("object", {})
        except (AttributeError, TypeError):
            return {}
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")

    def get_object_type(self) -> str | None:
        """The object type (e.g., 'source', 'charge') if present."""
        return self.get_object().get("object")
