"""
Event ledger - idempotency store for provider notifications.

record_if_new() is an atomic insert-if-absent on the unique
provider_event_id column. When the same event is delivered concurrently,
exactly one caller gets is_new=True; every other caller sees the
IntegrityError from the unique index and gets is_new=False.

claim() is the second gate: it moves an event from PENDING or FAILED to
PROCESSING with a single conditional UPDATE, so a queued task and a
retry sweep can never process the same event at the same time.

Usage:
    from payments.services import EventLedger

    result = EventLedger.record_if_new(event_id, event_type, payload)
    if not result.is_new:
        return HttpResponse("Already received", status=200)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

if TYPE_CHECKING:
    from typing import Any
    from uuid import UUID


@dataclass(frozen=True)
class RecordResult:
    """Outcome of EventLedger.record_if_new."""

    event: WebhookEvent
    is_new: bool


class EventLedger(BaseService):
    """Durable, deduplicating record of inbound provider events."""

    @classmethod
    def record_if_new(
        cls,
        provider_event_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> RecordResult:
        """
        Record an event unless it has been recorded before.

        Returns:
            RecordResult with is_new=True for the first delivery only
        """
        logger = cls.get_logger()

        try:
            with cls.atomic():
                event = WebhookEvent.objects.create(
                    provider_event_id=provider_event_id,
                    event_type=event_type,
                    payload=payload,
                    received_at=timezone.now(),
                )
        except IntegrityError:
            event = WebhookEvent.objects.get(provider_event_id=provider_event_id)
            logger.info(
                "Duplicate webhook event ignored",
                extra={
                    "provider_event_id": provider_event_id,
                    "event_type": event_type,
                    "status": event.status,
                },
            )
            return RecordResult(event=event, is_new=False)

        logger.info(
            "Webhook event recorded",
            extra={
                "provider_event_id": provider_event_id,
                "event_type": event_type,
                "webhook_event_id": str(event.id),
            },
        )
        return RecordResult(event=event, is_new=True)

    @classmethod
    def forget(cls, event: WebhookEvent) -> None:
        """
        Remove an event that could not be queued.

        The provider is then told to retry, and the redelivery is
        recorded as new.
        """
        WebhookEvent.objects.filter(pk=event.pk, status=WebhookEventStatus.PENDING).delete()
        cls.get_logger().warning(
            "Webhook event removed from ledger",
            extra={"provider_event_id": event.provider_event_id},
        )

    @classmethod
    def claim(cls, webhook_event_id: UUID | str) -> WebhookEvent | None:
        """
        Claim an event for processing.

        Returns:
            The event in PROCESSING state, or None if it is unknown,
            already processed, or being processed by someone else
        """
        claimed = WebhookEvent.objects.filter(
            pk=webhook_event_id,
            status__in=[WebhookEventStatus.PENDING, WebhookEventStatus.FAILED],
        ).update(
            status=WebhookEventStatus.PROCESSING,
            retry_count=F("retry_count") + 1,
            updated_at=timezone.now(),
        )
        if not claimed:
            return None
        return WebhookEvent.objects.get(pk=webhook_event_id)

    @classmethod
    def mark_processed(cls, event: WebhookEvent) -> None:
        event.mark_processed()
        event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])

    @classmethod
    def mark_failed(cls, event: WebhookEvent, error_message: str) -> None:
        event.mark_failed(error_message)
        event.save(update_fields=["status", "error_message", "updated_at"])
