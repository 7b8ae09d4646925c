"""
Notification dispatcher interface.

The core subsystems talk to notifications only through this module:
they build a NotificationEvent and hand it to the dispatcher returned by
get_dispatcher(). Which implementation runs is configured with the
NOTIFICATION_DISPATCHER setting (dotted path), so delivery can be swapped
without touching payment or refund code.

Usage:
    from notifications.dispatchers import NotificationEvent, get_dispatcher

    get_dispatcher().dispatch(
        NotificationEvent(
            event_type=NotificationEventType.DONATION_COMPLETED,
            recipient_id=donation.donor_id,
            subject_id=str(donation.id),
            data={"amount_cents": donation.amount_cents},
        )
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils.module_loading import import_string

from notifications.models import Notification, NotificationEventType

logger = logging.getLogger(__name__)

DEFAULT_DISPATCHER = "notifications.dispatchers.DatabaseNotificationDispatcher"


@dataclass(frozen=True)
class NotificationEvent:
    """
    A well-formed notification event.

    Attributes:
        event_type: One of NotificationEventType
        recipient_id: Primary key of the user to notify
        subject_id: Identifier of the donation / decision the event is about
        data: JSON-serializable context for templating
    """

    event_type: str
    recipient_id: Any
    subject_id: str
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.event_type not in NotificationEventType.values:
            raise ValueError(f"Unknown notification event type: {self.event_type}")
        if self.recipient_id is None:
            raise ValueError("recipient_id is required")
        if not self.subject_id:
            raise ValueError("subject_id is required")

    @property
    def idempotency_key(self) -> str:
        return f"{self.event_type}:{self.subject_id}:{self.recipient_id}"


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Anything with a dispatch(event) method can deliver notifications."""

    def dispatch(self, event: NotificationEvent) -> None: ...


class DatabaseNotificationDispatcher:
    """
    Default dispatcher: persist the event as a Notification row.

    Dispatching the same logical event twice stores it once.
    """

    def dispatch(self, event: NotificationEvent) -> None:
        try:
            with transaction.atomic():
                _, created = Notification.objects.get_or_create(
                    idempotency_key=event.idempotency_key,
                    defaults={
                        "recipient_id": event.recipient_id,
                        "event_type": event.event_type,
                        "data": event.data,
                    },
                )
        except IntegrityError:
            # Lost an insert race with an identical dispatch
            created = False

        logger.info(
            "Notification stored",
            extra={
                "event_type": event.event_type,
                "recipient_id": event.recipient_id,
                "subject_id": event.subject_id,
                "notification_created": created,
            },
        )


class LoggingNotificationDispatcher:
    """Dispatcher that only logs; useful for local development."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            f"Notification event: {event.event_type}",
            extra={
                "event_type": event.event_type,
                "recipient_id": event.recipient_id,
                "subject_id": event.subject_id,
                "data": event.data,
            },
        )


@lru_cache(maxsize=None)
def _load_dispatcher(path: str) -> NotificationDispatcher:
    dispatcher = import_string(path)()
    if not isinstance(dispatcher, NotificationDispatcher):
        raise TypeError(f"{path} does not implement dispatch(event)")
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    """Return the dispatcher configured by NOTIFICATION_DISPATCHER."""
    return _load_dispatcher(getattr(settings, "NOTIFICATION_DISPATCHER", DEFAULT_DISPATCHER))
