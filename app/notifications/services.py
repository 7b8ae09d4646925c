"""
Notification service layer.

NotificationService.notify() is the single entry point used by the
payment and refund services. Events are dispatched after the surrounding
transaction commits, so a rolled-back state change never produces a
notification, and a failing dispatcher is logged without affecting the
business operation that triggered it.

Usage:
    from notifications.services import NotificationService

    NotificationService.notify(
        NotificationEventType.REFUND_DECISION_REQUIRED,
        recipient_id=decision.donor_id,
        subject_id=str(decision.id),
        data={"deadline": decision.decision_deadline.isoformat()},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService

from notifications.dispatchers import NotificationEvent, get_dispatcher

if TYPE_CHECKING:
    from typing import Any


class NotificationService(BaseService):
    """Emit notification events to the configured dispatcher."""

    @classmethod
    def notify(
        cls,
        event_type: str,
        recipient_id: Any,
        subject_id: str,
        data: dict[str, Any] | None = None,
    ) -> NotificationEvent:
        """
        Build an event and dispatch it once the current transaction commits.

        Outside a transaction the event is dispatched immediately.

        Raises:
            ValueError: The event is malformed (unknown type, no recipient)
        """
        event = NotificationEvent(
            event_type=event_type,
            recipient_id=recipient_id,
            subject_id=subject_id,
            data=data or {},
        )
        transaction.on_commit(lambda: cls.dispatch(event))
        return event

    @classmethod
    def dispatch(cls, event: NotificationEvent) -> bool:
        """
        Hand an event to the dispatcher.

        Returns:
            True if the dispatcher accepted the event, False if it raised
        """
        try:
            get_dispatcher().dispatch(event)
        except Exception:
            cls.get_logger().error(
                "Notification dispatch failed",
                extra={
                    "event_type": event.event_type,
                    "recipient_id": event.recipient_id,
                    "subject_id": event.subject_id,
                },
                exc_info=True,
            )
            return False
        return True
