"""
Notification outbox model.

The payment and refund subsystems only guarantee that a well-formed
NotificationEvent reaches the configured dispatcher. The default
dispatcher (notifications.dispatchers.DatabaseNotificationDispatcher)
persists each event as a Notification row; delivery channels (email,
push) read from this table and are outside this service.

Usage:
    from notifications.models import Notification, NotificationEventType

    unread = Notification.objects.filter(recipient=user, is_read=False)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationEventType(models.TextChoices):
    """Events emitted by the payment and refund subsystems."""

    DONATION_COMPLETED = "donation_completed", "Donation Completed"
    DONATION_FAILED = "donation_failed", "Donation Failed"
    REFUND_DECISION_REQUIRED = "refund_decision_required", "Refund Decision Required"
    REFUND_DECISION_SUBMITTED = "refund_decision_submitted", "Refund Decision Submitted"
    REFUND_DECISION_EXECUTED = "refund_decision_executed", "Refund Decision Executed"
    REFUND_PAYOUT_FAILED = "refund_payout_failed", "Refund Payout Failed"


class Notification(BaseModel):
    """
    A notification event addressed to one user.

    Fields:
        recipient: User receiving the notification
        event_type: NotificationEventType
        data: Event context (ids, amounts, reasons) for channel templates
        idempotency_key: Unique per logical event; repeated dispatches of
            the same event are ignored
        is_read: Whether recipient has read this notification

    Inherits from BaseModel:
        created_at: Timestamp (auto, indexed)
        updated_at: Timestamp (auto)
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User receiving this notification",
    )

    event_type = models.CharField(
        max_length=50,
        choices=NotificationEventType.choices,
        db_index=True,
        help_text="Type of event that produced this notification",
    )

    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Event context data",
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    is_read = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether recipient has read this notification",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return f"Notification({self.event_type}) -> User {self.recipient_id} [{read_status}]"
