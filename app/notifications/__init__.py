"""
Notifications app - the notification dispatcher interface.

This app provides:
- NotificationEvent / NotificationDispatcher: the contract used by the
  payment and refund subsystems
- DatabaseNotificationDispatcher: default implementation storing a
  Notification outbox row per event
- NotificationService.notify(): dispatch after transaction commit

Usage:
    from notifications.services import NotificationService

    NotificationService.notify(
        NotificationEventType.DONATION_COMPLETED,
        recipient_id=donation.donor_id,
        subject_id=str(donation.id),
    )
"""
