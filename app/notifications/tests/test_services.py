"""
Tests for NotificationService.
"""

from unittest.mock import MagicMock, patch

import pytest
from django.db import transaction

from notifications.models import Notification, NotificationEventType
from notifications.services import NotificationService


@pytest.mark.django_db
class TestNotify:
    """NotificationService.notify dispatches after commit."""

    def test_dispatches_on_commit(self, user, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            NotificationService.notify(
                NotificationEventType.DONATION_COMPLETED,
                recipient_id=user.pk,
                subject_id="donation-1",
                data={"amount_cents": 100000},
            )

        assert len(callbacks) == 1
        assert Notification.objects.filter(recipient=user).count() == 1

    def test_rolled_back_transaction_sends_nothing(self, user, django_capture_on_commit_callbacks):
        class Boom(Exception):
            pass

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(Boom):
                with transaction.atomic():
                    NotificationService.notify(
                        NotificationEventType.DONATION_FAILED,
                        recipient_id=user.pk,
                        subject_id="donation-2",
                    )
                    raise Boom()

        assert callbacks == []
        assert not Notification.objects.exists()

    def test_malformed_event_raises(self, user):
        with pytest.raises(ValueError):
            NotificationService.notify("not_an_event", recipient_id=user.pk, subject_id="x")


class TestDispatch:
    def test_dispatcher_failure_is_logged_not_raised(self):
        failing = MagicMock()
        failing.dispatch.side_effect = RuntimeError("smtp down")
        event = MagicMock(event_type="donation_failed", recipient_id=1, subject_id="d")

        with patch("notifications.services.get_dispatcher", return_value=failing):
            assert NotificationService.dispatch(event) is False

        failing.dispatch.assert_called_once_with(event)

    def test_successful_dispatch_returns_true(self):
        dispatcher = MagicMock()
        event = MagicMock()

        with patch("notifications.services.get_dispatcher", return_value=dispatcher):
            assert NotificationService.dispatch(event) is True
