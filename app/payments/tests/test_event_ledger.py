"""
Tests for EventLedger, the deduplicating store of provider events.
"""

import pytest

from payments.models import WebhookEvent
from payments.services import EventLedger
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import WebhookEventFactory, source_payload


@pytest.mark.django_db
class TestRecordIfNew:
    def test_first_delivery_is_new(self):
        payload = source_payload("src_1", event_id="evt_1")

        result = EventLedger.record_if_new("evt_1", "source.chargeable", payload)

        assert result.is_new is True
        assert result.event.status == WebhookEventStatus.PENDING
        assert result.event.payload == payload

    def test_redelivery_is_not_new(self):
        payload = source_payload("src_1", event_id="evt_1")
        first = EventLedger.record_if_new("evt_1", "source.chargeable", payload)

        second = EventLedger.record_if_new("evt_1", "source.chargeable", payload)

        assert second.is_new is False
        assert second.event.pk == first.event.pk
        assert WebhookEvent.objects.filter(provider_event_id="evt_1").count() == 1

    def test_redelivery_after_processing_is_not_new(self, pending_webhook):
        EventLedger.mark_processed(pending_webhook)

        result = EventLedger.record_if_new(
            pending_webhook.provider_event_id,
            pending_webhook.event_type,
            pending_webhook.payload,
        )

        assert result.is_new is False
        assert result.event.status == WebhookEventStatus.PROCESSED


@pytest.mark.django_db
class TestForget:
    def test_forget_allows_redelivery(self, pending_webhook):
        EventLedger.forget(pending_webhook)

        result = EventLedger.record_if_new(
            pending_webhook.provider_event_id,
            pending_webhook.event_type,
            pending_webhook.payload,
        )

        assert result.is_new is True

    def test_forget_keeps_events_already_claimed(self, pending_webhook):
        EventLedger.claim(pending_webhook.pk)

        EventLedger.forget(pending_webhook)

        assert WebhookEvent.objects.filter(pk=pending_webhook.pk).exists()


@pytest.mark.django_db
class TestClaim:
    def test_claim_pending(self, pending_webhook):
        event = EventLedger.claim(pending_webhook.pk)

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_claim_failed(self, failed_webhook):
        event = EventLedger.claim(failed_webhook.pk)

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 2

    def test_second_claim_loses(self, pending_webhook):
        assert EventLedger.claim(pending_webhook.pk) is not None
        assert EventLedger.claim(pending_webhook.pk) is None

    def test_processed_event_cannot_be_claimed(self):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        assert EventLedger.claim(event.pk) is None

    def test_mark_failed_records_error(self, pending_webhook):
        event = EventLedger.claim(pending_webhook.pk)

        EventLedger.mark_failed(event, "Handler error: boom")

        stored = WebhookEvent.objects.get(pk=event.pk)
        assert stored.status == WebhookEventStatus.FAILED
        assert stored.error_message == "Handler error: boom"
