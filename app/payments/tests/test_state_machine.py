"""
Tests for DonationStateMachine.

Stripe is replaced by the ``fake_stripe`` mock adapter; the campaign
ledger and the database are real.
"""

import pytest

from campaigns.models import Campaign
from campaigns.services import CampaignLedgerService
from core.exceptions import InternalError, PermissionDeniedError
from notifications.models import Notification, NotificationEventType
from payments.exceptions import (
    ChargeOutcomeUnknownError,
    DonationNotFoundError,
    LockAcquisitionError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInvalidRequestError,
    StripeTimeoutError,
)
from payments.models import Donation, PaymentSession
from payments.services import DonationStateMachine
from payments.state_machines import DonationStatus, PaymentSessionStatus
from payments.tests.factories import make_charge, make_source


def reload(session):
    """Fresh copies of a session's donation, session and campaign."""
    donation = Donation.objects.get(pk=session.donation_id)
    return (
        donation,
        PaymentSession.objects.get(pk=session.pk),
        Campaign.objects.get(pk=donation.campaign_id),
    )


@pytest.mark.django_db
class TestAdvanceChargeable:
    """A chargeable source is charged and the campaign credited once."""

    def test_completes_and_credits(self, pending_session, fake_stripe):
        fake_stripe.create_charge.return_value = make_charge(
            "ch_1", source_id=pending_session.provider_source_id
        )

        result = DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        assert result.success is True
        outcome = result.data
        assert outcome.status == DonationStatus.COMPLETED
        assert outcome.message == "Payment completed successfully"
        assert outcome.credited is True

        donation, session, campaign = reload(pending_session)
        assert donation.provider_charge_id == "ch_1"
        assert donation.ledger_credited is True
        assert donation.fees == session.fee_metadata
        assert session.status == PaymentSessionStatus.SUCCEEDED
        assert campaign.current_amount_cents == 970
        assert campaign.donors_count == 1

    def test_charges_stored_total_with_idempotency_key(self, pending_session, fake_stripe):
        fake_stripe.create_charge.return_value = make_charge("ch_1")

        DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        kwargs = fake_stripe.create_charge.call_args.kwargs
        assert kwargs["source_id"] == pending_session.provider_source_id
        assert kwargs["amount_cents"] == 1049
        assert kwargs["idempotency_key"].startswith(f"charge:{pending_session.donation_id}:")
        assert kwargs["metadata"]["donation_id"] == str(pending_session.donation_id)

    def test_replay_does_not_charge_or_credit_again(self, pending_session, fake_stripe):
        fake_stripe.create_charge.return_value = make_charge("ch_1")
        DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.COMPLETED
        assert outcome.credited is False
        assert fake_stripe.create_charge.call_count == 1
        _, _, campaign = reload(pending_session)
        assert campaign.current_amount_cents == 970
        assert campaign.donors_count == 1

    def test_notifies_donor(
        self, pending_session, fake_stripe, django_capture_on_commit_callbacks
    ):
        fake_stripe.create_charge.return_value = make_charge("ch_1")

        with django_capture_on_commit_callbacks(execute=True):
            DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        notification = Notification.objects.get(
            event_type=NotificationEventType.DONATION_COMPLETED
        )
        assert notification.recipient_id == pending_session.donation.donor_id
        assert notification.data["net_amount_cents"] == 970


@pytest.mark.django_db
class TestAdvanceFailures:
    def test_declined_charge_fails_donation(self, pending_session, fake_stripe):
        fake_stripe.create_charge.side_effect = StripeCardDeclinedError(
            "Your card was declined."
        )

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.FAILED
        assert outcome.message == "Payment failed: Your card was declined."
        donation, session, campaign = reload(pending_session)
        assert donation.status == DonationStatus.FAILED
        assert session.status == PaymentSessionStatus.FAILED
        assert campaign.current_amount_cents == 0

    def test_failed_charge_result_fails_donation(self, pending_session, fake_stripe):
        fake_stripe.create_charge.return_value = make_charge(
            "ch_1", status="failed", failure_message="Insufficient balance"
        )

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.FAILED
        assert reload(pending_session)[0].failure_reason == "Insufficient balance"

    @pytest.mark.parametrize("source_status", ["failed", "canceled"])
    def test_terminal_source_fails_donation(self, pending_session, fake_stripe, source_status):
        outcome = DonationStateMachine.advance(pending_session.donation_id, source_status).data

        assert outcome.status == DonationStatus.FAILED
        assert reload(pending_session)[0].failure_reason == f"Payment source {source_status}"
        fake_stripe.create_charge.assert_not_called()

    def test_failed_donation_is_not_revived(self, pending_session, fake_stripe):
        DonationStateMachine.advance(pending_session.donation_id, "canceled")

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.FAILED
        fake_stripe.create_charge.assert_not_called()


@pytest.mark.django_db
class TestAmbiguousCharge:
    """A charge call that fails transiently may still have charged the donor."""

    def test_consumed_source_resolves_to_existing_charge(self, pending_session, fake_stripe):
        fake_stripe.create_charge.side_effect = StripeTimeoutError("timed out")
        fake_stripe.get_source_status.return_value = make_source(status="consumed")
        fake_stripe.find_charge_for_source.return_value = make_charge("ch_existing")

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.COMPLETED
        assert fake_stripe.create_charge.call_count == 1
        donation, _, campaign = reload(pending_session)
        assert donation.provider_charge_id == "ch_existing"
        assert campaign.current_amount_cents == 970

    def test_still_chargeable_retries_with_same_key(self, pending_session, fake_stripe):
        fake_stripe.create_charge.side_effect = [
            StripeAPIUnavailableError("unavailable"),
            make_charge("ch_1"),
        ]
        fake_stripe.get_source_status.return_value = make_source(status="chargeable")

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.COMPLETED
        keys = [c.kwargs["idempotency_key"] for c in fake_stripe.create_charge.call_args_list]
        assert len(keys) == 2
        assert keys[0] == keys[1]

    def test_gives_up_when_outcome_stays_unknown(self, pending_session, fake_stripe):
        fake_stripe.create_charge.side_effect = StripeTimeoutError("timed out")
        fake_stripe.get_source_status.return_value = make_source(status="chargeable")

        with pytest.raises(ChargeOutcomeUnknownError):
            DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        assert fake_stripe.create_charge.call_count == 3
        donation, session, _ = reload(pending_session)
        assert donation.status == DonationStatus.PENDING
        assert session.status == PaymentSessionStatus.CHARGEABLE

    def test_permanent_error_is_raised(self, pending_session, fake_stripe):
        fake_stripe.create_charge.side_effect = StripeInvalidRequestError("bad source")
        fake_stripe.get_source_status.return_value = make_source(status="chargeable")

        with pytest.raises(StripeInvalidRequestError):
            DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        assert fake_stripe.create_charge.call_count == 1


@pytest.mark.django_db
class TestAdvanceQueriesSource:
    def test_pending_source(self, pending_session, fake_stripe):
        fake_stripe.get_source_status.return_value = make_source(status="pending")

        outcome = DonationStateMachine.advance(pending_session.donation_id).data

        assert outcome.status == PaymentSessionStatus.PENDING
        assert outcome.message == "Payment is still pending"
        fake_stripe.get_source_status.assert_called_once_with(
            pending_session.provider_source_id
        )

    def test_consumed_source_without_charge_stays_pending(self, pending_session, fake_stripe):
        fake_stripe.get_source_status.return_value = make_source(status="consumed")

        outcome = DonationStateMachine.advance(pending_session.donation_id).data

        assert outcome.status == PaymentSessionStatus.CHARGEABLE
        assert reload(pending_session)[0].status == DonationStatus.PENDING

    def test_unknown_donation(self, db, fake_stripe):
        with pytest.raises(DonationNotFoundError):
            DonationStateMachine.advance("00000000-0000-0000-0000-000000000000")

    def test_lock_contention(self, pending_session, fake_stripe, redis_client, mocker):
        mocker.patch("payments.services.donation_state_machine.DONATION_LOCK_TIMEOUT", 0.01)
        redis_client.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            DonationStateMachine.advance(pending_session.donation_id, "chargeable")

        fake_stripe.create_charge.assert_not_called()


@pytest.mark.django_db
class TestRecordChargeResult:
    def test_success_completes(self, pending_session, fake_stripe):
        outcome = DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_1", succeeded=True
        ).data

        assert outcome.status == DonationStatus.COMPLETED
        assert reload(pending_session)[2].current_amount_cents == 970

    def test_failure_after_completion_is_ignored(self, pending_session, fake_stripe):
        DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_1", succeeded=True
        )

        outcome = DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_2", succeeded=False, failure_message="late"
        ).data

        assert outcome.status == DonationStatus.COMPLETED
        donation, _, campaign = reload(pending_session)
        assert donation.provider_charge_id == "ch_1"
        assert campaign.donors_count == 1

    def test_failure_fails(self, pending_session, fake_stripe):
        outcome = DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_1", succeeded=False, failure_message="Declined"
        ).data

        assert outcome.status == DonationStatus.FAILED
        assert outcome.message == "Payment failed: Declined"


@pytest.mark.django_db
class TestCreditCampaign:
    def test_credit_failure_schedules_retry(self, pending_session, fake_stripe, mocker):
        mocker.patch.object(
            CampaignLedgerService,
            "apply_delta",
            side_effect=InternalError("db down", error_code="LEDGER_WRITE_FAILED"),
        )
        apply_async = mocker.patch("payments.tasks.retry_campaign_credit.apply_async")
        fake_stripe.create_charge.return_value = make_charge("ch_1")

        outcome = DonationStateMachine.advance(pending_session.donation_id, "chargeable").data

        assert outcome.status == DonationStatus.COMPLETED
        assert outcome.credited is False
        assert reload(pending_session)[0].ledger_credited is False
        apply_async.assert_called_once_with(
            args=[str(pending_session.donation_id)], countdown=60
        )

    def test_settled_donation_picks_up_missing_credit(self, pending_session, fake_stripe, mocker):
        patched = mocker.patch.object(
            CampaignLedgerService,
            "apply_delta",
            side_effect=InternalError("db down"),
        )
        mocker.patch("payments.tasks.retry_campaign_credit.apply_async")
        DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_1", succeeded=True
        )
        mocker.stop(patched)

        outcome = DonationStateMachine.advance(pending_session.donation_id).data

        assert outcome.credited is True
        assert reload(pending_session)[2].current_amount_cents == 970

    def test_pending_donation_is_not_credited(self, pending_session):
        assert DonationStateMachine.credit_campaign(pending_session.donation_id) is False


@pytest.mark.django_db
class TestVerifyAndExpire:
    def test_verify_rejects_other_donor(self, pending_session, fake_stripe):
        from authentication.tests.factories import UserFactory

        with pytest.raises(PermissionDeniedError):
            DonationStateMachine.verify(pending_session.donation_id, UserFactory())

        fake_stripe.get_source_status.assert_not_called()

    def test_verify_by_admin(self, pending_session, fake_stripe, admin_user):
        fake_stripe.get_source_status.return_value = make_source(status="pending")

        result = DonationStateMachine.verify(pending_session.donation_id, admin_user)

        assert result.data.status == PaymentSessionStatus.PENDING

    def test_expire_session(self, pending_session):
        outcome = DonationStateMachine.expire_session(pending_session.donation_id).data

        assert outcome.status == DonationStatus.FAILED
        assert outcome.message == "Payment failed: Payment session expired"

    def test_expire_completed_donation_is_noop(self, pending_session, fake_stripe):
        DonationStateMachine.record_charge_result(
            pending_session.donation_id, "ch_1", succeeded=True
        )

        outcome = DonationStateMachine.expire_session(pending_session.donation_id).data

        assert outcome.status == DonationStatus.COMPLETED
