"""
Tests for RefundDecisionEngine.

Decisions are opened through the scanner (see conftest ``refund_decision``)
so every test starts from the state the daily sweep would leave behind:
campaign ledger already debited, one pending decision per donor.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from campaigns.models import Campaign, CampaignStatus
from campaigns.tests.factories import CampaignFactory
from core.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from notifications.models import Notification, NotificationEventType
from payments.adapters import IdempotencyKeyGenerator
from payments.exceptions import StripeAPIUnavailableError, StripeInvalidRequestError
from payments.models import Donation
from payments.state_machines import DonationStatus, PaymentMethod
from refunds.exceptions import (
    DecisionAlreadyResolvedError,
    DecisionDeadlinePassedError,
    InvalidRedirectTargetError,
    PayoutFailedError,
)
from refunds.models import (
    DecisionStatus,
    DecisionType,
    DonorRefundDecision,
    PlatformContribution,
    RefundLineItem,
    RefundRequestStatus,
)
from refunds.services import RefundDecisionEngine, RefundTriggerScanner
from refunds.tests.factories import credited_donation, make_refund


def cancel_and_scan(campaign):
    Campaign.objects.filter(pk=campaign.pk).update(status=CampaignStatus.CANCELLED)
    RefundTriggerScanner.scan()


def reload(decision):
    return DonorRefundDecision.objects.get(pk=decision.pk)


@pytest.fixture
def small_decision(campaign, donor):
    """Pending decision worth 3000, below the 5000 refund minimum."""
    credited_donation(campaign, donor, amount_cents=3030)
    cancel_and_scan(campaign)
    return DonorRefundDecision.objects.get(donor=donor)


@pytest.fixture
def failed_payout_decision(refund_decision, donor, fake_stripe):
    """Decided refund whose payout failed once."""
    fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")
    with pytest.raises(PayoutFailedError):
        RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)
    fake_stripe.create_refund.side_effect = None
    fake_stripe.create_refund.reset_mock()
    return reload(refund_decision)


# =============================================================================
# Submit Decision
# =============================================================================


@pytest.mark.django_db
class TestSubmitRefund:
    def test_refund_is_paid_back(self, refund_decision, donor, fake_stripe):
        line_item = refund_decision.line_items.get()

        result = RefundDecisionEngine.submit_decision(
            refund_decision.id, donor, DecisionType.REFUND
        )

        outcome = result.data
        assert result.success is True
        assert outcome.executed is True
        assert outcome.message == "Your refund has been sent"
        assert outcome.decision.status == DecisionStatus.EXECUTED
        assert outcome.decision.decision_type == DecisionType.REFUND

        fake_stripe.create_refund.assert_called_once_with(
            charge_id=line_item.donation.provider_charge_id,
            amount_cents=10000,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "refund", f"{refund_decision.id}:{line_item.donation_id}"
            ),
            metadata={
                "decision_id": str(refund_decision.id),
                "donation_id": str(line_item.donation_id),
            },
        )

        line_item.refresh_from_db()
        assert line_item.provider_refund_id == "re_test"
        assert line_item.refunded_at is not None
        assert Donation.objects.get(pk=line_item.donation_id).status == DonationStatus.REFUNDED
        refund_request = reload(refund_decision).refund_request
        assert refund_request.status == RefundRequestStatus.COMPLETED
        assert refund_request.completed_at is not None

    def test_refund_does_not_touch_campaign_ledger_again(
        self, refund_decision, donor, fake_stripe
    ):
        campaign_id = refund_decision.refund_request.campaign_id

        RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        campaign = Campaign.objects.get(pk=campaign_id)
        assert campaign.current_amount_cents == 0
        assert campaign.donors_count == 0

    def test_notifications(
        self, refund_decision, donor, fake_stripe, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        submitted = Notification.objects.get(
            event_type=NotificationEventType.REFUND_DECISION_SUBMITTED
        )
        executed = Notification.objects.get(
            event_type=NotificationEventType.REFUND_DECISION_EXECUTED
        )
        assert submitted.recipient_id == donor.id
        assert submitted.data["auto_converted"] is False
        assert executed.data["decision_type"] == DecisionType.REFUND
        assert executed.data["refund_amount_cents"] == 10000


@pytest.mark.django_db
class TestSubmitRedirect:
    def test_redirect_credits_target_campaign(
        self, refund_decision, donor, target_campaign, fake_stripe
    ):
        original = refund_decision.line_items.get().donation

        outcome = RefundDecisionEngine.submit_decision(
            refund_decision.id,
            donor,
            DecisionType.REDIRECT_TO_CAMPAIGN,
            redirect_campaign_id=target_campaign.id,
        ).data

        assert outcome.message == "Your donation has been redirected"
        decision = reload(refund_decision)
        assert decision.status == DecisionStatus.EXECUTED
        assert decision.redirect_campaign_id == target_campaign.id

        (redirected_id,) = decision.metadata["redirect_donation_ids"]
        redirected = Donation.objects.get(pk=redirected_id)
        assert redirected.campaign_id == target_campaign.id
        assert redirected.donor_id == donor.id
        assert redirected.amount_cents == 10000
        assert redirected.net_amount_cents == 10000
        assert redirected.payment_method == PaymentMethod.REDIRECTED
        assert redirected.status == DonationStatus.COMPLETED
        assert redirected.redirected_from_id == original.id
        assert redirected.ledger_credited is True

        target = Campaign.objects.get(pk=target_campaign.pk)
        assert target.current_amount_cents == 10000
        assert target.donors_count == 1
        fake_stripe.create_refund.assert_not_called()

    def test_redirected_funds_refund_against_original_charge(
        self, refund_decision, donor, target_campaign, fake_stripe
    ):
        original = refund_decision.line_items.get().donation
        RefundDecisionEngine.submit_decision(
            refund_decision.id,
            donor,
            DecisionType.REDIRECT_TO_CAMPAIGN,
            redirect_campaign_id=target_campaign.id,
        )

        cancel_and_scan(target_campaign)
        second = DonorRefundDecision.objects.get(
            donor=donor, refund_request__campaign=target_campaign
        )
        assert second.refund_amount_cents == 10000

        RefundDecisionEngine.submit_decision(second.id, donor, DecisionType.REFUND)

        call = fake_stripe.create_refund.call_args
        assert call.kwargs["charge_id"] == original.provider_charge_id
        assert call.kwargs["amount_cents"] == 10000

    def test_redirect_of_several_donations_refunds_each_original_charge(
        self, campaign, donor, target_campaign, fake_stripe
    ):
        first = credited_donation(campaign, donor, amount_cents=10030)
        second = credited_donation(campaign, donor, amount_cents=20030)
        cancel_and_scan(campaign)
        decision = DonorRefundDecision.objects.get(donor=donor)

        RefundDecisionEngine.submit_decision(
            decision.id,
            donor,
            DecisionType.REDIRECT_TO_CAMPAIGN,
            redirect_campaign_id=target_campaign.id,
        )

        redirected = Donation.objects.filter(campaign=target_campaign)
        assert {(d.redirected_from_id, d.amount_cents) for d in redirected} == {
            (first.id, 10000),
            (second.id, 20000),
        }
        target = Campaign.objects.get(pk=target_campaign.pk)
        assert target.current_amount_cents == 30000
        assert target.donors_count == 2

        cancel_and_scan(target_campaign)
        second_decision = DonorRefundDecision.objects.get(
            donor=donor, refund_request__campaign=target_campaign
        )
        assert second_decision.refund_amount_cents == 30000

        RefundDecisionEngine.submit_decision(second_decision.id, donor, DecisionType.REFUND)

        refunds = {
            (call.kwargs["charge_id"], call.kwargs["amount_cents"])
            for call in fake_stripe.create_refund.call_args_list
        }
        assert refunds == {
            (first.provider_charge_id, 10000),
            (second.provider_charge_id, 20000),
        }
        target = Campaign.objects.get(pk=target_campaign.pk)
        assert target.current_amount_cents == 0
        assert target.donors_count == 0

    @pytest.mark.parametrize(
        "target,error_code",
        [
            ("missing", "MISSING_CAMPAIGN"),
            ("unknown", "CAMPAIGN_NOT_FOUND"),
            ("same", "SAME_CAMPAIGN"),
            ("paused", "CAMPAIGN_NOT_ACTIVE"),
            ("funded", "CAMPAIGN_FUNDED"),
            ("ending", "CAMPAIGN_ENDING_SOON"),
        ],
    )
    def test_invalid_targets(self, refund_decision, donor, fake_stripe, target, error_code):
        targets = {
            "missing": lambda: None,
            "unknown": uuid.uuid4,
            "same": lambda: refund_decision.refund_request.campaign_id,
            "paused": lambda: CampaignFactory(status=CampaignStatus.PAUSED).id,
            "funded": lambda: CampaignFactory(
                goal_amount_cents=5000, current_amount_cents=5000
            ).id,
            "ending": lambda: CampaignFactory(end_date=timezone.now() + timedelta(days=3)).id,
        }

        with pytest.raises(InvalidRedirectTargetError) as exc_info:
            RefundDecisionEngine.submit_decision(
                refund_decision.id,
                donor,
                DecisionType.REDIRECT_TO_CAMPAIGN,
                redirect_campaign_id=targets[target](),
            )

        assert exc_info.value.error_code == error_code
        assert reload(refund_decision).status == DecisionStatus.PENDING


@pytest.mark.django_db
class TestSubmitPlatformDonation:
    def test_platform_contribution_recorded(self, refund_decision, donor, fake_stripe):
        outcome = RefundDecisionEngine.submit_decision(
            refund_decision.id, donor, DecisionType.DONATE_TO_PLATFORM
        ).data

        assert outcome.message == "Thank you for supporting the platform"
        contribution = PlatformContribution.objects.get(decision=refund_decision)
        assert contribution.amount_cents == 10000
        assert contribution.donor_id == donor.id
        assert contribution.source_campaign_id == refund_decision.refund_request.campaign_id
        assert contribution.metadata == {"auto_converted": False}
        fake_stripe.create_refund.assert_not_called()

    def test_small_refund_is_converted(self, small_decision, donor, fake_stripe):
        outcome = RefundDecisionEngine.submit_decision(
            small_decision.id, donor, DecisionType.REFUND
        ).data

        decision = outcome.decision
        assert decision.decision_type == DecisionType.DONATE_TO_PLATFORM
        assert decision.status == DecisionStatus.EXECUTED
        assert decision.metadata["auto_converted"] is True
        assert decision.metadata["original_decision_type"] == "refund"
        assert decision.metadata["reason"] == "below_minimum_refund_threshold"
        assert decision.metadata["minimum_amount_cents"] == 5000
        assert PlatformContribution.objects.get(decision=small_decision).metadata == {
            "auto_converted": True
        }
        fake_stripe.create_refund.assert_not_called()

    def test_small_redirect_is_not_converted(
        self, small_decision, donor, target_campaign, fake_stripe
    ):
        decision = RefundDecisionEngine.submit_decision(
            small_decision.id,
            donor,
            DecisionType.REDIRECT_TO_CAMPAIGN,
            redirect_campaign_id=target_campaign.id,
        ).data.decision

        assert decision.decision_type == DecisionType.REDIRECT_TO_CAMPAIGN
        assert "auto_converted" not in decision.metadata


@pytest.mark.django_db
class TestSubmitRejections:
    def test_second_decision_conflicts(self, refund_decision, donor, fake_stripe):
        RefundDecisionEngine.submit_decision(
            refund_decision.id, donor, DecisionType.DONATE_TO_PLATFORM
        )

        with pytest.raises(DecisionAlreadyResolvedError) as exc_info:
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        assert exc_info.value.error_code == "DECISION_ALREADY_RESOLVED"
        assert exc_info.value.http_status == 409
        assert reload(refund_decision).decision_type == DecisionType.DONATE_TO_PLATFORM
        fake_stripe.create_refund.assert_not_called()

    def test_deadline_passed(self, expired_decision, donor, fake_stripe):
        with pytest.raises(DecisionDeadlinePassedError) as exc_info:
            RefundDecisionEngine.submit_decision(expired_decision.id, donor, DecisionType.REFUND)

        assert exc_info.value.error_code == "DECISION_DEADLINE_PASSED"
        assert reload(expired_decision).status == DecisionStatus.PENDING

    def test_other_donor_is_denied(self, refund_decision, other_donor, fake_stripe):
        with pytest.raises(PermissionDeniedError):
            RefundDecisionEngine.submit_decision(
                refund_decision.id, other_donor, DecisionType.REFUND
            )

        assert reload(refund_decision).status == DecisionStatus.PENDING

    def test_unknown_decision(self, donor, fake_stripe):
        with pytest.raises(NotFoundError) as exc_info:
            RefundDecisionEngine.submit_decision(uuid.uuid4(), donor, DecisionType.REFUND)

        assert exc_info.value.error_code == "DECISION_NOT_FOUND"

    def test_unknown_decision_type(self, refund_decision, donor, fake_stripe):
        with pytest.raises(ValidationError) as exc_info:
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, "keep_it")

        assert exc_info.value.error_code == "INVALID_DECISION_TYPE"


# =============================================================================
# Payouts
# =============================================================================


@pytest.mark.django_db
class TestPayouts:
    def test_transient_failure_is_retried_with_same_key(
        self, refund_decision, donor, fake_stripe
    ):
        fake_stripe.create_refund.side_effect = [
            StripeAPIUnavailableError("Stripe is down"),
            make_refund(),
        ]

        outcome = RefundDecisionEngine.submit_decision(
            refund_decision.id, donor, DecisionType.REFUND
        ).data

        assert outcome.executed is True
        assert fake_stripe.create_refund.call_count == 2
        first, second = fake_stripe.create_refund.call_args_list
        assert first.kwargs["idempotency_key"] == second.kwargs["idempotency_key"]

    def test_retries_are_bounded(self, refund_decision, donor, fake_stripe):
        fake_stripe.create_refund.side_effect = StripeAPIUnavailableError("Stripe is down")

        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        assert fake_stripe.create_refund.call_count == 3

    def test_permanent_failure_leaves_decision_decided(
        self, refund_decision, donor, fake_stripe, django_capture_on_commit_callbacks
    ):
        fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")

        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(PayoutFailedError) as exc_info:
                RefundDecisionEngine.submit_decision(
                    refund_decision.id, donor, DecisionType.REFUND
                )

        assert exc_info.value.http_status == 502
        assert fake_stripe.create_refund.call_count == 1
        decision = reload(refund_decision)
        assert decision.status == DecisionStatus.DECIDED
        assert decision.execution_attempts == 1
        assert decision.last_error == "Charge is disputed"
        assert not RefundLineItem.objects.filter(provider_refund_id__isnull=False).exists()
        assert Notification.objects.filter(
            event_type=NotificationEventType.REFUND_PAYOUT_FAILED, recipient_id=donor.id
        ).exists()

    def test_failed_refund_status_is_a_failure(self, refund_decision, donor, fake_stripe):
        fake_stripe.create_refund.return_value = make_refund(status="failed")

        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        assert reload(refund_decision).status == DecisionStatus.DECIDED

    def test_rejected_refund_is_retried_with_a_new_key(
        self, refund_decision, donor, fake_stripe
    ):
        fake_stripe.create_refund.return_value = make_refund(status="failed")
        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        fake_stripe.create_refund.return_value = make_refund("re_retry")
        outcome = RefundDecisionEngine.execute(refund_decision.id).data

        assert outcome.executed is True
        first, second = fake_stripe.create_refund.call_args_list
        assert first.kwargs["idempotency_key"] != second.kwargs["idempotency_key"]
        line_item = refund_decision.line_items.get()
        assert second.kwargs["idempotency_key"] == IdempotencyKeyGenerator.generate(
            "refund", f"{refund_decision.id}:{line_item.donation_id}", attempt=2
        )
        assert line_item.provider_refund_id == "re_retry"

    def test_transient_exhaustion_keeps_the_key(self, refund_decision, donor, fake_stripe):
        fake_stripe.create_refund.side_effect = StripeAPIUnavailableError("Stripe is down")
        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        fake_stripe.create_refund.side_effect = None
        RefundDecisionEngine.execute(refund_decision.id)

        keys = {
            call.kwargs["idempotency_key"]
            for call in fake_stripe.create_refund.call_args_list
        }
        assert len(keys) == 1
        assert refund_decision.line_items.get().payout_attempt == 1

    def test_execute_after_failure_pays_only_remaining_items(self, campaign, donor, fake_stripe):
        first = credited_donation(campaign, donor, amount_cents=10030)
        second = credited_donation(campaign, donor, amount_cents=20030)
        cancel_and_scan(campaign)
        decision = DonorRefundDecision.objects.get(donor=donor)
        def refund_first_only(**kwargs):
            if kwargs["metadata"]["donation_id"] == str(second.id):
                raise StripeInvalidRequestError("Charge is disputed")
            return make_refund("re_first")

        fake_stripe.create_refund.side_effect = refund_first_only

        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(decision.id, donor, DecisionType.REFUND)

        paid = RefundLineItem.objects.get(donation=first)
        assert paid.provider_refund_id == "re_first"
        assert Donation.objects.get(pk=first.pk).status == DonationStatus.REFUNDED
        assert Donation.objects.get(pk=second.pk).status == DonationStatus.COMPLETED

        fake_stripe.create_refund.reset_mock(side_effect=True)
        fake_stripe.create_refund.return_value = make_refund("re_second", amount_cents=20000)

        outcome = RefundDecisionEngine.execute(decision.id).data

        assert outcome.executed is True
        fake_stripe.create_refund.assert_called_once()
        assert fake_stripe.create_refund.call_args.kwargs["metadata"]["donation_id"] == str(
            second.id
        )
        assert Donation.objects.get(pk=second.pk).status == DonationStatus.REFUNDED


# =============================================================================
# Execute
# =============================================================================


@pytest.mark.django_db
class TestExecute:
    def test_pending_decision_cannot_execute(self, refund_decision, fake_stripe):
        with pytest.raises(ConflictError) as exc_info:
            RefundDecisionEngine.execute(refund_decision.id)

        assert exc_info.value.error_code == "DECISION_NOT_MADE"

    def test_executed_decision_is_noop(self, refund_decision, donor, fake_stripe):
        RefundDecisionEngine.submit_decision(refund_decision.id, donor, DecisionType.REFUND)

        outcome = RefundDecisionEngine.execute(refund_decision.id).data

        assert outcome.executed is False
        assert outcome.message == "This decision has already been carried out"
        assert fake_stripe.create_refund.call_count == 1

    def test_redirect_ledger_failure_is_recorded(
        self, refund_decision, donor, target_campaign, fake_stripe, mocker
    ):
        mocker.patch(
            "refunds.services.decision_engine.CampaignLedgerService.apply_delta",
            side_effect=InternalError("Campaign ledger update failed"),
        )

        with pytest.raises(InternalError):
            RefundDecisionEngine.submit_decision(
                refund_decision.id,
                donor,
                DecisionType.REDIRECT_TO_CAMPAIGN,
                redirect_campaign_id=target_campaign.id,
            )

        decision = reload(refund_decision)
        assert decision.status == DecisionStatus.DECIDED
        assert decision.execution_attempts == 1
        assert not Donation.objects.filter(campaign=target_campaign).exists()


# =============================================================================
# Sweep Operations
# =============================================================================


@pytest.mark.django_db
class TestAutoRefundExpired:
    def test_expired_decision_is_refunded(self, expired_decision, fake_stripe):
        result = RefundDecisionEngine.auto_refund_expired()

        assert result.processed == 1
        assert result.executed == 1
        assert result.decision_ids == [str(expired_decision.id)]
        decision = reload(expired_decision)
        assert decision.status == DecisionStatus.EXECUTED
        assert decision.decision_type == DecisionType.REFUND
        fake_stripe.create_refund.assert_called_once()

    def test_open_decisions_are_left_alone(self, refund_decision, fake_stripe):
        result = RefundDecisionEngine.auto_refund_expired()

        assert result.processed == 0
        assert reload(refund_decision).status == DecisionStatus.PENDING

    def test_small_amounts_are_refunded_not_converted(self, small_decision, fake_stripe):
        DonorRefundDecision.objects.filter(pk=small_decision.pk).update(
            decision_deadline=timezone.now() - timedelta(hours=1)
        )

        RefundDecisionEngine.auto_refund_expired()

        decision = reload(small_decision)
        assert decision.decision_type == DecisionType.REFUND
        assert decision.status == DecisionStatus.EXECUTED
        assert fake_stripe.create_refund.call_args.kwargs["amount_cents"] == 3000
        assert not PlatformContribution.objects.exists()

    def test_payout_failure_is_counted(self, expired_decision, fake_stripe):
        fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")

        result = RefundDecisionEngine.auto_refund_expired()

        assert result.processed == 1
        assert result.failed == 1
        assert result.executed == 0
        decision = reload(expired_decision)
        assert decision.status == DecisionStatus.AUTO_REFUNDED
        assert decision.execution_attempts == 1

    def test_locked_decision_is_skipped(self, expired_decision, fake_stripe, redis_client, mocker):
        mocker.patch("refunds.services.decision_engine.DECISION_LOCK_TIMEOUT", 0)
        redis_client.set.return_value = False

        result = RefundDecisionEngine.auto_refund_expired()

        assert result.skipped == 1
        assert reload(expired_decision).status == DecisionStatus.PENDING

    def test_heartbeat_after_each_decision(self, expired_decision, fake_stripe, mocker):
        fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")
        heartbeat = mocker.Mock()

        result = RefundDecisionEngine.auto_refund_expired(heartbeat=heartbeat)

        assert result.failed == 1
        heartbeat.assert_called_once_with()


@pytest.mark.django_db
class TestRetryIncompleteExecutions:
    def test_failed_payout_is_retried(self, failed_payout_decision, fake_stripe):
        DonorRefundDecision.objects.filter(pk=failed_payout_decision.pk).update(
            decided_at=timezone.now() - timedelta(minutes=10)
        )

        result = RefundDecisionEngine.retry_incomplete_executions()

        assert result.processed == 1
        assert result.executed == 1
        assert reload(failed_payout_decision).status == DecisionStatus.EXECUTED
        fake_stripe.create_refund.assert_called_once()

    def test_recent_decisions_are_left_to_the_request(self, failed_payout_decision, fake_stripe):
        result = RefundDecisionEngine.retry_incomplete_executions()

        assert result.processed == 0
        fake_stripe.create_refund.assert_not_called()

    def test_exhausted_decisions_are_left_to_operators(self, failed_payout_decision, fake_stripe):
        DonorRefundDecision.objects.filter(pk=failed_payout_decision.pk).update(
            decided_at=timezone.now() - timedelta(minutes=10),
            execution_attempts=10,
        )

        result = RefundDecisionEngine.retry_incomplete_executions()

        assert result.processed == 0

    def test_still_failing_is_counted(self, failed_payout_decision, fake_stripe):
        DonorRefundDecision.objects.filter(pk=failed_payout_decision.pk).update(
            decided_at=timezone.now() - timedelta(minutes=10)
        )
        fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")

        result = RefundDecisionEngine.retry_incomplete_executions()

        assert result.failed == 1
        assert reload(failed_payout_decision).execution_attempts == 2

    def test_heartbeat_after_each_decision(self, failed_payout_decision, fake_stripe, mocker):
        DonorRefundDecision.objects.filter(pk=failed_payout_decision.pk).update(
            decided_at=timezone.now() - timedelta(minutes=10)
        )
        heartbeat = mocker.Mock()

        result = RefundDecisionEngine.retry_incomplete_executions(heartbeat=heartbeat)

        assert result.executed == 1
        heartbeat.assert_called_once_with()


@pytest.mark.django_db
class TestRefreshRequestStatus:
    @pytest.fixture
    def two_decisions(self, campaign, donor, other_donor):
        credited_donation(campaign, donor, amount_cents=10030)
        credited_donation(campaign, other_donor, amount_cents=10030)
        cancel_and_scan(campaign)
        return (
            DonorRefundDecision.objects.get(donor=donor),
            DonorRefundDecision.objects.get(donor=other_donor),
        )

    def test_pending_until_someone_decides(self, two_decisions):
        first, _ = two_decisions

        refund_request = RefundDecisionEngine.refresh_request_status(first.refund_request_id)

        assert refund_request.status == RefundRequestStatus.PENDING_DONOR_DECISION

    def test_processing_while_others_pending(self, two_decisions, donor, fake_stripe):
        first, _ = two_decisions

        RefundDecisionEngine.submit_decision(first.id, donor, DecisionType.REFUND)

        assert reload(first).refund_request.status == RefundRequestStatus.PROCESSING

    def test_partially_completed_when_one_execution_failed(
        self, two_decisions, donor, other_donor, fake_stripe
    ):
        first, second = two_decisions
        RefundDecisionEngine.submit_decision(first.id, donor, DecisionType.REFUND)
        fake_stripe.create_refund.side_effect = StripeInvalidRequestError("Charge is disputed")
        with pytest.raises(PayoutFailedError):
            RefundDecisionEngine.submit_decision(second.id, other_donor, DecisionType.REFUND)

        refund_request = RefundDecisionEngine.refresh_request_status(first.refund_request_id)

        assert refund_request.status == RefundRequestStatus.PARTIALLY_COMPLETED
        assert refund_request.completed_at is None

    def test_completed_when_all_executed(self, two_decisions, donor, other_donor, fake_stripe):
        first, second = two_decisions

        RefundDecisionEngine.submit_decision(first.id, donor, DecisionType.DONATE_TO_PLATFORM)
        RefundDecisionEngine.submit_decision(second.id, other_donor, DecisionType.REFUND)

        refund_request = reload(second).refund_request
        assert refund_request.status == RefundRequestStatus.COMPLETED
        assert refund_request.completed_at is not None
