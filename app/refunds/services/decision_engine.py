"""
Refund decision engine.

Resolves DonorRefundDecisions and executes their outcome exactly once.

    pending ──submit_decision──► decided ──┐
       │                                   ├──execute──► executed
       └──deadline lapsed (sweep)──► auto_refunded ──┘

Outcomes:
    refund                Pay each line item back against the original
                          charge (Stripe refund, retried with backoff).
                          The campaign ledger was already debited when the
                          refund request was opened.
    redirect_to_campaign  Create a completed, redirected Donation on the
                          target campaign and credit its ledger.
    donate_to_platform    Record a PlatformContribution.

Decision and execution of one decision run under
DistributedLock("refund-decision:{id}"). Refund payouts are committed
per line item, so a failed payout keeps the items already paid and the
next execution only pays the rest.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.db.models import Count, F, Sum
from django.utils import timezone

from campaigns.models import Campaign, CampaignStatus
from campaigns.services import CampaignLedgerService
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import BaseService, ServiceResult
from notifications.models import NotificationEventType
from notifications.services import NotificationService
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter, backoff_delay
from payments.exceptions import LockAcquisitionError, StripeError
from payments.locks import DistributedLock, refund_decision_lock_key
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
    RefundRequest,
    RefundRequestStatus,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any
    from uuid import UUID

    from authentication.models import User
    from payments.adapters import RefundResult

DECISION_LOCK_TTL = 120
DECISION_LOCK_TIMEOUT = 10

# Executions already retried this often are left to operators
MAX_EXECUTION_ATTEMPTS = 10

# Decided decisions younger than this are still being executed by the donor request
EXECUTION_RETRY_GRACE = timedelta(minutes=5)

MAX_REDIRECT_CHAIN = 10


@dataclass
class DecisionOutcome:
    """
    Result of submitting or executing a decision.

    Attributes:
        decision: The decision as stored after this call
        executed: Whether this call executed the outcome
        message: Human-readable status for the donor
    """

    decision: DonorRefundDecision
    executed: bool
    message: str


@dataclass
class BatchResult:
    """Counts from a sweep pass over many decisions."""

    processed: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    decision_ids: list[str] = field(default_factory=list)


class RefundDecisionEngine(BaseService):
    """
    Donor decisions, deadline auto-refunds and outcome execution.

    All methods are class methods - no instance state is maintained.
    """

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        cls._stripe_adapter = adapter

    # =========================================================================
    # Donor Decision
    # =========================================================================

    @classmethod
    def submit_decision(
        cls,
        decision_id: UUID | str,
        donor: User,
        decision_type: str,
        redirect_campaign_id: UUID | str | None = None,
    ) -> ServiceResult[DecisionOutcome]:
        """
        Record a donor's choice and execute it.

        A refund below REFUND_MINIMUM_AMOUNT_CENTS is converted to a
        platform donation (metadata "auto_converted").

        Raises:
            ValidationError: Unknown decision type
            NotFoundError: Unknown decision
            PermissionDeniedError: Decision belongs to another donor
            DecisionAlreadyResolvedError: Decision is no longer pending
            DecisionDeadlinePassedError: Deadline passed
            InvalidRedirectTargetError: Redirect campaign not acceptable
            PayoutFailedError: The refund could not be paid after retries;
                the decision stays decided and the sweep retries it
        """
        if decision_type not in DecisionType.values:
            raise ValidationError(
                f"Unknown decision type '{decision_type}'",
                error_code="INVALID_DECISION_TYPE",
                details={"allowed": list(DecisionType.values)},
            )

        decision = cls._get_decision(decision_id)
        if decision.donor_id != donor.pk:
            raise PermissionDeniedError(
                "You can only decide on your own refunds",
                error_code="NOT_DECISION_OWNER",
            )

        with DistributedLock(
            refund_decision_lock_key(decision.id),
            ttl=DECISION_LOCK_TTL,
            timeout=DECISION_LOCK_TIMEOUT,
        ):
            with cls.atomic():
                decision = (
                    DonorRefundDecision.objects.select_for_update()
                    .select_related("refund_request")
                    .get(pk=decision.id)
                )
                cls._ensure_open(decision)

                redirect_campaign = None
                if decision_type == DecisionType.REDIRECT_TO_CAMPAIGN:
                    redirect_campaign = cls._validate_redirect_target(
                        decision, redirect_campaign_id
                    )

                final_type = decision_type
                minimum = getattr(settings, "REFUND_MINIMUM_AMOUNT_CENTS", 5000)
                if (
                    decision_type == DecisionType.REFUND
                    and decision.refund_amount_cents < minimum
                ):
                    final_type = DecisionType.DONATE_TO_PLATFORM
                    decision.metadata = {
                        **decision.metadata,
                        "auto_converted": True,
                        "original_decision_type": DecisionType.REFUND,
                        "reason": "below_minimum_refund_threshold",
                        "minimum_amount_cents": minimum,
                    }

                decision.decide(final_type, redirect_campaign=redirect_campaign)
                decision.save()

                NotificationService.notify(
                    NotificationEventType.REFUND_DECISION_SUBMITTED,
                    recipient_id=decision.donor_id,
                    subject_id=str(decision.id),
                    data={
                        "decision_type": final_type,
                        "auto_converted": final_type != decision_type,
                        "refund_amount_cents": decision.refund_amount_cents,
                    },
                )

            cls.get_logger().info(
                "Refund decision submitted",
                extra={
                    "decision_id": str(decision.id),
                    "decision_type": final_type,
                    "requested_type": decision_type,
                    "redirect_campaign_id": str(redirect_campaign_id or ""),
                },
            )

            outcome = cls._execute_locked(decision.id)

        return ServiceResult.success(outcome)

    @classmethod
    def _ensure_open(cls, decision: DonorRefundDecision) -> None:
        if decision.status != DecisionStatus.PENDING:
            raise DecisionAlreadyResolvedError(
                "This refund decision has already been made",
                details={"decision_id": str(decision.id), "status": decision.status},
            )
        if decision.is_past_deadline:
            raise DecisionDeadlinePassedError(
                "The decision deadline has passed; your refund will be processed automatically",
                details={
                    "decision_id": str(decision.id),
                    "decision_deadline": decision.decision_deadline.isoformat(),
                },
            )

    @classmethod
    def _validate_redirect_target(
        cls,
        decision: DonorRefundDecision,
        campaign_id: UUID | str | None,
    ) -> Campaign:
        if not campaign_id:
            raise InvalidRedirectTargetError(
                "A campaign to redirect the funds to is required",
                error_code="MISSING_CAMPAIGN",
            )

        campaign = Campaign.objects.filter(pk=campaign_id).first()
        if campaign is None:
            raise InvalidRedirectTargetError(
                "Selected campaign not found",
                error_code="CAMPAIGN_NOT_FOUND",
                details={"campaign_id": str(campaign_id)},
            )
        if campaign.id == decision.refund_request.campaign_id:
            raise InvalidRedirectTargetError(
                "Cannot redirect funds to the same campaign",
                error_code="SAME_CAMPAIGN",
            )
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidRedirectTargetError(
                "Selected campaign is not active",
                error_code="CAMPAIGN_NOT_ACTIVE",
            )
        if campaign.is_fully_funded:
            raise InvalidRedirectTargetError(
                "Selected campaign is already fully funded",
                error_code="CAMPAIGN_FUNDED",
            )

        min_days = getattr(settings, "REDIRECT_MIN_DAYS_REMAINING", 7)
        if campaign.end_date and campaign.end_date < timezone.now() + timedelta(days=min_days):
            raise InvalidRedirectTargetError(
                f"Selected campaign ends too soon. Please choose a campaign with at least "
                f"{min_days} days remaining.",
                error_code="CAMPAIGN_ENDING_SOON",
            )
        return campaign

    # =========================================================================
    # Execution
    # =========================================================================

    @classmethod
    def execute(cls, decision_id: UUID | str) -> ServiceResult[DecisionOutcome]:
        """
        Execute a decided or auto-refunded decision.

        Re-invoking on an executed decision is a no-op.

        Raises:
            NotFoundError: Unknown decision
            ConflictError: Decision is still pending
            PayoutFailedError: Refund payout failed after retries
            InternalError: Redirect ledger credit failed
        """
        with DistributedLock(
            refund_decision_lock_key(decision_id),
            ttl=DECISION_LOCK_TTL,
            timeout=DECISION_LOCK_TIMEOUT,
        ):
            return ServiceResult.success(cls._execute_locked(decision_id))

    @classmethod
    def _execute_locked(cls, decision_id: UUID | str) -> DecisionOutcome:
        decision = cls._get_decision(decision_id)

        if decision.status == DecisionStatus.EXECUTED:
            return DecisionOutcome(
                decision=decision,
                executed=False,
                message="This decision has already been carried out",
            )
        if decision.status == DecisionStatus.PENDING:
            raise ConflictError(
                "No decision has been made yet",
                error_code="DECISION_NOT_MADE",
                details={"decision_id": str(decision.id)},
            )

        try:
            if decision.decision_type == DecisionType.REFUND:
                cls._pay_back_line_items(decision)
                decision = cls._mark_executed(decision.id)
                message = "Your refund has been sent"
            elif decision.decision_type == DecisionType.REDIRECT_TO_CAMPAIGN:
                decision = cls._redirect(decision.id)
                message = "Your donation has been redirected"
            else:
                decision = cls._contribute_to_platform(decision.id)
                message = "Thank you for supporting the platform"
        except (InternalError, DatabaseError) as e:
            cls._record_failure(decision.id, str(e))
            cls.get_logger().critical(
                "Refund decision execution failed",
                extra={"decision_id": str(decision.id), "error": str(e)},
                exc_info=True,
            )
            raise

        NotificationService.notify(
            NotificationEventType.REFUND_DECISION_EXECUTED,
            recipient_id=decision.donor_id,
            subject_id=str(decision.id),
            data={
                "decision_type": decision.decision_type,
                "refund_amount_cents": decision.refund_amount_cents,
            },
        )
        cls.get_logger().info(
            "Refund decision executed",
            extra={
                "decision_id": str(decision.id),
                "decision_type": decision.decision_type,
                "refund_amount_cents": decision.refund_amount_cents,
            },
        )

        cls.refresh_request_status(decision.refund_request_id)
        return DecisionOutcome(decision=decision, executed=True, message=message)

    @classmethod
    def _mark_executed(cls, decision_id: UUID | str, **metadata) -> DonorRefundDecision:
        with cls.atomic():
            decision = DonorRefundDecision.objects.select_for_update().get(pk=decision_id)
            decision.execute()
            if metadata:
                decision.metadata = {**decision.metadata, **metadata}
            decision.save()
        return decision

    # -------------------------------------------------------------------------
    # Refund
    # -------------------------------------------------------------------------

    @classmethod
    def _pay_back_line_items(cls, decision: DonorRefundDecision) -> None:
        items = (
            RefundLineItem.objects.filter(decision=decision, provider_refund_id__isnull=True)
            .select_related("donation")
            .order_by("created_at")
        )
        for item in items:
            charge_id = cls._charge_id_for(item.donation)
            if charge_id is None:
                cls._payout_failed(
                    decision,
                    item,
                    "Donation has no charge to refund",
                )

            try:
                refund = cls._create_refund(decision, item, charge_id)
            except StripeError as e:
                if not e.is_retryable:
                    cls._next_payout_attempt(item.pk)
                cls._payout_failed(decision, item, e.message, cause=e)

            if refund.status == "failed":
                cls._next_payout_attempt(item.pk)
                cls._payout_failed(decision, item, "Refund was rejected by the payment provider")

            cls._record_refund(item.pk, refund)

    @classmethod
    def _create_refund(
        cls,
        decision: DonorRefundDecision,
        item: RefundLineItem,
        charge_id: str,
    ) -> RefundResult:
        """Create the provider refund, retrying transient failures with backoff."""
        adapter = cls.get_stripe_adapter()
        max_attempts = max(1, getattr(settings, "REFUND_PAYOUT_MAX_ATTEMPTS", 3))
        idempotency_key = IdempotencyKeyGenerator.generate(
            "refund", f"{decision.id}:{item.donation_id}", attempt=item.payout_attempt
        )

        for attempt in range(max_attempts):
            try:
                return adapter.create_refund(
                    charge_id=charge_id,
                    amount_cents=item.amount_cents,
                    idempotency_key=idempotency_key,
                    metadata={
                        "decision_id": str(decision.id),
                        "donation_id": str(item.donation_id),
                    },
                )
            except StripeError as e:
                if not e.is_retryable or attempt + 1 >= max_attempts:
                    raise
                delay = backoff_delay(attempt)
                cls.get_logger().warning(
                    "Retrying refund payout",
                    extra={
                        "decision_id": str(decision.id),
                        "donation_id": str(item.donation_id),
                        "attempt": attempt + 1,
                        "delay": delay,
                    },
                )
                time.sleep(delay)

    @classmethod
    def _next_payout_attempt(cls, line_item_id: UUID) -> None:
        """
        Move a line item to a fresh refund idempotency key.

        Only for definitive rejections: Stripe replays the stored result of
        a key for 24 hours, so reusing it could never succeed. Transient
        failures keep the key since the refund may already exist.
        """
        RefundLineItem.objects.filter(pk=line_item_id).update(
            payout_attempt=F("payout_attempt") + 1
        )

    @classmethod
    def _record_refund(cls, line_item_id: UUID, refund: RefundResult) -> None:
        """Store the provider refund; refund the donation once fully paid back."""
        with cls.atomic():
            item = RefundLineItem.objects.select_for_update().get(pk=line_item_id)
            item.provider_refund_id = refund.id
            item.refunded_at = timezone.now()
            item.save(update_fields=["provider_refund_id", "refunded_at", "updated_at"])

            donation = Donation.objects.select_for_update().get(pk=item.donation_id)
            refunded_total = (
                RefundLineItem.objects.filter(
                    donation=donation, provider_refund_id__isnull=False
                ).aggregate(total=Sum("amount_cents"))["total"]
                or 0
            )
            if (
                donation.status == DonationStatus.COMPLETED
                and refunded_total >= donation.net_amount_cents
            ):
                donation.refund()
                donation.save()

    @classmethod
    def _charge_id_for(cls, donation: Donation) -> str | None:
        """The charge behind a donation, following redirects to the original."""
        current = donation
        for _ in range(MAX_REDIRECT_CHAIN):
            if current.provider_charge_id:
                return current.provider_charge_id
            if current.redirected_from_id is None:
                return None
            current = Donation.objects.get(pk=current.redirected_from_id)
        return None

    @classmethod
    def _payout_failed(
        cls,
        decision: DonorRefundDecision,
        item: RefundLineItem,
        reason: str,
        cause: Exception | None = None,
    ) -> None:
        cls._record_failure(decision.id, reason)
        cls.get_logger().error(
            "Refund payout failed",
            extra={
                "decision_id": str(decision.id),
                "donation_id": str(item.donation_id),
                "amount_cents": item.amount_cents,
                "reason": reason,
            },
        )
        NotificationService.notify(
            NotificationEventType.REFUND_PAYOUT_FAILED,
            recipient_id=decision.donor_id,
            subject_id=str(decision.id),
            data={"reason": reason, "refund_amount_cents": decision.refund_amount_cents},
        )
        raise PayoutFailedError(
            "We could not send your refund yet. It will be retried automatically.",
            details={"decision_id": str(decision.id), "reason": reason},
        ) from cause

    # -------------------------------------------------------------------------
    # Redirect / Platform
    # -------------------------------------------------------------------------

    @classmethod
    def _redirect(cls, decision_id: UUID | str) -> DonorRefundDecision:
        """
        Move the decision's funds to its redirect campaign.

        The new donations, their ledger credit and the EXECUTED transition
        commit together or not at all.
        """
        with cls.atomic():
            decision = (
                DonorRefundDecision.objects.select_for_update()
                .select_related("refund_request")
                .get(pk=decision_id)
            )
            # One redirected donation per origin donation, so a later refund
            # on the target campaign goes back to the charge that paid for it
            redirected = []
            credited_at = timezone.now()
            for item in decision.line_items.select_related("donation").order_by("created_at"):
                donation = Donation.objects.create(
                    campaign_id=decision.redirect_campaign_id,
                    donor_id=decision.donor_id,
                    amount_cents=item.amount_cents,
                    currency=item.donation.currency,
                    payment_method=PaymentMethod.REDIRECTED,
                    redirected_from=item.donation,
                    ledger_credited=True,
                    credited_at=credited_at,
                    metadata={
                        "refund_decision_id": str(decision.id),
                        "source_campaign_id": str(decision.refund_request.campaign_id),
                    },
                )
                donation.complete()
                donation.save()
                redirected.append(donation)

            CampaignLedgerService.apply_delta(
                decision.redirect_campaign_id,
                sum(donation.amount_cents for donation in redirected),
                len(redirected),
            )

            decision.execute()
            decision.metadata = {
                **decision.metadata,
                "redirect_donation_ids": [str(donation.id) for donation in redirected],
            }
            decision.save()

        return decision

    @classmethod
    def _contribute_to_platform(cls, decision_id: UUID | str) -> DonorRefundDecision:
        with cls.atomic():
            decision = (
                DonorRefundDecision.objects.select_for_update()
                .select_related("refund_request")
                .get(pk=decision_id)
            )
            PlatformContribution.objects.create(
                decision=decision,
                donor_id=decision.donor_id,
                source_campaign_id=decision.refund_request.campaign_id,
                amount_cents=decision.refund_amount_cents,
                metadata={
                    "auto_converted": bool(decision.metadata.get("auto_converted")),
                },
            )
            decision.execute()
            decision.save()
        return decision

    @classmethod
    def _record_failure(cls, decision_id: UUID | str, error: str) -> None:
        with cls.atomic():
            decision = DonorRefundDecision.objects.select_for_update().get(pk=decision_id)
            decision.record_execution_failure(error)
            decision.save(update_fields=["execution_attempts", "last_error"])

    # =========================================================================
    # Sweep Operations
    # =========================================================================

    @classmethod
    def auto_refund_expired(
        cls,
        now: datetime | None = None,
        heartbeat: Callable[[], Any] | None = None,
    ) -> BatchResult:
        """
        Resolve every pending decision past its deadline as a refund.

        Each decision is auto-refunded and executed under its lock; a
        failure is counted and the decision is retried by the next sweep
        through retry_incomplete_executions.

        Args:
            now: Reference time for the deadline check
            heartbeat: Called after each decision; the sweep passes its
                lock's extend so payout backoff cannot outlive the lock
        """
        logger = cls.get_logger()
        now = now or timezone.now()
        result = BatchResult()

        expired_ids = list(
            DonorRefundDecision.objects.filter(
                status=DecisionStatus.PENDING,
                decision_deadline__lt=now,
            ).values_list("id", flat=True)
        )

        for decision_id in expired_ids:
            try:
                with DistributedLock(
                    refund_decision_lock_key(decision_id),
                    ttl=DECISION_LOCK_TTL,
                    timeout=DECISION_LOCK_TIMEOUT,
                ):
                    with cls.atomic():
                        decision = DonorRefundDecision.objects.select_for_update().get(
                            pk=decision_id
                        )
                        if (
                            decision.status != DecisionStatus.PENDING
                            or decision.decision_deadline >= now
                        ):
                            result.skipped += 1
                            continue
                        decision.auto_refund()
                        decision.save()

                    result.processed += 1
                    result.decision_ids.append(str(decision_id))
                    logger.info(
                        "Refund decision auto-refunded after deadline",
                        extra={"decision_id": str(decision_id)},
                    )
                    cls._execute_locked(decision_id)
                    result.executed += 1
            except LockAcquisitionError:
                result.skipped += 1
            except (BaseApplicationError, DatabaseError):
                result.failed += 1
                logger.error(
                    "Auto-refund execution failed",
                    extra={"decision_id": str(decision_id)},
                    exc_info=True,
                )
            finally:
                if heartbeat is not None:
                    heartbeat()

        return result

    @classmethod
    def retry_incomplete_executions(
        cls,
        now: datetime | None = None,
        heartbeat: Callable[[], Any] | None = None,
    ) -> BatchResult:
        """
        Re-execute decided / auto-refunded decisions whose execution failed.

        heartbeat is called after each decision, as in auto_refund_expired.
        """
        logger = cls.get_logger()
        now = now or timezone.now()
        result = BatchResult()

        decision_ids = list(
            DonorRefundDecision.objects.filter(
                status__in=[DecisionStatus.DECIDED, DecisionStatus.AUTO_REFUNDED],
                decided_at__lt=now - EXECUTION_RETRY_GRACE,
                execution_attempts__lt=MAX_EXECUTION_ATTEMPTS,
            ).values_list("id", flat=True)
        )

        for decision_id in decision_ids:
            result.processed += 1
            try:
                outcome = cls.execute(decision_id).data
            except LockAcquisitionError:
                result.skipped += 1
            except (BaseApplicationError, DatabaseError):
                result.failed += 1
                logger.error(
                    "Refund decision retry failed",
                    extra={"decision_id": str(decision_id)},
                    exc_info=True,
                )
            else:
                if outcome.executed:
                    result.executed += 1
                    result.decision_ids.append(str(decision_id))
            finally:
                if heartbeat is not None:
                    heartbeat()

        return result

    @classmethod
    def refresh_request_status(cls, refund_request_id: UUID | str) -> RefundRequest:
        """Roll decision statuses up into the refund request status."""
        counts = dict(
            DonorRefundDecision.objects.filter(refund_request_id=refund_request_id)
            .values("status")
            .annotate(n=Count("id"))
            .values_list("status", "n")
        )
        total = sum(counts.values())
        executed = counts.get(DecisionStatus.EXECUTED, 0)
        pending = counts.get(DecisionStatus.PENDING, 0)

        if total and executed == total:
            status = RefundRequestStatus.COMPLETED
        elif pending:
            status = (
                RefundRequestStatus.PROCESSING
                if executed
                else RefundRequestStatus.PENDING_DONOR_DECISION
            )
        elif executed:
            status = RefundRequestStatus.PARTIALLY_COMPLETED
        else:
            status = RefundRequestStatus.PROCESSING

        with cls.atomic():
            refund_request = RefundRequest.objects.select_for_update().get(pk=refund_request_id)
            if refund_request.status != status:
                refund_request.status = status
                refund_request.completed_at = (
                    timezone.now() if status == RefundRequestStatus.COMPLETED else None
                )
                refund_request.save(update_fields=["status", "completed_at", "updated_at"])
        return refund_request

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _get_decision(cls, decision_id: UUID | str) -> DonorRefundDecision:
        decision = DonorRefundDecision.objects.filter(pk=decision_id).first()
        if decision is None:
            raise NotFoundError(
                f"Refund decision {decision_id} not found",
                error_code="DECISION_NOT_FOUND",
                details={"decision_id": str(decision_id)},
            )
        return decision
