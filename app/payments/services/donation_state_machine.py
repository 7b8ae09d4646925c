"""
Donation state machine.

Owns every status change of a Donation and its PaymentSession, and the
single campaign ledger credit that follows a completed donation.

    source pending ──► chargeable ──► charge succeeded ──► donation completed
          │                 │                                   │
          └──── failed / canceled / charge failed ──► failed    └─► ledger credit (once)

Entry points:
    advance(donation_id, source_status=None)
        Drive the donation one step forward. Called by the source.*
        webhook handlers (with the status from the event) and by the
        verification endpoint (status re-queried from Stripe).
    record_charge_result(donation_id, charge_id, succeeded, failure_message)
        Apply a charge.succeeded / charge.failed notification.
    credit_campaign(donation_id)
        Apply the ledger credit of a completed donation if it has not
        been applied yet. Also used by the retry_campaign_credit task.
    fail(donation_id, reason) / expire_session(donation_id)
        Fail a pending donation (source creation error, session timeout).

Idempotency layers:
    1. WebhookEvent dedup (same provider event id) in the webhook view
    2. Business-level: a COMPLETED donation is never completed again and
       Donation.ledger_credited guards the credit, so two different
       events describing the same settled donation credit once

All work for one donation runs under DistributedLock("donation:{id}").
Provider calls happen outside database transactions.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from campaigns.services import CampaignLedgerService
from core.exceptions import InternalError, NotFoundError, PermissionDeniedError
from core.services import BaseService, ServiceResult
from notifications.models import NotificationEventType
from notifications.services import NotificationService

from payments.adapters import IdempotencyKeyGenerator, StripeAdapter, backoff_delay
from payments.exceptions import (
    ChargeOutcomeUnknownError,
    DonationNotFoundError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
)
from payments.fees import FeeBreakdown
from payments.locks import DistributedLock, donation_lock_key
from payments.models import Donation, PaymentSession
from payments.state_machines import DonationStatus, PaymentSessionStatus

if TYPE_CHECKING:
    from uuid import UUID

    from authentication.models import User
    from payments.adapters import ChargeResult

DONATION_LOCK_TTL = 60
DONATION_LOCK_TIMEOUT = 10

SOURCE_CHARGEABLE = "chargeable"
SOURCE_CONSUMED = "consumed"
SOURCE_PENDING = "pending"
SOURCE_TERMINAL_FAILURES = ("failed", "canceled")

CREDIT_RETRY_COUNTDOWN = 60


@dataclass
class DonationOutcome:
    """
    Result of driving a donation forward.

    Attributes:
        donation: The donation as stored after this step
        status: Donation status, or the session status while pending
        message: Human-readable status for the donor
        credited: Whether this call applied the campaign ledger credit
    """

    donation: Donation
    status: str
    message: str
    credited: bool = False


class DonationStateMachine(BaseService):
    """
    Transitions for donations and payment sessions.

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
    # Entry Points
    # =========================================================================

    @classmethod
    def advance(
        cls,
        donation_id: UUID | str,
        source_status: str | None = None,
    ) -> ServiceResult[DonationOutcome]:
        """
        Drive a donation forward one step.

        Args:
            donation_id: Donation to advance
            source_status: Source status reported by a webhook; when None
                the current status is queried from Stripe

        Returns:
            ServiceResult with a DonationOutcome. Payment declines are a
            successful call with a failed outcome.

        Raises:
            DonationNotFoundError: Unknown donation
            LockAcquisitionError: Another worker holds the donation
            ChargeOutcomeUnknownError: Charge could not be reconciled
            StripeError: Transient provider failure while querying
        """
        with DistributedLock(
            donation_lock_key(donation_id),
            ttl=DONATION_LOCK_TTL,
            timeout=DONATION_LOCK_TIMEOUT,
        ):
            return ServiceResult.success(cls._advance_locked(donation_id, source_status))

    @classmethod
    def record_charge_result(
        cls,
        donation_id: UUID | str,
        charge_id: str,
        succeeded: bool,
        failure_message: str | None = None,
    ) -> ServiceResult[DonationOutcome]:
        """Apply a charge.succeeded / charge.failed notification."""
        with DistributedLock(
            donation_lock_key(donation_id),
            ttl=DONATION_LOCK_TTL,
            timeout=DONATION_LOCK_TIMEOUT,
        ):
            donation = cls._get_donation(donation_id)
            settled = cls._settled_outcome(donation)
            if settled is not None:
                return ServiceResult.success(settled)

            if succeeded:
                outcome = cls._complete(donation.id, charge_id)
            else:
                outcome = cls._fail(donation.id, failure_message or "Payment was declined")
            return ServiceResult.success(outcome)

    @classmethod
    def verify(cls, donation_id: UUID | str, user: User) -> ServiceResult[DonationOutcome]:
        """
        Verification endpoint entry point: ownership check, then advance.

        Raises:
            DonationNotFoundError: Unknown donation
            PermissionDeniedError: Donation belongs to another donor
        """
        donation = cls._get_donation(donation_id)
        if donation.donor_id != user.pk and not user.is_platform_admin:
            raise PermissionDeniedError(
                "You can only verify your own donations",
                error_code="NOT_DONATION_OWNER",
            )
        return cls.advance(donation.id)

    @classmethod
    def expire_session(cls, donation_id: UUID | str) -> ServiceResult[DonationOutcome]:
        """Fail a donation whose session expired before it was charged."""
        return cls.fail(donation_id, "Payment session expired")

    @classmethod
    def fail(cls, donation_id: UUID | str, reason: str) -> ServiceResult[DonationOutcome]:
        """Fail a pending donation; settled donations are returned unchanged."""
        with DistributedLock(
            donation_lock_key(donation_id),
            ttl=DONATION_LOCK_TTL,
            timeout=DONATION_LOCK_TIMEOUT,
        ):
            donation = cls._get_donation(donation_id)
            settled = cls._settled_outcome(donation)
            if settled is not None:
                return ServiceResult.success(settled)
            return ServiceResult.success(cls._fail(donation.id, reason))

    # =========================================================================
    # Advance
    # =========================================================================

    @classmethod
    def _advance_locked(
        cls,
        donation_id: UUID | str,
        source_status: str | None,
    ) -> DonationOutcome:
        logger = cls.get_logger()
        donation = cls._get_donation(donation_id)

        settled = cls._settled_outcome(donation)
        if settled is not None:
            return settled

        session = cls._get_session(donation)
        if source_status is None:
            source_status = cls._query_source_status(session)

        logger.info(
            "Advancing donation",
            extra={
                "donation_id": str(donation.id),
                "source_id": session.provider_source_id,
                "source_status": source_status,
                "session_status": session.status,
            },
        )

        if source_status == SOURCE_CHARGEABLE:
            cls._mark_chargeable(session)
            return cls._charge(donation, session)

        if source_status == SOURCE_CONSUMED:
            charge = cls.get_stripe_adapter().find_charge_for_source(
                session.provider_source_id
            )
            if charge is not None:
                return cls._apply_charge(donation, charge)
            return cls._pending_outcome(donation, PaymentSessionStatus.CHARGEABLE)

        if source_status in SOURCE_TERMINAL_FAILURES:
            return cls._fail(donation.id, f"Payment source {source_status}")

        return cls._pending_outcome(donation, session.status)

    @classmethod
    def _query_source_status(cls, session: PaymentSession) -> str:
        if not session.provider_source_id:
            return SOURCE_PENDING
        return cls.get_stripe_adapter().get_source_status(session.provider_source_id).status

    @classmethod
    def _mark_chargeable(cls, session: PaymentSession) -> None:
        with cls.atomic():
            locked = PaymentSession.objects.select_for_update().get(pk=session.pk)
            if locked.status == PaymentSessionStatus.PENDING:
                locked.mark_chargeable()
                locked.save(update_fields=["status", "updated_at"])

    # =========================================================================
    # Charging
    # =========================================================================

    @classmethod
    def _charge(cls, donation: Donation, session: PaymentSession) -> DonationOutcome:
        """
        Charge the stored total against a chargeable source.

        A transient failure may mean the charge exists at Stripe. Before
        any retry the source is re-queried: "consumed" means a charge was
        created and is looked up instead of charging again; "chargeable"
        means it is safe to retry with the same idempotency key.
        """
        logger = cls.get_logger()
        adapter = cls.get_stripe_adapter()

        fees = FeeBreakdown.from_metadata(session.fee_metadata)
        idempotency_key = IdempotencyKeyGenerator.generate("charge", donation.id)
        max_attempts = max(1, getattr(settings, "STRIPE_MAX_RETRIES", 3))
        last_error: StripeError | None = None

        for attempt in range(max_attempts):
            try:
                charge = adapter.create_charge(
                    source_id=session.provider_source_id,
                    amount_cents=fees.total_charge,
                    currency=session.currency,
                    idempotency_key=idempotency_key,
                    metadata={
                        "donation_id": str(donation.id),
                        "campaign_id": str(donation.campaign_id),
                    },
                )
                return cls._apply_charge(donation, charge)

            except (StripeCardDeclinedError, StripeInsufficientFundsError) as e:
                return cls._fail(donation.id, e.message)

            except StripeError as e:
                last_error = e
                logger.warning(
                    "Charge outcome uncertain, re-querying source",
                    extra={
                        "donation_id": str(donation.id),
                        "source_id": session.provider_source_id,
                        "error_code": e.error_code,
                        "attempt": attempt + 1,
                    },
                )

                source_status = adapter.get_source_status(session.provider_source_id).status
                if source_status == SOURCE_CONSUMED:
                    existing = adapter.find_charge_for_source(session.provider_source_id)
                    if existing is not None:
                        return cls._apply_charge(donation, existing)
                elif source_status in SOURCE_TERMINAL_FAILURES:
                    return cls._fail(donation.id, f"Payment source {source_status}")
                elif not e.is_retryable:
                    raise

                if attempt + 1 < max_attempts:
                    time.sleep(backoff_delay(attempt))

        logger.error(
            "Charge outcome could not be determined",
            extra={
                "donation_id": str(donation.id),
                "source_id": session.provider_source_id,
                "attempts": max_attempts,
            },
        )
        raise ChargeOutcomeUnknownError(
            "We could not confirm your payment yet. Please check again shortly.",
            details={
                "donation_id": str(donation.id),
                "last_error": last_error.error_code if last_error else None,
            },
        )

    @classmethod
    def _apply_charge(cls, donation: Donation, charge: ChargeResult) -> DonationOutcome:
        if charge.succeeded:
            return cls._complete(donation.id, charge.id)
        if charge.status == "failed":
            return cls._fail(donation.id, charge.failure_message or "Payment was declined")
        return cls._pending_outcome(donation, PaymentSessionStatus.CHARGEABLE)

    # =========================================================================
    # Terminal Transitions
    # =========================================================================

    @classmethod
    def _complete(cls, donation_id: UUID | str, charge_id: str) -> DonationOutcome:
        """
        Complete the donation and session, then credit the campaign.

        The transition and the credit are separate transactions: a
        credit failure must not undo a charge that already happened.
        """
        with cls.atomic():
            donation = Donation.objects.select_for_update().get(pk=donation_id)
            if donation.status == DonationStatus.PENDING:
                session = PaymentSession.objects.select_for_update().get(donation=donation)
                if session.status != PaymentSessionStatus.SUCCEEDED:
                    session.succeed()
                    session.save(update_fields=["status", "succeeded_at", "updated_at"])

                donation.complete(charge_id=charge_id, fees=session.fee_metadata)
                donation.save()

                NotificationService.notify(
                    NotificationEventType.DONATION_COMPLETED,
                    recipient_id=donation.donor_id,
                    subject_id=str(donation.id),
                    data={
                        "campaign_id": str(donation.campaign_id),
                        "amount_cents": donation.amount_cents,
                        "net_amount_cents": donation.net_amount_cents,
                    },
                )
                cls.get_logger().info(
                    "Donation completed",
                    extra={"donation_id": str(donation.id), "charge_id": charge_id},
                )

        credited = cls.credit_campaign(donation_id)
        donation = Donation.objects.get(pk=donation_id)
        return DonationOutcome(
            donation=donation,
            status=donation.status,
            message="Payment completed successfully",
            credited=credited,
        )

    @classmethod
    def _fail(cls, donation_id: UUID | str, reason: str) -> DonationOutcome:
        with cls.atomic():
            donation = Donation.objects.select_for_update().get(pk=donation_id)
            if donation.status == DonationStatus.PENDING:
                session = (
                    PaymentSession.objects.select_for_update()
                    .filter(donation=donation)
                    .first()
                )
                if session is not None and session.status in (
                    PaymentSessionStatus.PENDING,
                    PaymentSessionStatus.CHARGEABLE,
                ):
                    session.fail()
                    session.save(update_fields=["status", "failed_at", "updated_at"])

                donation.fail(reason=reason)
                donation.save()

                NotificationService.notify(
                    NotificationEventType.DONATION_FAILED,
                    recipient_id=donation.donor_id,
                    subject_id=str(donation.id),
                    data={"reason": reason, "campaign_id": str(donation.campaign_id)},
                )
                cls.get_logger().info(
                    "Donation failed",
                    extra={"donation_id": str(donation.id), "reason": reason},
                )

        return cls._settled_outcome(Donation.objects.get(pk=donation_id))

    # =========================================================================
    # Ledger Credit
    # =========================================================================

    @classmethod
    def credit_campaign(cls, donation_id: UUID | str) -> bool:
        """
        Credit a completed donation's net amount to its campaign, once.

        Returns:
            True if this call applied the credit, False if there was
            nothing to do or the credit failed and was queued for retry
        """
        logger = cls.get_logger()

        try:
            with cls.atomic():
                donation = Donation.objects.select_for_update().get(pk=donation_id)
                if donation.status != DonationStatus.COMPLETED or donation.ledger_credited:
                    return False

                totals = CampaignLedgerService.apply_delta(
                    donation.campaign_id,
                    donation.net_amount_cents,
                    1,
                )
                donation.ledger_credited = True
                donation.credited_at = timezone.now()
                donation.save(update_fields=["ledger_credited", "credited_at"])
        except (InternalError, NotFoundError, DatabaseError) as e:
            logger.critical(
                "Campaign credit failed after successful charge",
                extra={"donation_id": str(donation_id), "error": str(e)},
                exc_info=True,
            )
            cls._schedule_credit_retry(donation_id)
            return False

        logger.info(
            "Campaign credited for donation",
            extra={
                "donation_id": str(donation_id),
                "campaign_id": str(totals.campaign_id),
                "net_amount_cents": donation.net_amount_cents,
                "current_amount_cents": totals.current_amount_cents,
                "donors_count": totals.donors_count,
            },
        )
        return True

    @classmethod
    def _schedule_credit_retry(cls, donation_id: UUID | str) -> None:
        from payments.tasks import retry_campaign_credit

        try:
            retry_campaign_credit.apply_async(
                args=[str(donation_id)], countdown=CREDIT_RETRY_COUNTDOWN
            )
        except Exception:
            # The reconcile_uncredited_donations beat task still finds it
            cls.get_logger().critical(
                "Could not queue campaign credit retry",
                extra={"donation_id": str(donation_id)},
                exc_info=True,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _get_donation(cls, donation_id: UUID | str) -> Donation:
        donation = Donation.objects.filter(pk=donation_id).first()
        if donation is None:
            raise DonationNotFoundError(
                f"Donation {donation_id} not found",
                details={"donation_id": str(donation_id)},
            )
        return donation

    @classmethod
    def _get_session(cls, donation: Donation) -> PaymentSession:
        session = PaymentSession.objects.filter(donation=donation).first()
        if session is None:
            raise DonationNotFoundError(
                f"Donation {donation.id} has no payment session",
                error_code="PAYMENT_SESSION_NOT_FOUND",
                details={"donation_id": str(donation.id)},
            )
        return session

    @classmethod
    def _settled_outcome(cls, donation: Donation) -> DonationOutcome | None:
        """Outcome for a donation no longer pending, ensuring its credit."""
        if donation.status == DonationStatus.COMPLETED:
            credited = cls.credit_campaign(donation.id) if not donation.ledger_credited else False
            return DonationOutcome(
                donation=donation,
                status=donation.status,
                message="Payment completed successfully",
                credited=credited,
            )
        if donation.status == DonationStatus.FAILED:
            return DonationOutcome(
                donation=donation,
                status=donation.status,
                message=f"Payment failed: {donation.failure_reason or 'unknown reason'}",
            )
        if donation.status == DonationStatus.REFUNDED:
            return DonationOutcome(
                donation=donation,
                status=donation.status,
                message="Payment was refunded",
            )
        return None

    @classmethod
    def _pending_outcome(cls, donation: Donation, session_status: str) -> DonationOutcome:
        return DonationOutcome(
            donation=donation,
            status=session_status,
            message=f"Payment is still {session_status}",
        )
