"""
Refund trigger scanner.

Finds the conditions that oblige the platform to return donors' money
and opens one RefundRequest for each:

    milestone rejected                   -> milestone_rejection
    campaign cancelled                   -> campaign_cancellation
    campaign active/paused, ended more
    than the grace period ago, under goal -> campaign_expiration

Opening a request is one transaction under the campaign's row lock:
the trigger is re-checked, the claimable amount of every completed
donation is computed, decisions and line items are created, the
campaign ledger is debited by the claimed total and the trigger is
flagged (refund_initiated) so a re-run never opens it again.

Claimable amount of a donation:
    its net amount minus what earlier refund requests already claimed,
    limited for milestone rejections to the milestone's share
    (target_amount / campaign goal) of the donation.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError
from django.db.models import F, Sum
from django.utils import timezone

from campaigns.models import Campaign, CampaignStatus, Milestone, MilestoneStatus
from campaigns.services import CampaignLedgerService
from core.exceptions import BaseApplicationError
from core.services import BaseService
from notifications.models import NotificationEventType
from notifications.services import NotificationService
from payments.models import Donation
from payments.state_machines import DonationStatus

from refunds.models import (
    DonorRefundDecision,
    RefundLineItem,
    RefundRequest,
    TriggerType,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any
    from uuid import UUID


@dataclass(frozen=True)
class RefundTrigger:
    """A condition that opens a refund request."""

    campaign_id: UUID
    trigger_type: str
    reason: str
    milestone_id: UUID | None = None

    @property
    def key(self) -> tuple[str, Any]:
        if self.milestone_id is not None:
            return ("milestone", self.milestone_id)
        return ("campaign", self.campaign_id)


@dataclass(frozen=True)
class Claim:
    donation: Donation
    amount_cents: int
    fully_claimed: bool


@dataclass
class ScanResult:
    """
    Outcome of one scan.

    Attributes:
        campaigns: One summary per refund request opened
        skipped: Triggers that needed no request (already handled, nothing
            left to claim)
        errors: Triggers that failed and will be retried by the next scan
    """

    campaigns: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0
    errors: int = 0

    @property
    def processed_count(self) -> int:
        return len(self.campaigns)


class RefundTriggerScanner(BaseService):
    """Detect refund triggers and open refund requests idempotently."""

    # =========================================================================
    # Scan
    # =========================================================================

    @classmethod
    def scan(
        cls,
        now: datetime | None = None,
        heartbeat: Callable[[], Any] | None = None,
    ) -> ScanResult:
        """
        Open refund requests for every pending trigger.

        Args:
            now: Scan time (defaults to timezone.now())
            heartbeat: Called after each trigger; the sweep passes its
                lock's extend() so long scans keep the lock

        Returns:
            ScanResult. A failing trigger is logged and counted; the
            remaining triggers are still processed.
        """
        logger = cls.get_logger()
        now = now or timezone.now()
        result = ScanResult()
        seen: set[tuple[str, Any]] = set()

        for trigger in cls.find_triggers(now):
            if trigger.key in seen:
                continue
            seen.add(trigger.key)

            try:
                refund_request = cls.open_refund_request(trigger, now)
            except (BaseApplicationError, DatabaseError):
                result.errors += 1
                logger.error(
                    "Failed to open refund request",
                    extra={
                        "campaign_id": str(trigger.campaign_id),
                        "milestone_id": str(trigger.milestone_id or ""),
                        "trigger_type": trigger.trigger_type,
                    },
                    exc_info=True,
                )
                continue
            finally:
                if heartbeat is not None:
                    heartbeat()

            if refund_request is None:
                result.skipped += 1
                continue

            result.campaigns.append(
                {
                    "campaign_id": str(refund_request.campaign_id),
                    "milestone_id": (
                        str(refund_request.milestone_id) if refund_request.milestone_id else None
                    ),
                    "refund_request_id": str(refund_request.id),
                    "trigger_type": refund_request.trigger_type,
                    "total_amount_cents": refund_request.total_amount_cents,
                    "donors_count": refund_request.total_donors_count,
                }
            )

        logger.info(
            "Refund trigger scan finished",
            extra={
                "opened": result.processed_count,
                "skipped": result.skipped,
                "errors": result.errors,
            },
        )
        return result

    @classmethod
    def find_triggers(cls, now: datetime) -> list[RefundTrigger]:
        """List milestone triggers first, then campaign-wide triggers."""
        grace = timedelta(days=getattr(settings, "REFUND_GRACE_PERIOD_DAYS", 7))
        triggers: list[RefundTrigger] = []

        rejected = Milestone.objects.filter(
            status=MilestoneStatus.REJECTED,
            refund_initiated=False,
        ).values_list("id", "campaign_id", "rejection_reason")
        for milestone_id, campaign_id, reason in rejected:
            triggers.append(
                RefundTrigger(
                    campaign_id=campaign_id,
                    milestone_id=milestone_id,
                    trigger_type=TriggerType.MILESTONE_REJECTION,
                    reason=reason or "Milestone proof was rejected",
                )
            )

        cancelled = Campaign.objects.filter(
            status=CampaignStatus.CANCELLED,
            refund_initiated=False,
        ).values_list("id", flat=True)
        for campaign_id in cancelled:
            triggers.append(
                RefundTrigger(
                    campaign_id=campaign_id,
                    trigger_type=TriggerType.CAMPAIGN_CANCELLATION,
                    reason="Campaign was cancelled",
                )
            )

        expired = Campaign.objects.filter(
            status__in=[CampaignStatus.ACTIVE, CampaignStatus.PAUSED],
            refund_initiated=False,
            end_date__lt=now - grace,
            current_amount_cents__lt=F("goal_amount_cents"),
        ).values_list("id", flat=True)
        for campaign_id in expired:
            triggers.append(
                RefundTrigger(
                    campaign_id=campaign_id,
                    trigger_type=TriggerType.CAMPAIGN_EXPIRATION,
                    reason="Campaign ended without reaching its goal",
                )
            )

        return triggers

    # =========================================================================
    # Open Refund Request
    # =========================================================================

    @classmethod
    def open_refund_request(
        cls,
        trigger: RefundTrigger,
        now: datetime | None = None,
    ) -> RefundRequest | None:
        """
        Open the refund request for one trigger.

        Returns:
            The new RefundRequest, or None when the trigger was already
            handled or there is nothing left to claim (the trigger is
            still flagged so it is not scanned again)

        Raises:
            InternalError: The ledger debit was rejected; nothing is written
        """
        logger = cls.get_logger()
        now = now or timezone.now()
        window = timedelta(days=getattr(settings, "REFUND_DECISION_WINDOW_DAYS", 14))

        with cls.atomic():
            campaign = Campaign.objects.select_for_update().get(pk=trigger.campaign_id)
            milestone = None
            if trigger.milestone_id is not None:
                milestone = Milestone.objects.select_for_update().get(pk=trigger.milestone_id)
                if milestone.refund_initiated or milestone.status != MilestoneStatus.REJECTED:
                    return None
            elif campaign.refund_initiated:
                return None

            claims = cls._compute_claims(campaign, milestone)
            refund_request = None
            if claims:
                refund_request = cls._create_request(trigger, campaign, milestone, claims, now + window)
                CampaignLedgerService.apply_delta(
                    campaign.id,
                    -refund_request.total_amount_cents,
                    -sum(1 for claim in claims if claim.fully_claimed),
                )

            cls._flag_trigger(trigger, campaign, milestone, now)

        if refund_request is not None:
            logger.info(
                "Refund request opened",
                extra={
                    "refund_request_id": str(refund_request.id),
                    "campaign_id": str(campaign.id),
                    "trigger_type": trigger.trigger_type,
                    "total_amount_cents": refund_request.total_amount_cents,
                    "donors_count": refund_request.total_donors_count,
                },
            )
        else:
            logger.info(
                "Refund trigger had nothing to claim",
                extra={"campaign_id": str(campaign.id), "trigger_type": trigger.trigger_type},
            )
        return refund_request

    @classmethod
    def _compute_claims(cls, campaign: Campaign, milestone: Milestone | None) -> list[Claim]:
        donations = list(
            Donation.objects.filter(
                campaign=campaign,
                status=DonationStatus.COMPLETED,
                ledger_credited=True,
            ).order_by("created_at")
        )
        already_claimed = dict(
            RefundLineItem.objects.filter(donation__in=donations)
            .values("donation_id")
            .annotate(total=Sum("amount_cents"))
            .values_list("donation_id", "total")
        )

        claims = []
        for donation in donations:
            remaining = donation.net_amount_cents - already_claimed.get(donation.id, 0)
            if remaining <= 0:
                continue

            amount = remaining
            if milestone is not None and campaign.goal_amount_cents > 0:
                share = donation.net_amount_cents * milestone.target_amount_cents
                amount = min(remaining, share // campaign.goal_amount_cents)
            if amount <= 0:
                continue

            claims.append(
                Claim(donation=donation, amount_cents=amount, fully_claimed=amount == remaining)
            )
        return claims

    @classmethod
    def _create_request(
        cls,
        trigger: RefundTrigger,
        campaign: Campaign,
        milestone: Milestone | None,
        claims: list[Claim],
        deadline: datetime,
    ) -> RefundRequest:
        by_donor: OrderedDict[Any, list[Claim]] = OrderedDict()
        for claim in claims:
            by_donor.setdefault(claim.donation.donor_id, []).append(claim)

        refund_request = RefundRequest.objects.create(
            campaign=campaign,
            milestone=milestone,
            trigger_type=trigger.trigger_type,
            rejection_reason=trigger.reason,
            total_amount_cents=sum(claim.amount_cents for claim in claims),
            total_donors_count=len(by_donor),
            decision_deadline=deadline,
        )

        for donor_id, donor_claims in by_donor.items():
            decision = DonorRefundDecision.objects.create(
                refund_request=refund_request,
                donor_id=donor_id,
                refund_amount_cents=sum(claim.amount_cents for claim in donor_claims),
                decision_deadline=deadline,
                metadata={"donation_count": len(donor_claims)},
            )
            RefundLineItem.objects.bulk_create(
                [
                    RefundLineItem(
                        refund_request=refund_request,
                        decision=decision,
                        donation=claim.donation,
                        amount_cents=claim.amount_cents,
                    )
                    for claim in donor_claims
                ]
            )
            NotificationService.notify(
                NotificationEventType.REFUND_DECISION_REQUIRED,
                recipient_id=donor_id,
                subject_id=str(decision.id),
                data={
                    "campaign_id": str(campaign.id),
                    "trigger_type": trigger.trigger_type,
                    "reason": trigger.reason,
                    "refund_amount_cents": decision.refund_amount_cents,
                    "decision_deadline": deadline.isoformat(),
                },
            )

        return refund_request

    @classmethod
    def _flag_trigger(
        cls,
        trigger: RefundTrigger,
        campaign: Campaign,
        milestone: Milestone | None,
        now: datetime,
    ) -> None:
        if milestone is not None:
            milestone.refund_initiated = True
            milestone.refund_initiated_at = now
            milestone.save(update_fields=["refund_initiated", "refund_initiated_at", "updated_at"])
            return

        campaign.refund_initiated = True
        campaign.refund_initiated_at = now
        update_fields = ["refund_initiated", "refund_initiated_at", "updated_at"]
        if trigger.trigger_type == TriggerType.CAMPAIGN_EXPIRATION:
            campaign.status = CampaignStatus.EXPIRED
            update_fields.append("status")
        campaign.save(update_fields=update_fields)
