"""
Campaign services.

Services:
    CampaignLedgerService: Atomic increments/decrements of campaign totals
    CampaignService: Administrative transitions that open refund obligations

The ledger updater is the single writer of Campaign.current_amount_cents
and Campaign.donors_count. Every change is one SQL statement of the form

    UPDATE campaigns_campaign
       SET current_amount_cents = current_amount_cents + %s,
           donors_count = donors_count + %s
     WHERE id = %s

so concurrent callers serialize on the row lock taken by the UPDATE and
no update can be lost to a read-modify-write race.

Usage:
    from campaigns.services import CampaignLedgerService

    totals = CampaignLedgerService.apply_delta(campaign_id, 97000, 1)
    totals.current_amount_cents  # post-update value
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import DatabaseError, IntegrityError
from django.db.models import F
from django.utils import timezone

from core.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
)
from core.services import BaseService

from campaigns.models import Campaign, CampaignStatus, Milestone, MilestoneStatus

if TYPE_CHECKING:
    from uuid import UUID

    from authentication.models import User


@dataclass(frozen=True)
class LedgerTotals:
    """Campaign totals observed right after a ledger update."""

    campaign_id: UUID
    current_amount_cents: int
    donors_count: int


class CampaignLedgerService(BaseService):
    """Race-free updates of campaign raised amount and donor count."""

    @classmethod
    def apply_delta(
        cls,
        campaign_id: UUID,
        amount_delta: int,
        donor_delta: int = 0,
    ) -> LedgerTotals:
        """
        Atomically add deltas to a campaign's totals.

        Args:
            campaign_id: Campaign to update
            amount_delta: Signed change of current_amount_cents
            donor_delta: Signed change of donors_count

        Returns:
            LedgerTotals with the values written by this call

        Raises:
            NotFoundError: Campaign does not exist
            InternalError: The database rejected the write (e.g. a debit
                would drive a total negative)
        """
        logger = cls.get_logger()

        try:
            with cls.atomic():
                updated = Campaign.objects.filter(pk=campaign_id).update(
                    current_amount_cents=F("current_amount_cents") + amount_delta,
                    donors_count=F("donors_count") + donor_delta,
                    updated_at=timezone.now(),
                )
                if not updated:
                    raise NotFoundError(
                        f"Campaign {campaign_id} not found",
                        error_code="CAMPAIGN_NOT_FOUND",
                        details={"campaign_id": str(campaign_id)},
                    )

                # Still inside the transaction: the UPDATE's row lock keeps
                # other writers out until commit, so this read sees our totals.
                current_amount, donors_count = (
                    Campaign.objects.filter(pk=campaign_id)
                    .values_list("current_amount_cents", "donors_count")
                    .get()
                )
        except (IntegrityError, DatabaseError) as e:
            logger.error(
                "Campaign ledger update rejected",
                extra={
                    "campaign_id": str(campaign_id),
                    "amount_delta": amount_delta,
                    "donor_delta": donor_delta,
                },
                exc_info=True,
            )
            raise InternalError(
                "Campaign ledger update failed",
                error_code="LEDGER_WRITE_FAILED",
                details={"campaign_id": str(campaign_id), "error": str(e)},
            ) from e

        logger.info(
            "Campaign ledger updated",
            extra={
                "campaign_id": str(campaign_id),
                "amount_delta": amount_delta,
                "donor_delta": donor_delta,
                "current_amount_cents": current_amount,
                "donors_count": donors_count,
            },
        )

        return LedgerTotals(
            campaign_id=campaign_id,
            current_amount_cents=current_amount,
            donors_count=donors_count,
        )


class CampaignService(BaseService):
    """
    Administrative campaign transitions.

    Both operations only flag the records; the daily refund sweep picks
    them up and opens the refund requests.
    """

    @classmethod
    def _require_admin(cls, actor: User) -> None:
        if not actor.is_platform_admin:
            raise PermissionDeniedError(
                "Only platform administrators can perform this action",
                error_code="ADMIN_REQUIRED",
            )

    @classmethod
    def cancel_campaign(cls, campaign_id: UUID, actor: User) -> Campaign:
        """
        Cancel a campaign.

        Raises:
            PermissionDeniedError: actor is not a platform admin
            NotFoundError: unknown campaign
            ConflictError: campaign already cancelled, completed or expired
        """
        cls._require_admin(actor)

        with cls.atomic():
            campaign = (
                Campaign.objects.select_for_update().filter(pk=campaign_id).first()
            )
            if campaign is None:
                raise NotFoundError(
                    f"Campaign {campaign_id} not found",
                    error_code="CAMPAIGN_NOT_FOUND",
                )
            if campaign.status not in (CampaignStatus.ACTIVE, CampaignStatus.PAUSED):
                raise ConflictError(
                    f"Cannot cancel a campaign in '{campaign.status}' status",
                    error_code="INVALID_CAMPAIGN_STATUS",
                    details={"status": campaign.status},
                )
            campaign.status = CampaignStatus.CANCELLED
            campaign.save(update_fields=["status", "updated_at"])

        cls.get_logger().info(
            "Campaign cancelled",
            extra={"campaign_id": str(campaign_id), "actor_id": actor.pk},
        )
        return campaign

    @classmethod
    def reject_milestone(cls, milestone_id: UUID, reason: str, actor: User) -> Milestone:
        """
        Reject a milestone's proof.

        Raises:
            PermissionDeniedError: actor is not a platform admin
            NotFoundError: unknown milestone
            ConflictError: milestone already rejected
        """
        cls._require_admin(actor)

        with cls.atomic():
            milestone = (
                Milestone.objects.select_for_update().filter(pk=milestone_id).first()
            )
            if milestone is None:
                raise NotFoundError(
                    f"Milestone {milestone_id} not found",
                    error_code="MILESTONE_NOT_FOUND",
                )
            if milestone.status == MilestoneStatus.REJECTED:
                raise ConflictError(
                    "Milestone already rejected",
                    error_code="MILESTONE_ALREADY_REJECTED",
                )
            milestone.status = MilestoneStatus.REJECTED
            milestone.rejection_reason = reason
            milestone.rejected_at = timezone.now()
            milestone.save(
                update_fields=["status", "rejection_reason", "rejected_at", "updated_at"]
            )

        cls.get_logger().info(
            "Milestone rejected",
            extra={"milestone_id": str(milestone_id), "actor_id": actor.pk},
        )
        return milestone
