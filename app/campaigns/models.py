"""
Campaign and Milestone models.

Only the fields the payment and refund subsystem reads or writes are
modelled here. Campaign totals (current_amount_cents, donors_count) are
written exclusively through CampaignLedgerService.apply_delta; never
assign them on an instance and call save().

Usage:
    from campaigns.models import Campaign, CampaignStatus

    campaign = Campaign.objects.create(
        charity=charity_user,
        title="Clean water for Barangay 12",
        goal_amount_cents=50_000_00,
        end_date=timezone.now() + timedelta(days=30),
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class CampaignStatus(models.TextChoices):
    """
    Campaign lifecycle as seen by the refund subsystem.

    ACTIVE and PAUSED campaigns accept scanning for expiration;
    CANCELLED campaigns open a cancellation refund; EXPIRED is set by the
    refund scanner once an under-goal campaign has been processed.
    """

    ACTIVE = "active", "Active"
    PAUSED = "paused", "Paused"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


class MilestoneStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SUBMITTED = "submitted", "Submitted"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class Campaign(UUIDPrimaryKeyMixin, BaseModel):
    """
    Fundraising campaign owned by a charity.

    Fields:
        charity: Charity account running the campaign
        title: Display title
        goal_amount_cents: Fundraising goal
        current_amount_cents: Net amount currently credited (ledger field)
        donors_count: Completed donations currently credited (ledger field)
        end_date: When the campaign stops accepting donations
        status: CampaignStatus
        refund_initiated: Whether a campaign-wide refund request exists
        refund_initiated_at: When that request was opened
    """

    charity = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="campaigns",
        help_text="Charity account running this campaign",
    )

    title = models.CharField(
        max_length=255,
        help_text="Campaign title",
    )

    goal_amount_cents = models.PositiveBigIntegerField(
        help_text="Fundraising goal in the smallest currency unit",
    )

    # ==========================================================================
    # Ledger Fields (CampaignLedgerService only)
    # ==========================================================================

    current_amount_cents = models.BigIntegerField(
        default=0,
        help_text="Net amount credited to this campaign",
    )

    donors_count = models.IntegerField(
        default=0,
        help_text="Number of completed donations credited to this campaign",
    )

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    end_date = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the campaign stops accepting donations",
    )

    status = models.CharField(
        max_length=20,
        choices=CampaignStatus.choices,
        default=CampaignStatus.ACTIVE,
        db_index=True,
        help_text="Current campaign status",
    )

    refund_initiated = models.BooleanField(
        default=False,
        help_text="Whether a campaign-wide refund request has been opened",
    )

    refund_initiated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the campaign-wide refund request was opened",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "end_date"], name="campaigns_c_status_6b0d1e_idx"),
            models.Index(
                fields=["status", "refund_initiated"], name="campaigns_c_status_9f3a2c_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(current_amount_cents__gte=0),
                name="campaign_current_amount_non_negative",
            ),
            models.CheckConstraint(
                check=models.Q(donors_count__gte=0),
                name="campaign_donors_count_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Campaign({self.id}, {self.title!r}, {self.status})"

    @property
    def is_fully_funded(self) -> bool:
        return self.current_amount_cents >= self.goal_amount_cents


class Milestone(UUIDPrimaryKeyMixin, BaseModel):
    """
    Deliverable of a campaign, verified by platform administrators.

    A rejected milestone opens a refund request for its share of the
    campaign's funds (target_amount_cents relative to the campaign goal).
    """

    campaign = models.ForeignKey(
        Campaign,
        on_delete=models.CASCADE,
        related_name="milestones",
        help_text="Campaign this milestone belongs to",
    )

    title = models.CharField(
        max_length=255,
        help_text="Milestone title",
    )

    target_amount_cents = models.PositiveBigIntegerField(
        help_text="Portion of the campaign goal allocated to this milestone",
    )

    status = models.CharField(
        max_length=20,
        choices=MilestoneStatus.choices,
        default=MilestoneStatus.PENDING,
        db_index=True,
        help_text="Verification status",
    )

    rejection_reason = models.TextField(
        blank=True,
        default="",
        help_text="Why the milestone proof was rejected",
    )

    rejected_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the milestone was rejected",
    )

    refund_initiated = models.BooleanField(
        default=False,
        help_text="Whether a refund request has been opened for this milestone",
    )

    refund_initiated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund request was opened",
    )

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(
                fields=["status", "refund_initiated"], name="campaigns_m_status_4c8e7b_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"Milestone({self.id}, {self.title!r}, {self.status})"
