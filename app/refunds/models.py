"""
Refund models.

- RefundRequest: One refund obligation opened for a campaign or milestone
- RefundLineItem: The amount claimed back from one affected donation
- DonorRefundDecision: A donor's choice over their share, with a deadline
- PlatformContribution: Funds a donor chose to leave with the platform

Lifecycle:
    RefundTriggerScanner creates a RefundRequest, one DonorRefundDecision
    per affected donor and one RefundLineItem per affected donation. The
    donor (or the sweep, once the deadline lapses) resolves the decision,
    and RefundDecisionEngine executes the outcome exactly once.

Usage:
    from refunds.models import DonorRefundDecision, DecisionStatus

    pending = DonorRefundDecision.objects.filter(
        donor=user, status=DecisionStatus.PENDING
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


class TriggerType(models.TextChoices):
    MILESTONE_REJECTION = "milestone_rejection", "Milestone Rejection"
    CAMPAIGN_EXPIRATION = "campaign_expiration", "Campaign Expiration"
    CAMPAIGN_CANCELLATION = "campaign_cancellation", "Campaign Cancellation"


class RefundRequestStatus(models.TextChoices):
    """
    Aggregate status of a refund request, rolled up from its decisions.

    PENDING_DONOR_DECISION: nothing executed yet, donors still deciding
    PROCESSING: some decisions executed, others still open
    PARTIALLY_COMPLETED: every donor decided but some executions failed
    COMPLETED: every decision executed
    """

    PENDING_DONOR_DECISION = "pending_donor_decision", "Pending Donor Decision"
    PROCESSING = "processing", "Processing"
    PARTIALLY_COMPLETED = "partially_completed", "Partially Completed"
    COMPLETED = "completed", "Completed"


class DecisionStatus(models.TextChoices):
    """
    States for DonorRefundDecision.

    State Flow:
        PENDING → DECIDED → EXECUTED        (donor chose)
        PENDING → AUTO_REFUNDED → EXECUTED  (deadline lapsed)
    """

    PENDING = "pending", "Pending"
    DECIDED = "decided", "Decided"
    AUTO_REFUNDED = "auto_refunded", "Auto Refunded"
    EXECUTED = "executed", "Executed"


class DecisionType(models.TextChoices):
    REFUND = "refund", "Refund"
    REDIRECT_TO_CAMPAIGN = "redirect_to_campaign", "Redirect to Campaign"
    DONATE_TO_PLATFORM = "donate_to_platform", "Donate to Platform"


class RefundRequest(UUIDPrimaryKeyMixin, BaseModel):
    """
    Refund obligation for a campaign (cancellation/expiration) or a milestone.

    At most one campaign-wide request exists per campaign and at most one
    request per milestone; the scanner relies on both constraints to stay
    idempotent when re-run.

    Fields:
        campaign: Campaign whose funds are being returned
        milestone: Rejected milestone (milestone_rejection only)
        trigger_type: What opened the request
        status: RefundRequestStatus roll-up
        rejection_reason: Human-readable reason shown to donors
        total_amount_cents: Sum of all line items
        total_donors_count: Number of decisions created
        decision_deadline: Deadline shared by all decisions
    """

    campaign = models.ForeignKey(
        "campaigns.Campaign",
        on_delete=models.PROTECT,
        related_name="refund_requests",
        help_text="Campaign whose funds are being returned",
    )

    milestone = models.ForeignKey(
        "campaigns.Milestone",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refund_requests",
        help_text="Rejected milestone that opened this request",
    )

    trigger_type = models.CharField(
        max_length=30,
        choices=TriggerType.choices,
        help_text="Condition that opened this request",
    )

    status = models.CharField(
        max_length=30,
        choices=RefundRequestStatus.choices,
        default=RefundRequestStatus.PENDING_DONOR_DECISION,
        db_index=True,
        help_text="Roll-up of the decisions' statuses",
    )

    rejection_reason = models.TextField(
        blank=True,
        default="",
        help_text="Reason shown to affected donors",
    )

    total_amount_cents = models.BigIntegerField(
        default=0,
        help_text="Total amount claimed from affected donations",
    )

    total_donors_count = models.IntegerField(
        default=0,
        help_text="Number of donors asked to decide",
    )

    decision_deadline = models.DateTimeField(
        help_text="Deadline for donor decisions",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When every decision was executed",
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["campaign"],
                condition=models.Q(milestone__isnull=True),
                name="refund_request_one_per_campaign",
            ),
            models.UniqueConstraint(
                fields=["milestone"],
                condition=models.Q(milestone__isnull=False),
                name="refund_request_one_per_milestone",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundRequest({self.id}, {self.trigger_type}, {self.status})"


class DonorRefundDecision(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One donor's decision over their share of a refund request.

    Exactly one outcome is ever executed: EXECUTED is terminal and the
    transitions below are the only way out of PENDING.

    Fields:
        refund_request: Request this decision belongs to
        donor: Donor who decides
        refund_amount_cents: Sum of the donor's line items
        decision_deadline: After this only the sweep may resolve it
        status: Current FSM state
        decision_type: Chosen outcome (set on DECIDED / AUTO_REFUNDED)
        redirect_campaign: Target campaign for redirect decisions
        execution_attempts: Failed execution attempts so far
        last_error: Last execution error, for operators
        metadata: donation_count, auto_converted markers
    """

    refund_request = models.ForeignKey(
        RefundRequest,
        on_delete=models.CASCADE,
        related_name="decisions",
        help_text="Refund request this decision belongs to",
    )

    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refund_decisions",
        help_text="Donor making the decision",
    )

    refund_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount at stake for this donor",
    )

    decision_deadline = models.DateTimeField(
        db_index=True,
        help_text="Last moment the donor can decide",
    )

    status = FSMField(
        default=DecisionStatus.PENDING,
        choices=DecisionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the decision (managed by FSM)",
    )

    decision_type = models.CharField(
        max_length=30,
        choices=DecisionType.choices,
        null=True,
        blank=True,
        help_text="Chosen outcome",
    )

    redirect_campaign = models.ForeignKey(
        "campaigns.Campaign",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="redirected_refund_decisions",
        help_text="Campaign receiving redirected funds",
    )

    decided_at = models.DateTimeField(null=True, blank=True)
    executed_at = models.DateTimeField(null=True, blank=True)

    execution_attempts = models.PositiveIntegerField(
        default=0,
        help_text="Failed execution attempts",
    )

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Last execution error",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="donation_count and conversion markers",
    )

    class Meta:
        ordering = ["decision_deadline"]
        indexes = [
            models.Index(
                fields=["status", "decision_deadline"], name="refunds_don_status_2b7c41_idx"
            ),
            models.Index(fields=["donor", "status"], name="refunds_don_donor_i_7e0a93_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["refund_request", "donor"],
                name="refund_decision_one_per_donor",
            ),
        ]

    def __str__(self) -> str:
        return f"DonorRefundDecision({self.id}, {self.status}, {self.decision_type})"

    @property
    def is_past_deadline(self) -> bool:
        return timezone.now() > self.decision_deadline

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=DecisionStatus.PENDING,
        target=DecisionStatus.DECIDED,
    )
    def decide(self, decision_type: str, redirect_campaign=None):
        self.decision_type = decision_type
        self.redirect_campaign = redirect_campaign
        self.decided_at = timezone.now()

    @transition(
        field=status,
        source=DecisionStatus.PENDING,
        target=DecisionStatus.AUTO_REFUNDED,
    )
    def auto_refund(self):
        """Resolve an undecided decision as a refund after its deadline."""
        self.decision_type = DecisionType.REFUND
        self.decided_at = timezone.now()

    @transition(
        field=status,
        source=[DecisionStatus.DECIDED, DecisionStatus.AUTO_REFUNDED],
        target=DecisionStatus.EXECUTED,
    )
    def execute(self):
        self.executed_at = timezone.now()
        self.last_error = ""

    def record_execution_failure(self, error: str) -> None:
        self.execution_attempts += 1
        self.last_error = error


class RefundLineItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    Amount claimed back from one donation by one refund request.

    provider_refund_id is set once the amount was paid back to the donor
    (refund decisions only). payout_attempt moves on after a definitive
    provider rejection so the next payout is not answered from Stripe's
    idempotency cache.
    """

    refund_request = models.ForeignKey(
        RefundRequest,
        on_delete=models.CASCADE,
        related_name="line_items",
        help_text="Refund request claiming this amount",
    )

    decision = models.ForeignKey(
        DonorRefundDecision,
        on_delete=models.CASCADE,
        related_name="line_items",
        help_text="Decision that resolves this amount",
    )

    donation = models.ForeignKey(
        "payments.Donation",
        on_delete=models.PROTECT,
        related_name="refund_line_items",
        help_text="Donation the amount is claimed from",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount claimed from the donation",
    )

    provider_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Refund ID (re_xxx) once paid back",
    )

    refunded_at = models.DateTimeField(null=True, blank=True)

    payout_attempt = models.PositiveIntegerField(
        default=1,
        help_text=(
            "Idempotency key generation for the provider refund; "
            "bumped after the provider rejects a refund"
        ),
    )

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["refund_request", "donation"],
                name="refund_line_item_one_per_donation",
            ),
            models.CheckConstraint(
                check=models.Q(amount_cents__gt=0),
                name="refund_line_item_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundLineItem({self.donation_id}, {self.amount_cents})"

    @property
    def is_refunded(self) -> bool:
        return bool(self.provider_refund_id)


class PlatformContribution(UUIDPrimaryKeyMixin, BaseModel):
    """Funds a donor left with the platform instead of taking a refund."""

    decision = models.OneToOneField(
        DonorRefundDecision,
        on_delete=models.PROTECT,
        related_name="platform_contribution",
        help_text="Decision that produced this contribution",
    )

    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="platform_contributions",
    )

    source_campaign = models.ForeignKey(
        "campaigns.Campaign",
        on_delete=models.PROTECT,
        related_name="platform_contributions",
        help_text="Campaign the funds originally went to",
    )

    amount_cents = models.PositiveBigIntegerField()

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"PlatformContribution({self.donor_id}, {self.amount_cents})"
