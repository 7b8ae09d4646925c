import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("campaigns", "0001_initial"),
        ("payments", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="RefundRequest",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "trigger_type",
                    models.CharField(
                        choices=[
                            ("milestone_rejection", "Milestone Rejection"),
                            ("campaign_expiration", "Campaign Expiration"),
                            ("campaign_cancellation", "Campaign Cancellation"),
                        ],
                        help_text="Condition that opened this request",
                        max_length=30,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_donor_decision", "Pending Donor Decision"),
                            ("processing", "Processing"),
                            ("partially_completed", "Partially Completed"),
                            ("completed", "Completed"),
                        ],
                        db_index=True,
                        default="pending_donor_decision",
                        help_text="Roll-up of the decisions' statuses",
                        max_length=30,
                    ),
                ),
                (
                    "rejection_reason",
                    models.TextField(
                        blank=True, default="", help_text="Reason shown to affected donors"
                    ),
                ),
                (
                    "total_amount_cents",
                    models.BigIntegerField(
                        default=0, help_text="Total amount claimed from affected donations"
                    ),
                ),
                (
                    "total_donors_count",
                    models.IntegerField(default=0, help_text="Number of donors asked to decide"),
                ),
                (
                    "decision_deadline",
                    models.DateTimeField(help_text="Deadline for donor decisions"),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True, help_text="When every decision was executed", null=True
                    ),
                ),
                (
                    "campaign",
                    models.ForeignKey(
                        help_text="Campaign whose funds are being returned",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_requests",
                        to="campaigns.campaign",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        blank=True,
                        help_text="Rejected milestone that opened this request",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_requests",
                        to="campaigns.milestone",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("milestone__isnull", True)),
                        fields=("campaign",),
                        name="refund_request_one_per_campaign",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("milestone__isnull", False)),
                        fields=("milestone",),
                        name="refund_request_one_per_milestone",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DonorRefundDecision",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "refund_amount_cents",
                    models.PositiveBigIntegerField(help_text="Amount at stake for this donor"),
                ),
                (
                    "decision_deadline",
                    models.DateTimeField(
                        db_index=True, help_text="Last moment the donor can decide"
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("decided", "Decided"),
                            ("auto_refunded", "Auto Refunded"),
                            ("executed", "Executed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the decision (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "decision_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("refund", "Refund"),
                            ("redirect_to_campaign", "Redirect to Campaign"),
                            ("donate_to_platform", "Donate to Platform"),
                        ],
                        help_text="Chosen outcome",
                        max_length=30,
                        null=True,
                    ),
                ),
                ("decided_at", models.DateTimeField(blank=True, null=True)),
                ("executed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "execution_attempts",
                    models.PositiveIntegerField(default=0, help_text="Failed execution attempts"),
                ),
                (
                    "last_error",
                    models.TextField(blank=True, default="", help_text="Last execution error"),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True, default=dict, help_text="donation_count and conversion markers"
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        help_text="Donor making the decision",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_decisions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "redirect_campaign",
                    models.ForeignKey(
                        blank=True,
                        help_text="Campaign receiving redirected funds",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redirected_refund_decisions",
                        to="campaigns.campaign",
                    ),
                ),
                (
                    "refund_request",
                    models.ForeignKey(
                        help_text="Refund request this decision belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="decisions",
                        to="refunds.refundrequest",
                    ),
                ),
            ],
            options={
                "ordering": ["decision_deadline"],
                "indexes": [
                    models.Index(
                        fields=["status", "decision_deadline"],
                        name="refunds_don_status_2b7c41_idx",
                    ),
                    models.Index(
                        fields=["donor", "status"], name="refunds_don_donor_i_7e0a93_idx"
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("refund_request", "donor"),
                        name="refund_decision_one_per_donor",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundLineItem",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Amount claimed from the donation"),
                ),
                (
                    "provider_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Refund ID (re_xxx) once paid back",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "decision",
                    models.ForeignKey(
                        help_text="Decision that resolves this amount",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="refunds.donorrefunddecision",
                    ),
                ),
                (
                    "donation",
                    models.ForeignKey(
                        help_text="Donation the amount is claimed from",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_line_items",
                        to="payments.donation",
                    ),
                ),
                (
                    "refund_request",
                    models.ForeignKey(
                        help_text="Refund request claiming this amount",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="refunds.refundrequest",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("refund_request", "donation"),
                        name="refund_line_item_one_per_donation",
                    ),
                    models.CheckConstraint(
                        check=models.Q(("amount_cents__gt", 0)),
                        name="refund_line_item_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PlatformContribution",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "decision",
                    models.OneToOneField(
                        help_text="Decision that produced this contribution",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="platform_contribution",
                        to="refunds.donorrefunddecision",
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="platform_contributions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "source_campaign",
                    models.ForeignKey(
                        help_text="Campaign the funds originally went to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="platform_contributions",
                        to="campaigns.campaign",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
