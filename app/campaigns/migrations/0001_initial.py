import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Campaign",
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
                ("title", models.CharField(help_text="Campaign title", max_length=255)),
                (
                    "goal_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Fundraising goal in the smallest currency unit"
                    ),
                ),
                (
                    "current_amount_cents",
                    models.BigIntegerField(
                        default=0, help_text="Net amount credited to this campaign"
                    ),
                ),
                (
                    "donors_count",
                    models.IntegerField(
                        default=0,
                        help_text="Number of completed donations credited to this campaign",
                    ),
                ),
                (
                    "end_date",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the campaign stops accepting donations",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("paused", "Paused"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="active",
                        help_text="Current campaign status",
                        max_length=20,
                    ),
                ),
                (
                    "refund_initiated",
                    models.BooleanField(
                        default=False,
                        help_text="Whether a campaign-wide refund request has been opened",
                    ),
                ),
                (
                    "refund_initiated_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the campaign-wide refund request was opened",
                        null=True,
                    ),
                ),
                (
                    "charity",
                    models.ForeignKey(
                        help_text="Charity account running this campaign",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="campaigns",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "end_date"], name="campaigns_c_status_6b0d1e_idx"
                    ),
                    models.Index(
                        fields=["status", "refund_initiated"],
                        name="campaigns_c_status_9f3a2c_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(("current_amount_cents__gte", 0)),
                        name="campaign_current_amount_non_negative",
                    ),
                    models.CheckConstraint(
                        check=models.Q(("donors_count__gte", 0)),
                        name="campaign_donors_count_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Milestone",
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
                ("title", models.CharField(help_text="Milestone title", max_length=255)),
                (
                    "target_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Portion of the campaign goal allocated to this milestone"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("submitted", "Submitted"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Verification status",
                        max_length=20,
                    ),
                ),
                (
                    "rejection_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Why the milestone proof was rejected",
                    ),
                ),
                (
                    "rejected_at",
                    models.DateTimeField(
                        blank=True, help_text="When the milestone was rejected", null=True
                    ),
                ),
                (
                    "refund_initiated",
                    models.BooleanField(
                        default=False,
                        help_text="Whether a refund request has been opened for this milestone",
                    ),
                ),
                (
                    "refund_initiated_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the refund request was opened",
                        null=True,
                    ),
                ),
                (
                    "campaign",
                    models.ForeignKey(
                        help_text="Campaign this milestone belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="milestones",
                        to="campaigns.campaign",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "refund_initiated"],
                        name="campaigns_m_status_4c8e7b_idx",
                    ),
                ],
            },
        ),
    ]
