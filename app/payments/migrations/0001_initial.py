import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("campaigns", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Donation",
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
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Gross donation amount in smallest currency unit"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="php",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the donation (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("provider_source", "Provider Source"),
                            ("redirected", "Redirected"),
                        ],
                        default="provider_source",
                        help_text="How the funds arrived",
                        max_length=20,
                    ),
                ),
                (
                    "provider_charge_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Charge ID (ch_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "ledger_credited",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether the net amount has been credited to the campaign",
                    ),
                ),
                (
                    "credited_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the campaign ledger credit was applied",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the donation completed", null=True
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True, help_text="When the donation failed", null=True
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the donation was refunded in full",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Fee breakdown and other JSON metadata",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Human-readable reason if the donation failed",
                        null=True,
                    ),
                ),
                (
                    "campaign",
                    models.ForeignKey(
                        help_text="Campaign receiving this donation",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="donations",
                        to="campaigns.campaign",
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        help_text="User making the donation",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="donations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "redirected_from",
                    models.ForeignKey(
                        blank=True,
                        help_text="Original donation whose funds were redirected here",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redirected_to",
                        to="payments.donation",
                    ),
                ),
            ],
            options={
                "verbose_name": "Donation",
                "verbose_name_plural": "Donations",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["campaign", "status"], name="payments_do_campaig_1d2a7e_idx"
                    ),
                    models.Index(
                        fields=["donor", "status"], name="payments_do_donor_i_8c41b0_idx"
                    ),
                    models.Index(
                        fields=["status", "ledger_credited"],
                        name="payments_do_status_5e9f3a_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(("amount_cents__gt", 0)),
                        name="donation_amount_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentSession",
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
                    "provider_source_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Source ID (src_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("chargeable", "Chargeable"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the payment session (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Total amount to charge at the provider"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="php",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "fee_metadata",
                    models.JSONField(
                        default=dict,
                        help_text="Fee breakdown computed at checkout (immutable)",
                    ),
                ),
                (
                    "redirect_url",
                    models.URLField(
                        blank=True,
                        default="",
                        help_text="Provider authorization URL",
                        max_length=2048,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        db_index=True, help_text="When an unfinished session expires"
                    ),
                ),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "donation",
                    models.OneToOneField(
                        help_text="Donation this session pays for",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_session",
                        to="payments.donation",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Session",
                "verbose_name_plural": "Payment Sessions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "expires_at"],
                        name="payments_pa_status_2b7c41_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
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
                    "provider_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'source.chargeable')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full webhook payload from Stripe (JSON)"),
                ),
                (
                    "received_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the event was first received",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="payments_we_status_7a1c2d_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="payments_we_event_t_3f6b8e_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="payments_we_status_c4d5e9_idx",
                    ),
                ],
            },
        ),
    ]
