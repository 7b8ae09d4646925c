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
            name="Notification",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
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
                    "event_type",
                    models.CharField(
                        choices=[
                            ("donation_completed", "Donation Completed"),
                            ("donation_failed", "Donation Failed"),
                            ("refund_decision_required", "Refund Decision Required"),
                            ("refund_decision_submitted", "Refund Decision Submitted"),
                            ("refund_decision_executed", "Refund Decision Executed"),
                            ("refund_payout_failed", "Refund Payout Failed"),
                        ],
                        db_index=True,
                        help_text="Type of event that produced this notification",
                        max_length=50,
                    ),
                ),
                (
                    "data",
                    models.JSONField(blank=True, default=dict, help_text="Event context data"),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Idempotency key to prevent duplicate notifications",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "is_read",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether recipient has read this notification",
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        help_text="User receiving this notification",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "notifications_notification",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["recipient", "is_read", "-created_at"],
                        name="notif_recipient_unread_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("idempotency_key",),
                        name="notif_idempotency_key_unique",
                    )
                ],
            },
        ),
    ]
