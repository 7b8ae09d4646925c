from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("refunds", "0002_add_refund_sweep_schedule"),
    ]

    operations = [
        migrations.AddField(
            model_name="refundlineitem",
            name="payout_attempt",
            field=models.PositiveIntegerField(
                default=1,
                help_text=(
                    "Idempotency key generation for the provider refund; "
                    "bumped after the provider rejects a refund"
                ),
            ),
        ),
    ]
