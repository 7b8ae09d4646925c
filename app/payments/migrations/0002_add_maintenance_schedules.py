"""
Add celery-beat schedules for payment maintenance tasks.

- Retry failed webhooks: every 5 minutes
- Reset stuck webhooks: every 15 minutes
- Expire stale payment sessions: every 5 minutes
- Reconcile uncredited donations: every 15 minutes
- Delete old processed webhooks: daily
"""

from django.db import migrations

SCHEDULES = [
    (
        "Retry Failed Webhooks",
        "payments.tasks.retry_failed_webhooks",
        5,
        "minutes",
        "Re-queues failed webhook events that have retries left.",
    ),
    (
        "Cleanup Stuck Webhooks",
        "payments.tasks.cleanup_stuck_webhooks",
        15,
        "minutes",
        "Resets webhook events stuck in processing so they can be retried.",
    ),
    (
        "Expire Stale Payment Sessions",
        "payments.tasks.expire_stale_payment_sessions",
        5,
        "minutes",
        "Fails donations whose payment session expired before authorization.",
    ),
    (
        "Reconcile Uncredited Donations",
        "payments.tasks.reconcile_uncredited_donations",
        15,
        "minutes",
        "Applies campaign credits missed after a successful charge.",
    ),
    (
        "Cleanup Old Webhooks",
        "payments.tasks.cleanup_old_webhooks",
        1,
        "days",
        "Deletes processed webhook events older than 90 days.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for payment maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, every, period, description in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=every,
            period=period,
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=[entry[0] for entry in SCHEDULES]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
