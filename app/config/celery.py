"""
Celery application.

Workers process Stripe webhook events and ledger credit retries; beat
runs the schedules stored by django-celery-beat (webhook maintenance,
stale payment session expiry and the daily refund sweep).

Redis is both broker and result backend. Tasks are auto-discovered from
every installed app's tasks.py.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
