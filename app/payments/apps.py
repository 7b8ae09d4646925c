"""
Payments app configuration.

This app provides donation payment processing:
- Fee calculation and checkout
- Stripe integration (sources, charges, refunds)
- Webhook handling with an idempotent event ledger
- The donation state machine and campaign credit
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
