"""
State enums for payment models.

This module defines the state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Donation States:
    pending → completed → refunded
    pending → failed

PaymentSession States:
    pending → chargeable → succeeded
    pending → succeeded (charge settled before the chargeable webhook)
    pending/chargeable → failed

Combined happy path as seen by the donor:
    pending → chargeable → succeeded → completed
"""

from django.db import models


class DonationStatus(models.TextChoices):
    """
    States for the Donation model lifecycle.

    Terminal states: COMPLETED (until refunded), FAILED, REFUNDED

    State Flow:
        PENDING → COMPLETED   (charge succeeded, ledger credited once)
        PENDING → FAILED      (source failed/cancelled, charge declined,
                               session expired)
        COMPLETED → REFUNDED  (refund decision paid out in full)
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentSessionStatus(models.TextChoices):
    """
    States for the PaymentSession model lifecycle.

    Terminal states: SUCCEEDED, FAILED

    State Flow:
        PENDING → CHARGEABLE → SUCCEEDED
        PENDING → SUCCEEDED
        PENDING/CHARGEABLE → FAILED
    """

    PENDING = "pending", "Pending"
    CHARGEABLE = "chargeable", "Chargeable"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class PaymentMethod(models.TextChoices):
    """
    How a donation's funds arrived.

    REDIRECTED donations are created by a refund decision moving funds
    from another campaign; they have no payment session or charge.
    """

    PROVIDER_SOURCE = "provider_source", "Provider Source"
    REDIRECTED = "redirected", "Redirected"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "DonationStatus",
    "PaymentSessionStatus",
    "PaymentMethod",
    "WebhookEventStatus",
]
