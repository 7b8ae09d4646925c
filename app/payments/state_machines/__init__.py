"""
State machine enums for payment models.
"""

from payments.state_machines.states import (
    DonationStatus,
    PaymentMethod,
    PaymentSessionStatus,
    WebhookEventStatus,
)

__all__ = [
    "DonationStatus",
    "PaymentMethod",
    "PaymentSessionStatus",
    "WebhookEventStatus",
]
