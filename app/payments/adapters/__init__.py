"""
Payment adapters for external services.

All external payment API calls go through these adapters to ensure
consistent error handling, timeouts, idempotency, and observability.

Usage:
    from payments.adapters import StripeAdapter, IdempotencyKeyGenerator

    charge = StripeAdapter.create_charge(
        source_id="src_xxx",
        amount_cents=104850,
        currency="php",
        idempotency_key=IdempotencyKeyGenerator.generate("charge", donation.id),
    )
"""

from payments.adapters.stripe_adapter import (
    ChargeResult,
    IdempotencyKeyGenerator,
    RefundResult,
    SourceResult,
    StripeAdapter,
    backoff_delay,
    is_retryable_stripe_error,
)

__all__ = [
    "ChargeResult",
    "IdempotencyKeyGenerator",
    "RefundResult",
    "SourceResult",
    "StripeAdapter",
    "backoff_delay",
    "is_retryable_stripe_error",
]
