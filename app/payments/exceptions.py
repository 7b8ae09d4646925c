"""
Payment-specific exceptions.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── DonationNotFoundError - Donation / session lookup failures (404)
    ├── PaymentValidationError - Amounts, limits and fee configuration (400)
    └── PaymentProcessingError - Provider-side failures (502)
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Payment declined (permanent)
            ├── StripeInsufficientFundsError - Insufficient funds (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient, retry)
            ├── StripeAPIUnavailableError - API unavailable (transient, retry)
            ├── StripeTimeoutError - Request timeout (transient, retry)
            └── ChargeOutcomeUnknownError - Charge may or may not exist

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import StripeError, LockAcquisitionError

    try:
        StripeAdapter.create_charge(...)
    except StripeError as e:
        if e.is_retryable:
            # Re-query the source before trying again
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Inherits from BaseApplicationError so the API exception handler
    renders it like any other application error.
    """

    default_error_code: str = "PAYMENT_ERROR"


class DonationNotFoundError(PaymentError):
    """
    Raised when a donation or its payment session cannot be found.

    Example:
        donation = Donation.objects.filter(id=donation_id).first()
        if not donation:
            raise DonationNotFoundError(
                f"Donation {donation_id} not found",
                details={"donation_id": str(donation_id)},
            )
    """

    default_error_code: str = "DONATION_NOT_FOUND"
    http_status = 404


class PaymentValidationError(PaymentError):
    """
    Raised when checkout input or fee configuration is invalid.

    Use for:
    - Amount below MIN_DONATION_CENTS or above MAX_DONATION_CENTS
    - Net amount below MIN_NET_AMOUNT_CENTS after fees
    - Platform fee percentage outside 0-20
    - Campaign not accepting donations
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    http_status = 400


class PaymentProcessingError(PaymentError):
    """Raised when the payment provider fails to process a request."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    http_status = 502


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's internal error code
        decline_code: Decline code (if applicable)
        is_retryable: Whether the operation can be retried

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with backoff (for charge
      creation only after re-querying the source)
    - False: Permanent error, record the failure and stop
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    The payment was declined.

    For redirect-based sources this also covers a source that was
    cancelled or failed by the wallet provider. The donation is recorded
    as failed with this message as the failure reason.
    """

    default_error_code: str = "PAYMENT_DECLINED"
    is_retryable: bool = False
    http_status = 402


class StripeInsufficientFundsError(StripeError):
    """Insufficient funds on the payment source."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False
    http_status = 402


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Possible causes:
    - Unknown source or charge ID
    - Source not chargeable (already consumed, expired)
    - Refund larger than the remaining charge amount
    - Invalid webhook signature

    Note:
        Outside of signature failures this usually indicates a bug in our
        code, not a donor error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers network connectivity issues, Stripe 5xx responses and
    TLS failures.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side. A charge
    call that times out is reconciled by re-querying the source before it
    is attempted again with the same idempotency key.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


class ChargeOutcomeUnknownError(StripeError):
    """
    A charge request failed ambiguously and reconciliation did not settle it.

    Raised by the donation state machine after the retry budget is
    exhausted while the source still reports neither a charge nor a
    definitive failure. The donation stays pending; the next webhook or
    verification call resumes from the re-query step.
    """

    default_error_code: str = "CHARGE_OUTCOME_UNKNOWN"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        lock = DistributedLock("donation:123", ttl=30, timeout=10)
        with lock:
            ...  # raises LockAcquisitionError after 10s of contention
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "DonationNotFoundError",
    "PaymentValidationError",
    "PaymentProcessingError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    "ChargeOutcomeUnknownError",
    # Concurrency control
    "LockAcquisitionError",
]
