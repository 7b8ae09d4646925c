"""
Stripe API adapter for donation payments.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, idempotency, and
observability.

Donations use the redirect-based Sources flow:

    create_source  ->  donor authorizes in the wallet app
                   ->  source.chargeable webhook
    create_charge  ->  charge.succeeded / charge.failed webhook

Features:
- Bounded timeouts on all API calls (STRIPE_API_TIMEOUT_SECONDS)
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on every write
- Read-only calls retried with exponential backoff on transient errors;
  create_charge is never retried here (see DonationStateMachine)

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Max attempts for read-only calls (default: 3)

Usage:
    from payments.adapters import StripeAdapter

    source = StripeAdapter.get_source_status("src_xxx")
    if source.status == "chargeable":
        charge = StripeAdapter.create_charge(
            source_id=source.id,
            amount_cents=104850,
            currency="php",
            idempotency_key="charge:<donation_id>:1:a1b2c3d4",
        )
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class SourceResult:
    """
    Result from Stripe Source operations.

    Attributes:
        id: Source ID (src_xxx)
        status: pending, chargeable, consumed, failed or canceled
        amount_cents: Amount authorized on the source
        currency: Currency code
        redirect_url: Where to send the donor to authorize (pending only)
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    redirect_url: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeResult:
    """
    Result from Stripe Charge operations.

    Attributes:
        id: Charge ID (ch_xxx)
        status: succeeded, pending or failed
        amount_cents: Charged amount
        currency: Currency code
        source_id: Source the charge was created against
        failure_message: Provider's failure reason (failed charges only)
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    source_id: str | None = None
    failure_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        charge_id: Original Charge ID
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    charge_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity_id, attempt) always yields the same key,
    so a retried charge for a donation is deduplicated by Stripe.

    Example:
        key = IdempotencyKeyGenerator.generate("charge", donation.id)
        # "charge:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error is retryable.

    Use this in Celery tasks to decide whether to retry:

        try:
            StripeAdapter.get_source_status(source_id)
        except Exception as e:
            if is_retryable_stripe_error(e):
                raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
            raise
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Usage:
        source = StripeAdapter.create_source(...)
        status = StripeAdapter.get_source_status(source.id)
        charge = StripeAdapter.create_charge(source.id, 104850, "php", key)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.http_client.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call_with_retries(
        cls,
        func: Callable[[], Any],
        log_context: dict[str, Any],
    ) -> Any:
        """
        Run a read-only Stripe call, retrying transient failures.

        Permanent errors are raised on the first attempt. Transient errors
        are retried up to STRIPE_MAX_RETRIES attempts in total.
        """
        logger = cls.get_logger()
        max_attempts = max(1, getattr(settings, "STRIPE_MAX_RETRIES", 3))

        for attempt in range(max_attempts):
            start_time = time.time()
            try:
                return func()
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                try:
                    cls._handle_stripe_error(e, log_context, duration_ms)
                except StripeError as translated:
                    if not translated.is_retryable or attempt + 1 >= max_attempts:
                        raise
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "Retrying Stripe operation",
                        extra={**log_context, "attempt": attempt + 1, "delay": delay},
                    )
                    time.sleep(delay)

    # =========================================================================
    # Sources
    # =========================================================================

    @classmethod
    def create_source(
        cls,
        amount_cents: int,
        currency: str,
        source_type: str,
        return_url: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> SourceResult:
        """
        Create a redirect-based payment source for a donation.

        Args:
            amount_cents: Total charge (gross plus donor-borne fees)
            currency: ISO 4217 currency code
            source_type: Stripe source type (STRIPE_SOURCE_TYPE)
            return_url: Where the wallet redirects the donor afterwards
            idempotency_key: Unique key for idempotent creation
            metadata: donation_id / campaign_id for webhook correlation

        Returns:
            SourceResult including the redirect URL

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_source",
            "amount_cents": amount_cents,
            "currency": currency,
            "source_type": source_type,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            source = stripe.Source.create(
                type=source_type,
                amount=amount_cents,
                currency=currency,
                redirect={"return_url": return_url},
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "source_id": source.id,
                    "status": source.status,
                    "duration_ms": duration_ms,
                },
            )

            return cls._to_source_result(source)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise  # Never reached, but satisfies type checker

    @classmethod
    def get_source_status(cls, source_id: str) -> SourceResult:
        """
        Retrieve the current status of a payment source.

        Retried with backoff on transient errors.

        Raises:
            StripeInvalidRequestError: Unknown source
            StripeAPIUnavailableError: Stripe unavailable after all retries
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "get_source_status",
            "source_id": source_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        source = cls._call_with_retries(
            lambda: stripe.Source.retrieve(source_id),
            log_context,
        )

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "status": source.status, "duration_ms": duration_ms},
        )

        return cls._to_source_result(source)

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def create_charge(
        cls,
        source_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> ChargeResult:
        """
        Create a charge against a chargeable source.

        Not retried here: a transient failure may mean the charge exists.
        Callers re-query the source (and find_charge_for_source) before
        retrying with the same idempotency key.

        Raises:
            StripeCardDeclinedError: Charge declined
            StripeInvalidRequestError: Source not chargeable
            StripeTimeoutError / StripeAPIUnavailableError: Outcome unknown
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_charge",
            "source_id": source_id,
            "amount_cents": amount_cents,
            "currency": currency,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            charge = stripe.Charge.create(
                amount=amount_cents,
                currency=currency,
                source=source_id,
                metadata={**(metadata or {}), "source_id": source_id},
                idempotency_key=idempotency_key,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "charge_id": charge.id,
                    "status": charge.status,
                    "duration_ms": duration_ms,
                },
            )

            return cls._to_charge_result(charge, source_id)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def find_charge_for_source(cls, source_id: str) -> ChargeResult | None:
        """
        Look up the charge created against a source, if any.

        Used to reconcile an ambiguous create_charge failure once the
        source reports "consumed". Relies on the source_id metadata that
        create_charge attaches to every charge.
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "find_charge_for_source",
            "source_id": source_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        results = cls._call_with_retries(
            lambda: stripe.Charge.search(
                query=f"metadata['source_id']:'{source_id}'",
                limit=1,
            ),
            log_context,
        )

        duration_ms = (time.time() - start_time) * 1000
        charges = list(results.data)
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "found": bool(charges), "duration_ms": duration_ms},
        )

        if not charges:
            return None
        return cls._to_charge_result(charges[0], source_id)

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        charge_id: str,
        amount_cents: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund part or all of a charge back to the donor.

        Args:
            charge_id: Stripe Charge ID (ch_xxx)
            amount_cents: Amount to refund
            idempotency_key: Unique key for idempotent refund
            metadata: decision_id / donation_id for correlation

        Raises:
            StripeInvalidRequestError: Charge not refundable or amount too large
            StripeAPIUnavailableError: Stripe service unavailable
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_refund",
            "charge_id": charge_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                charge=charge_id,
                amount=amount_cents,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "refund_id": refund.id,
                    "status": refund.status,
                    "duration_ms": duration_ms,
                },
            )

            return RefundResult(
                id=refund.id,
                amount_cents=refund.amount,
                currency=refund.currency,
                status=refund.status,
                charge_id=charge_id,
                metadata=dict(refund.metadata or {}),
                raw_response=refund.to_dict(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Stripe signs the raw body with HMAC-SHA256 using the endpoint's
        signing secret; construct_event recomputes and compares it.

        Raises:
            StripeInvalidRequestError: Invalid signature or payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
            return event.to_dict()
        except stripe.error.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Malformed webhook payload",
                stripe_code="invalid_payload",
                details={"error": str(e)},
            )

    # =========================================================================
    # Result Mapping
    # =========================================================================

    @staticmethod
    def _to_source_result(source: Any) -> SourceResult:
        redirect = getattr(source, "redirect", None)
        return SourceResult(
            id=source.id,
            status=source.status,
            amount_cents=source.amount,
            currency=source.currency,
            redirect_url=getattr(redirect, "url", None) if redirect else None,
            metadata=dict(source.metadata or {}),
            raw_response=source.to_dict(),
        )

    @staticmethod
    def _to_charge_result(charge: Any, source_id: str | None) -> ChargeResult:
        return ChargeResult(
            id=charge.id,
            status=charge.status,
            amount_cents=charge.amount,
            currency=charge.currency,
            source_id=source_id,
            failure_message=getattr(charge, "failure_message", None),
            raw_response=charge.to_dict(),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeCardDeclinedError: Payment declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.error.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Payment declined by Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                )

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.error.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            )

        elif isinstance(error, stripe.error.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        elif isinstance(error, stripe.error.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        elif isinstance(error, stripe.error.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        elif isinstance(error, stripe.error.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            )
