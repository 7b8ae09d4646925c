"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- A single place mapping error kinds to HTTP statuses

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Bad input (400)
    ├── NotFoundError - Unknown donation/decision/campaign (404)
    ├── PermissionDeniedError - Ownership or role violation (403)
    ├── ConflictError - Resource state forbids the operation (409)
    ├── ExternalServiceError - Payment provider failures (502/503)
    └── InternalError - Ledger or storage failures (500)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("Donation amount is below the minimum")

    raise NotFoundError(
        f"Donation {donation_id} not found",
        error_code="DONATION_NOT_FOUND",
        details={"donation_id": str(donation_id)},
    )

Note:
    These exceptions are for domain/business logic errors.
    core.exception_handlers renders them for DRF views.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description (safe to show to donors)
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, identifiers, etc.)
        http_status: Status used when the error reaches an API boundary
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Decision deadline has passed",
                "error_code": "DEADLINE_PASSED",
                "details": {"decision_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Amounts outside configured limits
    - Fee configuration out of bounds
    - Invalid redirect targets

    Note:
        For DRF serializer validation, use DRF's built-in validation.
        Use this for service-layer validation logic.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource is not found."""

    default_error_code: str = "NOT_FOUND"
    http_status = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if decision.donor_id != donor.id:
            raise PermissionDeniedError(
                "You can only decide on your own refunds",
                error_code="NOT_DECISION_OWNER",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Decisions that were already resolved
    - Deadlines that have passed
    - Invalid state transitions and concurrent modifications
    """

    default_error_code: str = "CONFLICT"
    http_status = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose internal
    details to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status = 502


class InternalError(BaseApplicationError):
    """
    Raised when an internal write fails (e.g. a campaign ledger update).

    These are data-integrity incidents rather than user mistakes.
    """

    default_error_code: str = "INTERNAL_ERROR"
    http_status = 500
