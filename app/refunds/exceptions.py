"""
Refund-specific exceptions.

Exception Hierarchy:
    ConflictError (409)
    ├── DecisionAlreadyResolvedError - Decision is no longer pending
    └── DecisionDeadlinePassedError - Too late for a donor decision
    ValidationError (400)
    └── InvalidRedirectTargetError - Redirect campaign not acceptable
    ExternalServiceError (502)
    └── PayoutFailedError - Refund could not be paid back to the donor

Usage:
    from refunds.exceptions import DecisionAlreadyResolvedError

    if decision.status != DecisionStatus.PENDING:
        raise DecisionAlreadyResolvedError(
            "This refund decision has already been made",
            details={"decision_id": str(decision.id), "status": decision.status},
        )
"""

from core.exceptions import ConflictError, ExternalServiceError, ValidationError


class DecisionAlreadyResolvedError(ConflictError):
    default_error_code: str = "DECISION_ALREADY_RESOLVED"


class DecisionDeadlinePassedError(ConflictError):
    """
    Raised when a donor submits after the decision deadline.

    Decisions past their deadline are resolved by the refund sweep only.
    """

    default_error_code: str = "DECISION_DEADLINE_PASSED"


class InvalidRedirectTargetError(ValidationError):
    """
    Raised when a redirect target cannot receive funds.

    error_code tells the donor why: CAMPAIGN_NOT_FOUND, CAMPAIGN_NOT_ACTIVE,
    SAME_CAMPAIGN, CAMPAIGN_FUNDED or CAMPAIGN_ENDING_SOON.
    """

    default_error_code: str = "INVALID_REDIRECT_TARGET"


class PayoutFailedError(ExternalServiceError):
    """
    Raised when paying a refund back failed after all retries.

    The decision keeps its DECIDED / AUTO_REFUNDED status and is
    re-executed by the next refund sweep.
    """

    default_error_code: str = "REFUND_PAYOUT_FAILED"


__all__ = [
    "DecisionAlreadyResolvedError",
    "DecisionDeadlinePassedError",
    "InvalidRedirectTargetError",
    "PayoutFailedError",
]
