"""
DRF exception handler for application errors.

Registered as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Application errors
(core.exceptions.BaseApplicationError and subclasses) are rendered as:

    {
        "success": false,
        "error": "Decision deadline has passed",
        "error_code": "DEADLINE_PASSED",
        "details": {...}
    }

with the status declared on the exception class. Everything else falls
through to DRF's default handler.
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    if not isinstance(exc, BaseApplicationError):
        return exception_handler(exc, context)

    status_code = exc.http_status
    if getattr(exc, "is_retryable", False):
        status_code = 503

    view = context.get("view")
    log_level = logging.ERROR if status_code >= 500 else logging.INFO
    logger.log(
        log_level,
        f"Request failed: {exc}",
        extra={
            "error_code": exc.error_code,
            "status_code": status_code,
            "view": view.__class__.__name__ if view else None,
        },
    )

    return Response({"success": False, **exc.to_dict()}, status=status_code)
