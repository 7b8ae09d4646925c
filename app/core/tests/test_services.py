"""
Tests for ServiceResult and BaseService.
"""

import logging

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult


class ExampleService(BaseService):
    pass


class TestServiceResult:
    def test_success_is_truthy(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.data == {"id": 1}
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_response(self):
        result = ServiceResult.failure(
            "Amount too small", error_code="AMOUNT_TOO_SMALL", errors={"amount": ["min"]}
        )

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Amount too small",
            "error_code": "AMOUNT_TOO_SMALL",
            "errors": {"amount": ["min"]},
        }

    def test_from_application_error_keeps_code(self):
        result = ServiceResult.from_exception(
            ConflictError("Already resolved", error_code="ALREADY_RESOLVED")
        )

        assert result.error == "Already resolved"
        assert result.error_code == "ALREADY_RESOLVED"

    def test_from_plain_exception_uses_class_name(self):
        result = ServiceResult.from_exception(KeyError("missing"))

        assert result.error_code == "KEYERROR"


class TestBaseService:
    def test_logger_named_after_service(self):
        assert ExampleService.get_logger().name.endswith("test_services.ExampleService")

    def test_handle_exception_logs_and_wraps(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = ExampleService.handle_exception(
                ValueError("bad input"), context="Parsing", log_level=logging.WARNING
            )

        assert result.success is False
        assert "Parsing: bad input" in caplog.text
