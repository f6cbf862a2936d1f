"""Tests for tool error envelopes and credential redaction."""

import json

import pytest

from common.models.error_metadata import ErrorCategory
from common.sanitization import redact_sensitive_info
from dal.errors import ReadOnlyViolationError
from mcp_server.utils.errors import (
    MAX_ERROR_MESSAGE_LENGTH,
    sanitize_error_message,
    tool_error_from_exception,
    tool_error_response,
)


class TestRedaction:
    @pytest.mark.parametrize(
        "text, expected",
        [
            (
                "could not connect to postgresql://admin:hunter2@db:5432/app",
                "could not connect to postgresql://<user>:<password>@db:5432/app",
            ),
            ("host=db password=hunter2 user=app", "host=db password=<redacted> user=app"),
            ("PGPASSWORD: 'secret value'", "PGPASSWORD: <redacted>"),
            ("syntax error at or near FROM", "syntax error at or near FROM"),
        ],
    )
    def test_redact(self, text, expected):
        assert redact_sensitive_info(text) == expected

    def test_empty_text(self):
        assert redact_sensitive_info("") == ""


def test_sanitize_error_message_bounds_and_falls_back():
    assert sanitize_error_message("   ") == "Request failed."
    assert len(sanitize_error_message("x" * 5000)) == MAX_ERROR_MESSAGE_LENGTH


def test_tool_error_response_envelope():
    payload = json.loads(
        tool_error_response(
            message="Transaction not found: t1",
            code="TRANSACTION_NOT_FOUND",
            hint="Use list_active_transactions",
        )
    )
    assert payload == {
        "error": {
            "category": "invalid_request",
            "code": "TRANSACTION_NOT_FOUND",
            "message": "Transaction not found: t1",
            "retryable": False,
            "hint": "Use list_active_transactions",
        }
    }


def test_tool_error_response_without_hint():
    payload = json.loads(
        tool_error_response(message="boom", code="X", category=ErrorCategory.UNKNOWN)
    )
    assert "hint" not in payload["error"]
    assert payload["error"]["category"] == "unknown"


def test_tool_error_from_exception_classifies():
    payload = json.loads(
        tool_error_from_exception("execute_sql", ReadOnlyViolationError("Write operation 'DELETE' detected"))
    )["error"]

    assert payload["category"] == "mutation_blocked"
    assert payload["code"] == "READ_ONLY_VIOLATION"
    assert payload["retryable"] is False
    assert payload["message"].startswith("Read-only mode violation:")
    assert "read-only mode" in payload["hint"]


def test_tool_error_from_exception_redacts_credentials():
    exc = ConnectionRefusedError("connect to postgresql://app:s3cret@db failed")
    payload = json.loads(tool_error_from_exception("switch_server_db", exc))["error"]

    assert "s3cret" not in payload["message"]
    assert payload["category"] == "connectivity"
    assert payload["retryable"] is True


def test_error_category_from_unknown_value():
    assert ErrorCategory.from_value("bogus") is ErrorCategory.UNKNOWN
    assert ErrorCategory.from_value("timeout") is ErrorCategory.TIMEOUT
