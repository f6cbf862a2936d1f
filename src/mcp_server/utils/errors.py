"""Error envelopes returned by the SQL tool handlers.

Every failing tool call answers with the same ``{"error": {...}}`` shape, with
credentials redacted and the message bounded in length.
"""

from typing import Optional

from common.models.error_metadata import ErrorCategory, ToolError
from common.models.tool_envelopes import ToolErrorEnvelope
from common.sanitization.text import redact_sensitive_info
from dal.error_classification import RECOVERY_HINTS, emit_classified_error

MAX_ERROR_MESSAGE_LENGTH = 2048


def sanitize_error_message(message: Optional[str], fallback: str = "Request failed.") -> str:
    """Strip secrets from ``message`` and cap it at MAX_ERROR_MESSAGE_LENGTH."""
    cleaned = redact_sensitive_info(message.strip()) if message else ""
    return (cleaned or fallback)[:MAX_ERROR_MESSAGE_LENGTH]


def tool_error_response(
    *,
    message: str,
    code: str,
    category: ErrorCategory = ErrorCategory.INVALID_REQUEST,
    retryable: bool = False,
    hint: Optional[str] = None,
) -> str:
    """Serialize a tool failure as a JSON error envelope.

    Args:
        message: Text shown to the caller; redacted and truncated.
        code: Stable code such as ``READ_ONLY_VIOLATION``, or a SQLSTATE.
        category: Broad failure class used by clients to decide what to do next.
        retryable: True when repeating the same call may succeed.
        hint: Optional recovery suggestion.
    """
    hint_text = sanitize_error_message(hint, fallback="") if hint else ""
    error = ToolError(
        category=category,
        code=code,
        message=sanitize_error_message(message),
        retryable=retryable,
        hint=hint_text or None,
    )
    return ToolErrorEnvelope(error=error).model_dump_json(exclude_none=True)


def tool_error_from_exception(tool_name: str, exc: BaseException) -> str:
    """Classify ``exc``, record it on the current span and build the error envelope."""
    info = emit_classified_error(tool_name, exc)
    return tool_error_response(
        message=str(exc) or exc.__class__.__name__,
        code=info.code,
        category=ErrorCategory.from_value(info.category),
        retryable=info.is_retryable,
        hint=RECOVERY_HINTS.get(info.category),
    )
