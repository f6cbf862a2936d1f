"""Structured error metadata models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorCategory(str, Enum):
    """Canonical error categories surfaced to tool callers."""

    AUTH = "auth"
    INVALID_REQUEST = "invalid_request"
    TIMEOUT = "timeout"
    CONNECTIVITY = "connectivity"
    SYNTAX = "syntax"
    DEADLOCK = "deadlock"
    SERIALIZATION = "serialization"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    MUTATION_BLOCKED = "mutation_blocked"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: str) -> "ErrorCategory":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ToolError(BaseModel):
    """Canonical tool error contract."""

    model_config = ConfigDict(populate_by_name=True)

    category: ErrorCategory = Field(..., description="Error category")
    code: str = Field(..., description="Stable machine-readable error code or SQLSTATE")
    message: str = Field(
        ..., max_length=2048, description="Safe user-facing error message (redacted/bounded)"
    )
    retryable: bool = Field(False, description="Whether the error is retryable")
    hint: Optional[str] = Field(
        None, max_length=2048, description="Suggested next step for the caller"
    )
