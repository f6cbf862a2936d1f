"""Typed envelope models for tool IO."""

from pydantic import BaseModel, Field

from common.models.error_metadata import ToolError


class ToolErrorEnvelope(BaseModel):
    """Response returned by a tool call that failed."""

    error: ToolError = Field(..., description="Structured error")
