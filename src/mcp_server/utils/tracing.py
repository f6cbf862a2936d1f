"""Tracing wrapper for MCP tools."""

import functools
import json
import logging
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _error_category(response: Any) -> str | None:
    """Return the envelope error category of a JSON tool response, if any."""
    if not isinstance(response, str):
        return None
    try:
        payload = json.loads(response)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("category") or "unknown")
    return None


def trace_tool(tool_name: str) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Run a tool handler inside an ``mcp.tool.<name>`` span."""

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            tracer = trace.get_tracer("mcp_server")
            with tracer.start_as_current_span(
                f"mcp.tool.{tool_name}",
                kind=trace.SpanKind.SERVER,
                record_exception=True,
            ) as span:
                span.set_attribute("mcp.tool.name", tool_name)
                try:
                    response = await func(*args, **kwargs)
                except Exception as exc:
                    span.set_attribute("mcp.tool.status", "error")
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    raise

                category = _error_category(response)
                if category is not None:
                    span.set_attribute("mcp.tool.status", "error")
                    span.set_attribute("mcp.tool.error.category", category)
                    span.set_status(Status(StatusCode.ERROR, category))
                else:
                    span.set_attribute("mcp.tool.status", "ok")
                if isinstance(response, str):
                    span.set_attribute("mcp.tool.response.size_bytes", len(response))
                return response

        return wrapper

    return decorator
