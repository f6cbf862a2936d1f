"""MCP tool response contract enforcement at the registry boundary.

Every registered tool returns a JSON string: either the serialized result or
the error envelope built from the exception the handler raised.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Awaitable, Callable, ParamSpec

from mcp_server.utils.errors import tool_error_from_exception

logger = logging.getLogger(__name__)

P = ParamSpec("P")


def _to_json(response: Any) -> str:
    if isinstance(response, str):
        return response
    if hasattr(response, "to_json"):
        return response.to_json()
    if hasattr(response, "model_dump_json"):
        return response.model_dump_json(exclude_none=True)
    return json.dumps(response, default=str)


def enforce_tool_response_contract(
    tool_name: str,
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[str]]]:
    """Wrap a tool handler so it always returns a JSON string."""

    def decorator(func: Callable[P, Awaitable[Any]]) -> Callable[P, Awaitable[str]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> str:
            try:
                response = await func(*args, **kwargs)
            except Exception as exc:
                logger.info("Tool %s failed: %s", tool_name, exc.__class__.__name__)
                return tool_error_from_exception(tool_name, exc)
            return _to_json(response)

        return wrapper

    return decorator
