"""Reconnect-and-retry wrapper for operations that hit a dead connection."""

import functools
import logging
from typing import Any, Awaitable, Callable, Optional, ParamSpec, TypeVar

from dal.database import ConnectionPoolManager
from dal.error_classification import is_connection_error

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


async def with_connection_retry(
    operation: Callable[[], Awaitable[R]],
    manager: ConnectionPoolManager,
    max_retries: int = 1,
) -> R:
    """Run ``operation``, reconnecting and retrying on connection errors.

    Non-connection errors propagate immediately. When ``manager.reconnect()``
    fails the last error is re-raised without further attempts.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            if attempt >= max_retries or not is_connection_error(exc):
                raise
            logger.warning(
                "Connection error detected (attempt %d/%d), attempting reconnect: %s",
                attempt + 1,
                max_retries + 1,
                exc,
            )
            if not await manager.reconnect():
                logger.error("Reconnection failed, will not retry")
                raise
            logger.info("Reconnection successful, retrying operation")
    raise RuntimeError("Retry loop exited without a result") from last_error


def connection_retry(
    max_retries: int = 1,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator form of ``with_connection_retry`` for tool handlers.

    The manager is resolved from the server context on every call.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            from mcp_server.utils.context import get_manager

            async def call() -> Any:
                return await func(*args, **kwargs)

            return await with_connection_retry(call, get_manager(), max_retries)

        return wrapper

    return decorator
