"""Exception types raised by the connection and execution layers."""

from typing import Optional


class DatabaseError(Exception):
    """Base class for connection-manager and execution errors."""


class ConfigurationError(DatabaseError):
    """Raised for unknown servers or when no connection has been selected."""


class ReadOnlyViolationError(DatabaseError):
    """Raised when SQL is rejected by the read-only access policy."""

    def __init__(self, reason: str) -> None:
        """Initialize with the validator's rejection reason."""
        self.reason = reason
        super().__init__(f"Read-only mode violation: {reason}")


class PoolExhaustedError(DatabaseError):
    """Raised when the global connection ceiling or a single pool is exhausted.

    With ``pool_key`` the limit is that pool's size, otherwise the global ceiling.
    """

    def __init__(self, active: int, limit: int, pool_key: Optional[str] = None) -> None:
        """Initialize with the current and maximum connection counts."""
        self.active = active
        self.limit = limit
        self.pool_key = pool_key
        if pool_key:
            message = (
                f"Connection pool '{pool_key}' is exhausted "
                f"({limit}/{limit} connections in use). Retry later."
            )
        else:
            message = f"Connection limit reached ({active}/{limit} active). Retry later."
        super().__init__(message)


class TransactionNotFoundError(DatabaseError):
    """Raised when a transaction id does not refer to an open transaction."""

    def __init__(self, transaction_id: str) -> None:
        """Initialize with the unknown transaction id."""
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class SchemaSwitchError(DatabaseError):
    """Raised when the requested schema cannot be applied to a leased connection."""
