"""Process-wide ceiling on leased connections across the main and cached pools."""

from dal.errors import PoolExhaustedError


class ConnectionBudget:
    """Counts leased connections and refuses leases above a fixed ceiling.

    Acquire and release are synchronous, so a check-and-increment never spans
    an ``await`` and concurrent tasks cannot both take the last slot.
    """

    def __init__(self, limit: int) -> None:
        """Initialize with the maximum number of concurrently leased connections."""
        if limit < 1:
            raise ValueError("Connection limit must be at least 1")
        self._limit = limit
        self._active = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    @property
    def available(self) -> int:
        return self._limit - self._active

    def acquire(self) -> None:
        """Reserve one connection slot or raise PoolExhaustedError."""
        if self._active >= self._limit:
            raise PoolExhaustedError(self._active, self._limit)
        self._active += 1

    def release(self) -> None:
        """Return one connection slot."""
        if self._active > 0:
            self._active -= 1
