"""Bounded cache of connection pools for per-call server/database overrides.

Pools are keyed by ``server:database``. Concurrent requests for a key that is
still being created share one creation future, so exactly one pool is built per
key. The lock guards only the bookkeeping maps; the network connect of a new pool
runs outside it so unrelated keys never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

PoolFactory = Callable[[], Awaitable[Any]]


@dataclass
class CachedPool:
    """A cached override pool and its usage bookkeeping."""

    key: str
    server: str
    database: str
    pool: Any
    created_at: float
    last_used_at: float
    active_connections: int = 0

    def touch(self, now: float) -> None:
        self.last_used_at = now


@dataclass
class _PoolCacheStats:
    created: int = 0
    reused: int = 0
    shared_creations: int = 0
    evicted: int = 0
    expired: int = 0


class PoolCache:
    """LRU- and idle-evicted pool cache with single-flight pool creation."""

    def __init__(
        self,
        capacity: int,
        idle_timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache limits."""
        if capacity < 1:
            raise ValueError("Pool cache capacity must be at least 1")
        self._capacity = capacity
        self._idle_timeout = idle_timeout_seconds
        self._clock = clock
        self._pools: "OrderedDict[str, CachedPool]" = OrderedDict()
        self._pending: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()
        self._closing: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None
        self._stats = _PoolCacheStats()

    def __len__(self) -> int:
        return len(self._pools)

    def __contains__(self, key: str) -> bool:
        return key in self._pools

    @property
    def capacity(self) -> int:
        return self._capacity

    def keys(self) -> List[str]:
        return list(self._pools.keys())

    def stats(self) -> Dict[str, Any]:
        """Return counters describing cache behaviour."""
        return {
            "size": len(self._pools),
            "capacity": self._capacity,
            "created": self._stats.created,
            "reused": self._stats.reused,
            "shared_creations": self._stats.shared_creations,
            "evicted": self._stats.evicted,
            "expired": self._stats.expired,
            "pending": sorted(self._pending.keys()),
        }

    async def get_or_create(
        self, key: str, server: str, database: str, factory: PoolFactory
    ) -> CachedPool:
        """Return the cached pool for ``key``, creating it at most once.

        If another task is already creating the pool for ``key`` the caller waits
        for that creation instead of starting its own; a creation failure is raised
        in every waiting caller.
        """
        async with self._lock:
            entry = self._pools.get(key)
            if entry is not None:
                entry.touch(self._clock())
                self._pools.move_to_end(key)
                self._stats.reused += 1
                return entry

            future = self._pending.get(key)
            is_creator = future is None
            if is_creator:
                future = asyncio.get_running_loop().create_future()
                self._pending[key] = future
            else:
                self._stats.shared_creations += 1

        if not is_creator:
            return await asyncio.shield(future)

        try:
            entry = await self._create(key, server, database, factory)
        except asyncio.CancelledError:
            future.set_exception(ConnectionError(f"Creation of pool '{key}' was cancelled"))
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Waiters re-raise it; mark retrieved so an unawaited future does not log.
            future.exception()
            raise
        else:
            future.set_result(entry)
            return entry
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]

    async def _create(
        self, key: str, server: str, database: str, factory: PoolFactory
    ) -> CachedPool:
        async with self._lock:
            entry = self._pools.get(key)
            if entry is not None:
                entry.touch(self._clock())
                self._pools.move_to_end(key)
                return entry
            self._evict_for_capacity()

        logger.info("Creating cached pool for %s", key)
        pool = await factory()
        now = self._clock()
        entry = CachedPool(
            key=key,
            server=server,
            database=database,
            pool=pool,
            created_at=now,
            last_used_at=now,
        )

        async with self._lock:
            self._evict_for_capacity()
            self._pools[key] = entry
            self._stats.created += 1
        return entry

    def lease_started(self, entry: CachedPool) -> None:
        entry.active_connections += 1
        entry.touch(self._clock())

    def lease_finished(self, entry: CachedPool) -> None:
        entry.active_connections = max(0, entry.active_connections - 1)
        entry.touch(self._clock())

    def _evict_for_capacity(self) -> None:
        """Evict least-recently-used pools until one slot is free. Caller holds the lock."""
        while len(self._pools) >= self._capacity:
            victim = self._pick_victim()
            self._pools.pop(victim.key)
            self._stats.evicted += 1
            logger.info("Evicting least recently used pool %s", victim.key)
            self._close_in_background(victim)

    def _pick_victim(self) -> CachedPool:
        for entry in self._pools.values():
            if entry.active_connections == 0:
                return entry
        return next(iter(self._pools.values()))

    def _close_in_background(self, entry: CachedPool) -> None:
        task = asyncio.get_running_loop().create_task(_close_pool(entry))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def sweep_idle(self) -> int:
        """Close pools with no leased connections that have been idle too long."""
        now = self._clock()
        async with self._lock:
            expired = [
                entry
                for entry in self._pools.values()
                if entry.active_connections == 0
                and now - entry.last_used_at > self._idle_timeout
            ]
            for entry in expired:
                self._pools.pop(entry.key)
            self._stats.expired += len(expired)

        for entry in expired:
            logger.info("Closing idle pool %s", entry.key)
            await _close_pool(entry)
        return len(expired)

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start the periodic idle sweep on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(interval_seconds)
        )

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_idle()
            except Exception:
                logger.exception("Idle pool sweep failed")

    async def close_all(self) -> None:
        """Stop the sweeper and close every cached pool."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        async with self._lock:
            entries = list(self._pools.values())
            self._pools.clear()

        for entry in entries:
            await _close_pool(entry)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)


async def _close_pool(entry: CachedPool) -> None:
    try:
        await entry.pool.close()
    except Exception as exc:
        logger.warning("Error closing pool %s: %s", entry.key, exc)
