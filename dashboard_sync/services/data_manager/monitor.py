"""
Background staleness sweep for the Data Manager Layer.

Every ``interval_seconds`` the monitor scans the StateStore and, for each key
in ``success`` whose cache entry is missing or stale, starts a non-forced
refresh. Keys in ``loading`` or ``error`` are left alone: errors are only
retried by an explicit refetch.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from .cache import CacheLayer
from .state import StateStore
from .types import DataFetchError, DomainKey

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0

Refresher = Callable[[DomainKey], Awaitable[Any]]


class StalenessMonitor:
    """
    Recurring sweep with an explicit start/stop lifecycle.

    The refresher must be non-forced so a sweep defers to a fetch that is
    already in flight for the same key.
    """

    def __init__(
        self,
        store: StateStore,
        cache: CacheLayer,
        refresher: Refresher,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        """
        Args:
            store: StateStore to scan
            cache: CacheLayer holding the entries to check
            refresher: Coroutine function that loads one key without forcing
            interval_seconds: Seconds between sweeps
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._store = store
        self._cache = cache
        self._refresher = refresher
        self._interval = interval_seconds
        self._sweep_task: asyncio.Task | None = None
        self._refreshes: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the background sweep (no-op if already running)."""
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Staleness monitor started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the sweep and detach from any refresh it started."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("Staleness monitor stopped")

        refreshes = list(self._refreshes)
        for task in refreshes:
            task.cancel()
        if refreshes:
            await asyncio.gather(*refreshes, return_exceptions=True)
        self._refreshes.clear()

    def stale_keys(self) -> list[DomainKey]:
        """Keys in ``success`` whose cache entry is missing or past its TTL."""
        stale = []
        for key, state in self._store.items():
            if not state.is_success:
                continue
            entry = self._cache.peek(key)
            if entry is None or self._cache.is_stale(entry):
                stale.append(key)
        return stale

    def sweep(self) -> list[DomainKey]:
        """
        Run one sweep immediately.

        Returns:
            Keys for which a background refresh was started
        """
        stale = self.stale_keys()
        for key in stale:
            task = asyncio.create_task(self._refresh(key))
            self._refreshes.add(task)
            task.add_done_callback(self._refreshes.discard)

        if stale:
            logger.info(
                "Staleness sweep completed",
                refreshed=[str(key) for key in stale],
            )
        return stale

    async def wait_idle(self) -> None:
        """Wait until every refresh started by a sweep has settled."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)

    async def _refresh(self, key: DomainKey) -> None:
        try:
            await self._refresher(key)
        except DataFetchError as e:
            # Already committed to the StateStore by the coordinator
            logger.info(
                "Background refresh failed",
                key=str(key),
                kind=e.kind.value,
                retryable=e.retryable,
            )
        except Exception as e:
            # e.g. a seeded domain with no fetcher registered
            logger.error(
                "Background refresh error",
                key=str(key),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _sweep_loop(self) -> None:
        """Background task that sweeps every interval."""
        while True:
            try:
                await asyncio.sleep(self._interval)
                self.sweep()
            except asyncio.CancelledError:
                logger.debug("Staleness sweep loop cancelled")
                raise
            except Exception as e:
                logger.error("Error in staleness sweep", error=str(e))
