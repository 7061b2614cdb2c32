"""
Request coordinator for the Data Manager Layer.

Guarantees at most one outstanding fetch per DomainKey:

1. A fresh cache entry is returned without calling the fetcher
2. Concurrent callers for a key with a fetch in flight attach to that fetch
3. A forced refresh cancels the current fetch for the key and starts a new one
4. Every fetch runs under a deadline (with_deadline)
5. Only the current owner of a key commits to the cache and the StateStore

Ownership is a generation counter per key: starting a fetch bumps the
counter, and a fetch commits only if the counter still holds its own value.
A superseded fetch settles as an ABORTED DataFetchError and changes nothing.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from ...core.utils.timeout import (
    CancellationSource,
    CancellationToken,
    any_of,
    with_deadline,
)
from .cache import CacheLayer
from .errors import classify_error
from .state import StateStore
from .types import (
    DataFetchError,
    DomainKey,
    ErrorKind,
    FetchFailed,
    FetchStarted,
    FetchSucceeded,
)

logger = structlog.get_logger(__name__)

TaskFactory = Callable[[CancellationToken], Awaitable[Any]]

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class _InFlight:
    """The single outstanding fetch for one key."""

    generation: int
    task: asyncio.Task
    source: CancellationSource


def _aborted(key: DomainKey, message: str = "Request was cancelled") -> DataFetchError:
    return DataFetchError(
        message,
        retryable=True,
        kind=ErrorKind.ABORTED,
        code="ABORT_ERR",
        domain=str(key),
    )


def _retrieve_outcome(task: asyncio.Task) -> None:
    # A fetch nobody awaits any more still settles; read it so asyncio does not warn.
    if not task.cancelled():
        task.exception()


class RequestCoordinator:
    """
    Per-key in-flight registry in front of the CacheLayer and StateStore.

    All registry mutation happens in synchronous sections between awaits, so
    no lock is needed on a single event loop.
    """

    def __init__(
        self,
        cache: CacheLayer,
        store: StateStore,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._cache = cache
        self._store = store
        self._default_timeout = default_timeout_seconds
        self._in_flight: dict[DomainKey, _InFlight] = {}
        self._generations: dict[DomainKey, int] = {}
        self._stats = {"started": 0, "coalesced": 0, "cache_hits": 0, "superseded": 0}

    # =========================================================================
    # Fetching
    # =========================================================================

    async def fetch_once(
        self,
        key: DomainKey,
        task_factory: TaskFactory,
        *,
        force_refresh: bool = False,
        signal: CancellationToken | None = None,
        timeout_seconds: float | None = None,
        ttl_seconds: float | None = None,
        label: str | None = None,
    ) -> Any:
        """
        Fetch a key at most once at a time.

        Args:
            key: Domain key to fetch
            task_factory: Called with a cancellation token; returns the payload
            force_refresh: Skip the cache and supersede any fetch in flight
            signal: Caller-owned cancellation token
            timeout_seconds: Deadline for the fetch (default: coordinator default)
            ttl_seconds: Cache TTL for the result (default: cache default)
            label: Diagnostic label (default: the key)

        Returns:
            The payload, from the cache or from the fetcher

        Raises:
            DataFetchError: Classified failure of the fetch, or ABORTED when the
                caller's signal fired or the fetch was superseded
        """
        label = label or str(key)

        if signal is not None and signal.cancelled:
            raise _aborted(key)

        if not force_refresh:
            entry = self._cache.get_fresh(key)
            if entry is not None:
                self._stats["cache_hits"] += 1
                # A forced refresh in flight keeps the key in loading
                if key not in self._in_flight and not self._store.get(key).is_success:
                    self._store.dispatch(FetchSucceeded(key, entry.data))
                return entry.data

            current = self._in_flight.get(key)
            if current is not None:
                self._stats["coalesced"] += 1
                logger.debug(
                    "fetch_coalesced", key=label, generation=current.generation
                )
                return await self._join(key, current.task, signal)

        previous = self._in_flight.get(key)
        if previous is not None:
            self._stats["superseded"] += 1
            previous.source.cancel("superseded")
            logger.info(
                "fetch_superseded", key=label, generation=previous.generation
            )

        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        source = CancellationSource()

        self._store.dispatch(FetchStarted(key))
        task = asyncio.create_task(
            self._run(
                key,
                generation,
                task_factory,
                any_of(source.token, signal),
                self._default_timeout if timeout_seconds is None else timeout_seconds,
                ttl_seconds,
                label,
            )
        )
        task.add_done_callback(_retrieve_outcome)
        self._in_flight[key] = _InFlight(generation, task, source)
        self._stats["started"] += 1

        logger.debug("fetch_started", key=label, generation=generation)
        return await self._join(key, task, signal)

    async def _run(
        self,
        key: DomainKey,
        generation: int,
        task_factory: TaskFactory,
        token: CancellationToken,
        timeout_seconds: float,
        ttl_seconds: float | None,
        label: str,
    ) -> Any:
        start_time = time.perf_counter()
        try:
            try:
                data = await with_deadline(
                    task_factory, timeout_seconds, label, signal=token
                )
            except Exception as e:
                if not self.is_owner(key, generation):
                    logger.debug("stale_failure_discarded", key=label)
                    raise _aborted(key, "Request was superseded") from e

                error = classify_error(e, key)
                self._store.dispatch(FetchFailed(key, error))
                logger.warning(
                    "fetch_failed",
                    key=label,
                    kind=error.kind.value,
                    status=error.status,
                    retryable=error.retryable,
                    error=error.message,
                    duration_ms=int((time.perf_counter() - start_time) * 1000),
                )
                raise error from e

            if not self.is_owner(key, generation):
                logger.debug("stale_result_discarded", key=label)
                raise _aborted(key, "Request was superseded")

            self._cache.set(key, data, ttl_seconds)
            self._store.dispatch(FetchSucceeded(key, data))
            logger.info(
                "fetch_completed",
                key=label,
                duration_ms=int((time.perf_counter() - start_time) * 1000),
            )
            return data
        finally:
            token.detach()
            if self.is_owner(key, generation):
                self._in_flight.pop(key, None)

    async def _join(
        self,
        key: DomainKey,
        task: asyncio.Task,
        signal: CancellationToken | None,
    ) -> Any:
        """
        Wait for a shared fetch.

        The fetch outlives any single waiter: cancelling the awaiting coroutine,
        or firing its own signal, only detaches that waiter.
        """
        if signal is None:
            return await asyncio.shield(task)

        aborted = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, aborted}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            aborted.cancel()

        if task in done:
            return task.result()
        raise _aborted(key)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, key: DomainKey, reason: Any = "cancelled") -> bool:
        """
        Cancel the fetch in flight for a key.

        The fetch stays the owner, so the key settles in ``error`` with an
        ABORTED, retryable DataFetchError.

        Returns:
            True if a fetch was in flight
        """
        current = self._in_flight.get(key)
        if current is None:
            return False
        current.source.cancel(reason)
        logger.info("fetch_cancelled", key=str(key), reason=str(reason))
        return True

    async def aclose(self) -> None:
        """
        Abandon every fetch in flight and wait for them to settle.

        Ownership is revoked first, so nothing commits afterwards.
        """
        pending = list(self._in_flight.items())
        self._in_flight.clear()
        for key, current in pending:
            self._generations[key] = current.generation + 1
            current.source.cancel("disposed")

        if pending:
            await asyncio.gather(
                *(current.task for _, current in pending), return_exceptions=True
            )
            logger.info("coordinator_closed", abandoned=len(pending))

    # =========================================================================
    # Introspection
    # =========================================================================

    def is_owner(self, key: DomainKey, generation: int) -> bool:
        """Whether ``generation`` is still the latest fetch started for ``key``."""
        return self._generations.get(key) == generation

    def is_in_flight(self, key: DomainKey) -> bool:
        return key in self._in_flight

    def in_flight_keys(self) -> list[DomainKey]:
        return list(self._in_flight)

    def get_stats(self) -> dict[str, Any]:
        """Get coordinator statistics."""
        return {
            "in_flight": [str(key) for key in self._in_flight],
            "generations": {str(key): gen for key, gen in self._generations.items()},
            **self._stats,
        }
