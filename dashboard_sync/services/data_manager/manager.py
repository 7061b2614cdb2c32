"""
Data Manager - Single source of truth for dashboard data.

The DataManager is a provider-scoped registry that owns one of each:
- CacheLayer (TTL entries per DomainKey)
- StateStore (idle/loading/success/error per DomainKey)
- RequestCoordinator (at most one fetch in flight per DomainKey)
- StalenessMonitor (background refresh of stale successful domains)
- ErrorNotifier (one notification per failed attempt)

Nothing is module-global: every piece lives and dies with the manager.

Usage:
    async with DataManager(client.fetchers()) as dm:
        progress = await dm.load(DomainKeys.PROGRESS)
        snapshot = await dm.get_monthly_snapshot("2025-09")
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from ...core.config import Settings, get_settings
from ...core.exceptions import ConfigurationError
from ...core.utils.timeout import CancellationToken, with_deadline
from ..monthly_service import validate_index_query
from .cache import CacheLayer
from .coordinator import RequestCoordinator
from .errors import classify_error
from .hooks import DomainSubscription
from .keys import DomainKeys
from .monitor import StalenessMonitor
from .notifications import ErrorNotifier
from .state import StateStore
from .types import DataFetchError, DataState, DomainKey, DomainType

logger = structlog.get_logger(__name__)

# fetcher(key, token, **params) -> payload
Fetcher = Callable[..., Awaitable[Any]]


class DataManager:
    """
    Single source of truth for all dashboard data.

    All data consumers (tables, charts, summaries) read through this class or
    a DomainSubscription it hands out, never through the fetchers directly.

    Lifecycle: ``await create()`` starts the staleness monitor and the initial
    loads; ``await dispose()`` stops everything and drops all state.
    """

    def __init__(
        self,
        fetchers: Mapping[DomainType, Fetcher],
        settings: Settings | None = None,
        *,
        notifier: ErrorNotifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        initial_data: Mapping[DomainType | str, Any] | None = None,
    ):
        """
        Initialize the Data Manager.

        Args:
            fetchers: Upstream fetch function per domain
            settings: Budgets and TTLs (default: application settings)
            notifier: Error notification side channel
            clock: Monotonic time source for TTLs and the refetch throttle
            initial_data: Payloads that start in ``success`` without a fetch
        """
        self._settings = settings or get_settings()
        self._fetchers = dict(fetchers)
        self._clock = clock
        self._initial_data = dict(initial_data or {})

        self.cache = CacheLayer(self._settings.cache_ttl_seconds, clock=clock)
        self.store = StateStore()
        self.coordinator = RequestCoordinator(
            self.cache,
            self.store,
            default_timeout_seconds=self._settings.client_fetch_timeout_seconds,
        )
        self.monitor = StalenessMonitor(
            self.store,
            self.cache,
            self.load,
            interval_seconds=self._settings.staleness_sweep_interval_seconds,
        )
        self.notifier = notifier or ErrorNotifier()

        self._subscriptions: set[DomainSubscription] = set()
        self._background: set[asyncio.Task] = set()
        self._detach_notifier: Callable[[], None] | None = None
        self._created = False
        self._disposed = False

        logger.info("data_manager_initialized", domains=[d.value for d in self._fetchers])

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self, auto_load: bool = True) -> "DataManager":
        """
        Start the manager.

        Seeds initial data, attaches the notifier, starts the staleness monitor
        and kicks off background loads for ``settings.auto_load_domains``.
        """
        if self._disposed:
            raise ConfigurationError("DataManager has been disposed")
        if self._created:
            return self
        self._created = True

        self._detach_notifier = self.notifier.attach(self.store)

        for domain, data in self._initial_data.items():
            key = DomainKey.parse(domain)
            self.cache.set(key, data, self._settings.ttl_for(key.domain))
            self.store.seed(key, data)

        self.monitor.start()

        if auto_load:
            for key in DomainKeys.parse_many(self._settings.auto_load_domains):
                if self.store.get(key).is_idle and key.domain in self._fetchers:
                    self._spawn(self._load_quietly(key))

        logger.info(
            "data_manager_created",
            seeded=[str(DomainKey.parse(d)) for d in self._initial_data],
            auto_load=auto_load,
        )
        return self

    async def dispose(self) -> None:
        """Stop the monitor, abandon fetches in flight and drop all state."""
        if self._disposed:
            return
        self._disposed = True

        for subscription in list(self._subscriptions):
            subscription.unmount()

        await self.monitor.stop()

        background = list(self._background)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)

        await self.coordinator.aclose()

        if self._detach_notifier:
            self._detach_notifier()
            self._detach_notifier = None
        self.store.clear()
        self.cache.clear()
        logger.info("data_manager_disposed")

    async def __aenter__(self) -> "DataManager":
        return await self.create()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    async def wait_idle(self) -> None:
        """Wait for background loads and staleness refreshes to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.monitor.wait_idle()

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(
        self,
        key: DomainKey | DomainType | str,
        *,
        force_refresh: bool = False,
        signal: CancellationToken | None = None,
    ) -> Any:
        """
        Get a domain's data through the cache and the coordinator.

        Args:
            key: Domain key (or its string form, e.g. "monthlySnapshot:2025-09")
            force_refresh: Skip the cache and supersede any fetch in flight
            signal: Caller-owned cancellation token

        Returns:
            The domain payload

        Raises:
            DataFetchError: If the fetch fails (also committed to the StateStore)
            ConfigurationError: If no fetcher is registered for the domain
        """
        self._ensure_active()
        key = DomainKey.parse(key)
        fetcher = self._fetcher_for(key.domain)
        params = self._default_params(key)

        def task_factory(token: CancellationToken) -> Awaitable[Any]:
            return fetcher(key, token, **params)

        return await self.coordinator.fetch_once(
            key,
            task_factory,
            force_refresh=force_refresh,
            signal=signal,
            timeout_seconds=self._settings.timeout_for(key.domain),
            ttl_seconds=self._settings.ttl_for(key.domain),
        )

    async def refresh(
        self,
        key: DomainKey | DomainType | str,
        *,
        silent: bool = False,
        signal: CancellationToken | None = None,
    ) -> Any:
        """Force-refresh one key. ``silent`` suppresses its error notification."""
        key = DomainKey.parse(key)
        if not silent:
            return await self.load(key, force_refresh=True, signal=signal)

        self.notifier.silence_next(key)
        try:
            return await self.load(key, force_refresh=True, signal=signal)
        finally:
            self.notifier.release(key)

    async def refresh_data(
        self,
        key: DomainKey | DomainType | str | None = None,
        *,
        silent: bool = False,
    ) -> None:
        """
        Force-refresh one key, or every known key in parallel.

        Failures are not raised; they stay in each key's state.
        """
        keys = [DomainKey.parse(key)] if key is not None else self.store.keys()
        results = await asyncio.gather(
            *(self.refresh(k, silent=silent) for k in keys),
            return_exceptions=True,
        )
        failed = [str(k) for k, r in zip(keys, results) if isinstance(r, DataFetchError)]
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, DataFetchError):
                raise result
        logger.info("data_refreshed", keys=[str(k) for k in keys], failed=failed)

    # =========================================================================
    # Reading
    # =========================================================================

    def get_data_state(self, key: DomainKey | DomainType | str) -> DataState:
        return self.store.get(DomainKey.parse(key))

    def get_data(self, key: DomainKey | DomainType | str) -> Any:
        """
        Data to render for a key.

        While a refresh is loading, the previous cached payload stays visible.
        Returns None for idle keys and keys in error.
        """
        key = DomainKey.parse(key)
        state = self.store.get(key)
        if state.is_success:
            return state.data
        if state.is_loading:
            entry = self.cache.peek(key)
            return entry.data if entry is not None else None
        return None

    def is_refreshing(self, key: DomainKey | DomainType | str) -> bool:
        """Loading while an earlier payload is still available."""
        key = DomainKey.parse(key)
        return self.store.get(key).is_loading and key in self.cache

    def use_domain(
        self,
        key: DomainKey | DomainType | str,
        *,
        auto_fetch: bool = True,
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[DataFetchError], None] | None = None,
    ) -> DomainSubscription:
        """
        Subscribe to a domain.

        The returned subscription is already mounted (use it as an async
        context manager, or call ``unmount()`` when done).
        """
        self._ensure_active()
        subscription = DomainSubscription(
            self,
            DomainKey.parse(key),
            auto_fetch=auto_fetch,
            on_success=on_success,
            on_error=on_error,
            throttle_seconds=self._settings.refetch_throttle_seconds,
            clock=self._clock,
        )
        self._subscriptions.add(subscription)
        subscription.mount()
        return subscription

    # =========================================================================
    # Monthly data
    # =========================================================================

    async def get_monthly_index(
        self,
        order: str = "desc",
        limit: int | None = None,
        from_: str | None = None,
        to: str | None = None,
        signal: CancellationToken | None = None,
    ) -> Any:
        """
        Get the list of available months.

        Only the default query (descending, default limit, no bounds) is
        cached under ``monthlyIndex``; any other query goes straight to the
        fetcher under a deadline.

        Raises:
            ValidationError: If the query is malformed
            DataFetchError: If the fetch fails
        """
        self._ensure_active()
        limit = self._settings.monthly_index_default_limit if limit is None else limit
        validate_index_query(order, limit, from_, to)

        is_default_query = (
            order == "desc"
            and limit == self._settings.monthly_index_default_limit
            and from_ is None
            and to is None
        )
        if is_default_query:
            return await self.load(DomainKeys.MONTHLY_INDEX, signal=signal)

        key = DomainKeys.MONTHLY_INDEX
        fetcher = self._fetcher_for(key.domain)
        label = f"{key}?order={order}&limit={limit}&from={from_}&to={to}"
        try:
            return await with_deadline(
                lambda token: fetcher(
                    key, token, order=order, limit=limit, from_=from_, to=to
                ),
                self._settings.timeout_for(key.domain),
                label,
                signal=signal,
            )
        except Exception as e:
            raise classify_error(e, key) from e

    async def get_monthly_snapshot(
        self,
        year_month: str,
        signal: CancellationToken | None = None,
    ) -> Any:
        """
        Get one month's snapshot, cached under ``monthlySnapshot:<yearMonth>``.

        Raises:
            ValidationError: If year_month is not "YYYY-MM" (no fetch is made)
            DataFetchError: If the fetch fails
        """
        return await self.load(DomainKeys.monthly_snapshot(year_month), signal=signal)

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get cache, coordinator and state statistics."""
        return {
            "cache": self.cache.get_stats(),
            "coordinator": self.coordinator.get_stats(),
            "states": {
                key: state.status.value for key, state in self.store.snapshot().items()
            },
            "monitor_running": self.monitor.running,
            "subscriptions": len(self._subscriptions),
            "notifications_sent": self.notifier.sent,
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_active(self) -> None:
        if self._disposed:
            raise ConfigurationError("DataManager has been disposed")

    def _fetcher_for(self, domain: DomainType) -> Fetcher:
        fetcher = self._fetchers.get(domain)
        if fetcher is None:
            raise ConfigurationError(
                f"No fetcher registered for domain {domain.value}", domain=domain.value
            )
        return fetcher

    def _default_params(self, key: DomainKey) -> dict[str, Any]:
        if key.domain is DomainType.MONTHLY_INDEX:
            return {
                "order": "desc",
                "limit": self._settings.monthly_index_default_limit,
                "from_": None,
                "to": None,
            }
        return {}

    def _release(self, subscription: DomainSubscription) -> None:
        self._subscriptions.discard(subscription)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _load_quietly(self, key: DomainKey) -> None:
        try:
            await self.load(key)
        except DataFetchError as e:
            logger.info("initial_load_failed", key=str(key), kind=e.kind.value)
