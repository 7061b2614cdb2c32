"""
Consumer subscription surface for the Data Manager Layer.

Rendering code reads a domain only through a DomainSubscription:

    async with manager.use_domain(DomainKeys.PROGRESS) as progress:
        await progress.wait_idle()
        view = progress.view()
        if view.is_initial_loading:
            ...

On mount the subscription starts a fetch if the domain is still ``idle``.
``refetch`` forces a refresh but drops calls that arrive within the throttle
window of the last accepted one. After ``unmount`` the subscription is inert:
callbacks stop, and fetches it started keep running for other consumers.
"""

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from .types import DataFetchError, DataState, DomainKey, DomainView, ErrorKind

if TYPE_CHECKING:
    from .manager import DataManager

logger = structlog.get_logger(__name__)

DEFAULT_THROTTLE_SECONDS = 2.0

ViewListener = Callable[[DomainView], None]


class DomainSubscription:
    """One consumer's view of one domain."""

    def __init__(
        self,
        manager: "DataManager",
        key: DomainKey,
        *,
        auto_fetch: bool = True,
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[DataFetchError], None] | None = None,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._manager = manager
        self._key = key
        self._auto_fetch = auto_fetch
        self._on_success = on_success
        self._on_error = on_error
        self._throttle = throttle_seconds
        self._clock = clock

        self._mounted = False
        self._has_fetched = False
        self._last_data: Any = None
        self._last_refetch_at: float | None = None
        self._listeners: list[ViewListener] = []
        self._pending: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def key(self) -> DomainKey:
        return self._key

    @property
    def mounted(self) -> bool:
        return self._mounted

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def mount(self) -> asyncio.Task | None:
        """
        Start observing the domain.

        Returns:
            The auto-fetch task when one was started, else None
        """
        if self._mounted:
            return None
        self._mounted = True
        self._unsubscribe = self._manager.store.subscribe(self._on_transition)

        state = self.state
        if state.is_success:
            self._has_fetched = True
            self._last_data = state.data

        if self._auto_fetch and state.is_idle:
            logger.debug("subscription_auto_fetch", key=str(self._key))
            return self._spawn(self._manager.load(self._key))
        return None

    def unmount(self) -> None:
        """Stop observing. Idempotent."""
        if not self._mounted:
            return
        self._mounted = False
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        # Detaches this consumer only; the shared fetch is shielded
        for task in list(self._pending):
            task.cancel()
        self._listeners.clear()
        self._manager._release(self)
        logger.debug("subscription_unmounted", key=str(self._key))

    async def __aenter__(self) -> "DomainSubscription":
        self.mount()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unmount()

    async def wait_idle(self) -> None:
        """Wait until every fetch this subscription started has settled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # Derived view
    # =========================================================================

    @property
    def state(self) -> DataState:
        return self._manager.get_data_state(self._key)

    @property
    def data(self) -> Any:
        """Current data, or the last successful data while a refresh is loading."""
        state = self.state
        if state.is_success:
            return state.data
        if state.is_loading and self._has_fetched:
            return self._last_data
        return None

    @property
    def error(self) -> DataFetchError | None:
        return self.state.error

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    @property
    def is_initial_loading(self) -> bool:
        """Loading with nothing successful seen yet (first paint)."""
        return self.is_loading and not self._has_fetched

    @property
    def is_refreshing(self) -> bool:
        """Loading on top of data that is still shown."""
        return self.is_loading and self._has_fetched

    def view(self) -> DomainView:
        state = self.state
        return DomainView(
            status=state.status,
            data=self.data,
            error=state.error,
            is_loading=state.is_loading,
            is_refreshing=self.is_refreshing,
            is_initial_loading=self.is_initial_loading,
        )

    def on_change(self, listener: ViewListener) -> Callable[[], None]:
        """
        Call ``listener(view)`` after every transition of this domain.

        Returns:
            Unsubscribe function
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # Refetch
    # =========================================================================

    async def refetch(self, silent: bool = False) -> Any | None:
        """
        Force a refresh of the domain.

        Calls within the throttle window of the last accepted call are
        dropped, not queued.

        Args:
            silent: Suppress the error notification for this attempt

        Returns:
            Fresh data, or None if the call was dropped or the fetch failed
            (the failure is in ``error``)
        """
        if not self._mounted:
            return None

        now = self._clock()
        if (
            self._last_refetch_at is not None
            and now - self._last_refetch_at < self._throttle
        ):
            logger.debug("refetch_throttled", key=str(self._key))
            return None
        self._last_refetch_at = now

        task = self._spawn(self._manager.refresh(self._key, silent=silent))
        try:
            return await asyncio.shield(task)
        except DataFetchError:
            return None
        except asyncio.CancelledError:
            if self._mounted:
                raise
            return None

    # =========================================================================
    # Internals
    # =========================================================================

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._settled)
        return task

    def _settled(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled():
            # Failures are surfaced through the StateStore
            task.exception()

    def _on_transition(
        self, key: DomainKey, previous: DataState, current: DataState
    ) -> None:
        if key != self._key or not self._mounted:
            return

        if current.is_success:
            self._has_fetched = True
            self._last_data = current.data
            if self._on_success:
                self._on_success(current.data)
        elif (
            current.is_error
            and current.error.kind is not ErrorKind.ABORTED
            and self._on_error
        ):
            self._on_error(current.error)

        view = self.view()
        for listener in list(self._listeners):
            listener(view)
