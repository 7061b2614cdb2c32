"""
Unit tests for the RequestCoordinator.

Tests cover:
- Request coalescing (at most one fetch in flight per key)
- Cache read-through and write-through
- Forced refresh superseding an in-flight fetch, in both settle orders
- Guaranteed cleanup of the in-flight registry
- Timeouts and caller cancellation
- Independence of different keys
"""

import asyncio

import pytest

from dashboard_sync.core.exceptions import UpstreamHTTPError
from dashboard_sync.core.utils.timeout import CancellationSource
from dashboard_sync.services.data_manager import (
    CacheLayer,
    DataFetchError,
    DomainKeys,
    ErrorKind,
    RequestCoordinator,
    StateStore,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class GatedFetcher:
    """Fetcher whose calls block until released, recording every call."""

    def __init__(self, result="data"):
        self.result = result
        self.calls = 0
        self.tokens = []
        self.gate = asyncio.Event()

    async def __call__(self, token):
        self.calls += 1
        self.tokens.append(token)
        await self.gate.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


# ===== Fixtures =====


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheLayer(default_ttl_seconds=300.0, clock=clock)


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def coordinator(cache, store):
    return RequestCoordinator(cache, store, default_timeout_seconds=5.0)


# ===== Coalescing and caching =====


class TestCoalescing:
    """Test that concurrent callers share a single fetch."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, coordinator):
        fetcher = GatedFetcher(result=[{"Activity": "Piping"}])

        callers = [
            asyncio.ensure_future(coordinator.fetch_once(DomainKeys.PROGRESS, fetcher))
            for _ in range(5)
        ]
        await asyncio.sleep(0.01)
        fetcher.gate.set()
        results = await asyncio.gather(*callers)

        assert fetcher.calls == 1
        assert all(r == [{"Activity": "Piping"}] for r in results)
        assert coordinator.get_stats()["coalesced"] == 4

    @pytest.mark.asyncio
    async def test_state_goes_loading_then_success(self, coordinator, store):
        fetcher = GatedFetcher(result="payload")

        call = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, fetcher))
        await asyncio.sleep(0.01)
        assert store.get(DomainKeys.RISK).is_loading
        assert coordinator.is_in_flight(DomainKeys.RISK)

        fetcher.gate.set()
        await call

        assert store.get(DomainKeys.RISK).data == "payload"
        assert not coordinator.is_in_flight(DomainKeys.RISK)

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_fetch(self, coordinator, cache, store):
        """A fresh entry is served without calling the fetcher."""
        cache.set(DomainKeys.PROGRESS, "cached")
        fetcher = GatedFetcher()

        result = await coordinator.fetch_once(DomainKeys.PROGRESS, fetcher)

        assert result == "cached"
        assert fetcher.calls == 0
        assert store.get(DomainKeys.PROGRESS).data == "cached"

    @pytest.mark.asyncio
    async def test_stale_cache_is_not_served(self, coordinator, cache, clock):
        cache.set(DomainKeys.PROGRESS, "old", ttl_seconds=10.0)
        clock.now = 10.0
        fetcher = GatedFetcher(result="new")
        fetcher.gate.set()

        result = await coordinator.fetch_once(DomainKeys.PROGRESS, fetcher)

        assert result == "new"
        assert fetcher.calls == 1
        assert cache.get(DomainKeys.PROGRESS).data == "new"

    @pytest.mark.asyncio
    async def test_result_written_with_ttl(self, coordinator, cache):
        fetcher = GatedFetcher()
        fetcher.gate.set()

        await coordinator.fetch_once(DomainKeys.RISK, fetcher, ttl_seconds=42.0)

        assert cache.get(DomainKeys.RISK).ttl_seconds == 42.0

    @pytest.mark.asyncio
    async def test_different_months_do_not_coalesce(self, coordinator, store):
        """monthlySnapshot:2025-09 proceeds while 2025-08 is mid-flight."""
        august = GatedFetcher(result="aug")
        september = GatedFetcher(result="sep")
        aug_key = DomainKeys.monthly_snapshot("2025-08")
        sep_key = DomainKeys.monthly_snapshot("2025-09")

        aug_call = asyncio.ensure_future(coordinator.fetch_once(aug_key, august))
        await asyncio.sleep(0.01)
        sep_call = asyncio.ensure_future(coordinator.fetch_once(sep_key, september))
        await asyncio.sleep(0.01)

        assert august.calls == 1
        assert september.calls == 1

        september.gate.set()
        assert await sep_call == "sep"
        assert store.get(aug_key).is_loading

        august.gate.set()
        assert await aug_call == "aug"
        assert store.get(sep_key).data == "sep"


# ===== Forced refresh =====


class TestForcedRefresh:
    """Test supersede semantics and ownership checks."""

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_fresh_cache(self, coordinator, cache):
        cache.set(DomainKeys.RISK, "cached")
        fetcher = GatedFetcher(result="fresh")
        fetcher.gate.set()

        result = await coordinator.fetch_once(
            DomainKeys.RISK, fetcher, force_refresh=True
        )

        assert result == "fresh"
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_superseded_fetch_is_cancelled_and_discarded(
        self, coordinator, store
    ):
        old = GatedFetcher(result="old")
        new = GatedFetcher(result="new")

        old_call = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, old))
        await asyncio.sleep(0.01)
        new_call = asyncio.ensure_future(
            coordinator.fetch_once(DomainKeys.RISK, new, force_refresh=True)
        )
        await asyncio.sleep(0.01)

        assert old.tokens[0].cancelled
        with pytest.raises(DataFetchError) as exc_info:
            await old_call
        assert exc_info.value.kind is ErrorKind.ABORTED
        assert store.get(DomainKeys.RISK).is_loading

        new.gate.set()
        assert await new_call == "new"
        assert store.get(DomainKeys.RISK).data == "new"

    @pytest.mark.asyncio
    async def test_late_result_of_superseded_fetch_does_not_overwrite(
        self, coordinator, store, cache
    ):
        """An old fetch that ignores cancellation and settles last changes nothing."""
        release_old = asyncio.Event()

        async def stubborn(token):
            try:
                await release_old.wait()
            except asyncio.CancelledError:
                await release_old.wait()
            return "old"

        new = GatedFetcher(result="new")
        new.gate.set()

        old_call = asyncio.ensure_future(
            coordinator.fetch_once(DomainKeys.PROGRESS, stubborn)
        )
        await asyncio.sleep(0.01)
        result = await coordinator.fetch_once(
            DomainKeys.PROGRESS, new, force_refresh=True
        )
        assert result == "new"

        release_old.set()
        with pytest.raises(DataFetchError) as exc_info:
            await old_call

        assert exc_info.value.kind is ErrorKind.ABORTED
        assert store.get(DomainKeys.PROGRESS).data == "new"
        assert cache.get(DomainKeys.PROGRESS).data == "new"

    @pytest.mark.asyncio
    async def test_late_failure_of_superseded_fetch_does_not_overwrite(
        self, coordinator, store
    ):
        release_old = asyncio.Event()

        async def stubborn(token):
            try:
                await release_old.wait()
            except asyncio.CancelledError:
                await release_old.wait()
            raise UpstreamHTTPError("Server exploded", status=500)

        new = GatedFetcher(result="new")
        new.gate.set()

        old_call = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, stubborn))
        await asyncio.sleep(0.01)
        await coordinator.fetch_once(DomainKeys.RISK, new, force_refresh=True)

        release_old.set()
        with pytest.raises(DataFetchError):
            await old_call

        assert store.get(DomainKeys.RISK).is_success
        assert store.get(DomainKeys.RISK).data == "new"

    @pytest.mark.asyncio
    async def test_racing_force_refreshes_last_one_owns(self, coordinator, store):
        fetchers = [GatedFetcher(result=f"r{i}") for i in range(3)]

        calls = []
        for fetcher in fetchers:
            calls.append(
                asyncio.ensure_future(
                    coordinator.fetch_once(
                        DomainKeys.MANPOWER, fetcher, force_refresh=True
                    )
                )
            )
            await asyncio.sleep(0.01)

        for fetcher in fetchers:
            fetcher.gate.set()
        results = await asyncio.gather(*calls, return_exceptions=True)

        assert isinstance(results[0], DataFetchError)
        assert isinstance(results[1], DataFetchError)
        assert results[2] == "r2"
        assert store.get(DomainKeys.MANPOWER).data == "r2"
        assert not coordinator.is_in_flight(DomainKeys.MANPOWER)
        assert coordinator.get_stats()["generations"]["manpower"] == 3

    @pytest.mark.asyncio
    async def test_cache_hit_during_forced_refresh_keeps_loading(
        self, coordinator, store
    ):
        """A plain read served from cache does not report success over a refresh."""
        first = GatedFetcher(result="old")
        first.gate.set()
        await coordinator.fetch_once(DomainKeys.PROGRESS, first)

        refresh = GatedFetcher(result="new")
        forced = asyncio.ensure_future(
            coordinator.fetch_once(DomainKeys.PROGRESS, refresh, force_refresh=True)
        )
        await asyncio.sleep(0.01)
        assert store.get(DomainKeys.PROGRESS).is_loading

        assert await coordinator.fetch_once(DomainKeys.PROGRESS, first) == "old"
        assert store.get(DomainKeys.PROGRESS).is_loading
        assert coordinator.is_in_flight(DomainKeys.PROGRESS)
        assert first.calls == 1

        refresh.gate.set()
        assert await forced == "new"
        assert store.get(DomainKeys.PROGRESS).data == "new"


# ===== Failures and cleanup =====


class TestFailures:
    """Test classification, cleanup and cancellation."""

    @pytest.mark.asyncio
    async def test_failure_is_classified_committed_and_not_cached(
        self, coordinator, store, cache
    ):
        fetcher = GatedFetcher(result=UpstreamHTTPError("Server error", status=503))
        fetcher.gate.set()

        with pytest.raises(DataFetchError) as exc_info:
            await coordinator.fetch_once(DomainKeys.RISK, fetcher)

        error = exc_info.value
        assert error.status == 503
        assert error.retryable is True
        assert store.get(DomainKeys.RISK).error is error
        assert DomainKeys.RISK not in cache

    @pytest.mark.asyncio
    async def test_registry_cleared_after_failure(self, coordinator):
        failing = GatedFetcher(result=RuntimeError("flaky"))
        failing.gate.set()
        with pytest.raises(DataFetchError):
            await coordinator.fetch_once(DomainKeys.RISK, failing)

        assert not coordinator.is_in_flight(DomainKeys.RISK)

        working = GatedFetcher(result="ok")
        working.gate.set()
        assert await coordinator.fetch_once(DomainKeys.RISK, working) == "ok"
        assert working.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_fires_task_signal(self, coordinator, store):
        """A fetch over its budget fails as a retryable timeout."""
        fetcher = GatedFetcher()

        with pytest.raises(DataFetchError) as exc_info:
            await coordinator.fetch_once(
                DomainKeys.AI_INSIGHTS, fetcher, timeout_seconds=0.05
            )

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.retryable is True
        assert fetcher.tokens[0].cancelled
        assert store.get(DomainKeys.AI_INSIGHTS).error.is_timeout
        assert not coordinator.is_in_flight(DomainKeys.AI_INSIGHTS)

    @pytest.mark.asyncio
    async def test_caller_signal_aborts_owned_fetch(self, coordinator, store):
        caller = CancellationSource()
        fetcher = GatedFetcher()

        call = asyncio.ensure_future(
            coordinator.fetch_once(DomainKeys.RISK, fetcher, signal=caller.token)
        )
        await asyncio.sleep(0.01)
        caller.cancel("navigated away")

        with pytest.raises(DataFetchError) as exc_info:
            await call
        assert exc_info.value.kind is ErrorKind.ABORTED

        await asyncio.sleep(0.01)
        assert fetcher.tokens[0].cancelled
        state = store.get(DomainKeys.RISK)
        assert state.is_error
        assert state.error.kind is ErrorKind.ABORTED
        assert state.error.retryable is True

    @pytest.mark.asyncio
    async def test_joiner_signal_only_detaches_joiner(self, coordinator):
        fetcher = GatedFetcher(result="shared")
        joiner_signal = CancellationSource()

        owner = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, fetcher))
        await asyncio.sleep(0.01)
        joiner = asyncio.ensure_future(
            coordinator.fetch_once(DomainKeys.RISK, fetcher, signal=joiner_signal.token)
        )
        await asyncio.sleep(0.01)

        joiner_signal.cancel()
        with pytest.raises(DataFetchError):
            await joiner

        fetcher.gate.set()
        assert await owner == "shared"
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(self, coordinator, store):
        fetcher = GatedFetcher(result="kept")

        waiter = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, fetcher))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        fetcher.gate.set()
        await asyncio.sleep(0.01)
        assert store.get(DomainKeys.RISK).data == "kept"

    @pytest.mark.asyncio
    async def test_pre_cancelled_signal_is_rejected(self, coordinator, store):
        caller = CancellationSource()
        caller.cancel()
        fetcher = GatedFetcher()

        with pytest.raises(DataFetchError):
            await coordinator.fetch_once(DomainKeys.RISK, fetcher, signal=caller.token)

        assert fetcher.calls == 0
        assert store.get(DomainKeys.RISK).is_idle

    @pytest.mark.asyncio
    async def test_cancel_key(self, coordinator, store):
        fetcher = GatedFetcher()
        call = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, fetcher))
        await asyncio.sleep(0.01)

        assert coordinator.cancel(DomainKeys.RISK) is True
        with pytest.raises(DataFetchError):
            await call

        assert store.get(DomainKeys.RISK).error.kind is ErrorKind.ABORTED
        assert coordinator.cancel(DomainKeys.RISK) is False

    @pytest.mark.asyncio
    async def test_aclose_abandons_without_committing(self, coordinator, store):
        fetcher = GatedFetcher()
        call = asyncio.ensure_future(coordinator.fetch_once(DomainKeys.RISK, fetcher))
        await asyncio.sleep(0.01)

        await coordinator.aclose()

        with pytest.raises(DataFetchError):
            await call
        assert store.get(DomainKeys.RISK).is_loading
        assert coordinator.in_flight_keys() == []

    @pytest.mark.asyncio
    async def test_long_lived_signal_keeps_no_callbacks(self, coordinator):
        """Settled fetches leave nothing registered on the caller's signal."""
        caller = CancellationSource()
        fetcher = GatedFetcher(result="ok")
        fetcher.gate.set()

        for _ in range(10):
            result = await coordinator.fetch_once(
                DomainKeys.RISK, fetcher, force_refresh=True, signal=caller.token
            )
            assert result == "ok"
        await asyncio.sleep(0.01)

        assert fetcher.calls == 10
        assert caller.token._callbacks == []
