"""
Unit tests for DomainSubscription (the consumer hook).

Tests cover:
- Auto-fetch on mount and the initial-loading flag
- Refetch throttling
- Keeping the last data visible during a refresh
- Callbacks and inert behavior after unmount
"""

import asyncio

import pytest

from dashboard_sync.core.config import Settings
from dashboard_sync.core.exceptions import UpstreamHTTPError
from dashboard_sync.services.data_manager import (
    DataManager,
    DataStatus,
    DomainKeys,
    DomainType,
)
from dashboard_sync.services.data_manager.notifications import ErrorNotifier


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """Returns ``results`` in order (the last one repeats); raises exceptions."""

    def __init__(self, *results):
        self.results = list(results) or ["data"]
        self.calls = 0
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self, key, token, **params):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        await self.gate.wait()
        if isinstance(result, BaseException):
            raise result
        return result


def make_manager(fetchers, clock=None, notifier=None):
    settings = Settings(
        environment="test",
        auto_load_domains=[],
        refetch_throttle_seconds=2.0,
        staleness_sweep_interval_seconds=60.0,
    )
    return DataManager(
        fetchers,
        settings,
        notifier=notifier,
        clock=clock or FakeClock(),
    )


# ===== Mount =====


class TestMount:
    """Test auto-fetch on mount."""

    @pytest.mark.asyncio
    async def test_idle_domain_fetched_once_on_mount(self):
        """Subscribing to an idle domain makes exactly one upstream call."""
        fetcher = FakeFetcher(["row-1", "row-2"])

        async with make_manager({DomainType.PROGRESS: fetcher}) as dm:
            subscription = dm.use_domain(DomainKeys.PROGRESS)
            views = []
            subscription.on_change(views.append)

            await subscription.wait_idle()

            assert fetcher.calls == 1
            assert views[0].status is DataStatus.LOADING
            assert views[0].is_initial_loading is True
            assert views[-1].status is DataStatus.SUCCESS
            assert views[-1].is_initial_loading is False
            assert subscription.data == ["row-1", "row-2"]

    @pytest.mark.asyncio
    async def test_two_consumers_share_one_fetch(self):
        fetcher = FakeFetcher("data")
        fetcher.gate.clear()

        async with make_manager({DomainType.PROGRESS: fetcher}) as dm:
            first = dm.use_domain("progress")
            second = dm.use_domain("progress")
            await asyncio.sleep(0.01)
            fetcher.gate.set()

            await first.wait_idle()
            await second.wait_idle()

            assert fetcher.calls == 1
            assert first.data == second.data == "data"

    @pytest.mark.asyncio
    async def test_auto_fetch_disabled(self):
        fetcher = FakeFetcher()

        async with make_manager({DomainType.RISK: fetcher}) as dm:
            subscription = dm.use_domain("risk", auto_fetch=False)
            await asyncio.sleep(0.01)

            assert fetcher.calls == 0
            assert subscription.state.is_idle
            assert subscription.data is None

    @pytest.mark.asyncio
    async def test_successful_domain_not_refetched(self):
        fetcher = FakeFetcher()

        async with make_manager({DomainType.RISK: fetcher}) as dm:
            await dm.load("risk")
            subscription = dm.use_domain("risk")
            await subscription.wait_idle()

            assert fetcher.calls == 1
            assert subscription.data == "data"
            assert subscription.is_initial_loading is False


# ===== Refetch =====


class TestRefetch:
    """Test forced refetch from a consumer."""

    @pytest.mark.asyncio
    async def test_refetch_throttled(self):
        """A second refetch inside the throttle window is dropped."""
        clock = FakeClock()
        fetcher = FakeFetcher("v1", "v2", "v3")

        async with make_manager({DomainType.PROGRESS: fetcher}, clock=clock) as dm:
            subscription = dm.use_domain("progress")
            await subscription.wait_idle()

            assert await subscription.refetch() == "v2"
            clock.now += 1.0
            assert await subscription.refetch() is None
            assert fetcher.calls == 2

            clock.now += 1.0  # 2s after the accepted call
            assert await subscription.refetch() == "v3"
            assert fetcher.calls == 3

    @pytest.mark.asyncio
    async def test_concurrent_refetches_make_one_call(self):
        fetcher = FakeFetcher("v1", "v2")

        async with make_manager({DomainType.PROGRESS: fetcher}) as dm:
            subscription = dm.use_domain("progress")
            await subscription.wait_idle()

            results = await asyncio.gather(subscription.refetch(), subscription.refetch())

            assert results == ["v2", None]
            assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_refresh_keeps_last_data_visible(self):
        fetcher = FakeFetcher("v1", "v2")

        async with make_manager({DomainType.PROGRESS: fetcher}) as dm:
            subscription = dm.use_domain("progress")
            await subscription.wait_idle()

            fetcher.gate.clear()
            refetch = asyncio.create_task(subscription.refetch())
            await asyncio.sleep(0.01)

            assert subscription.is_loading is True
            assert subscription.is_refreshing is True
            assert subscription.is_initial_loading is False
            assert subscription.data == "v1"
            assert dm.get_data("progress") == "v1"
            assert dm.is_refreshing("progress") is True

            fetcher.gate.set()
            assert await refetch == "v2"
            assert subscription.data == "v2"
            assert subscription.is_refreshing is False

    @pytest.mark.asyncio
    async def test_refetch_failure_returns_none(self):
        fetcher = FakeFetcher("v1", UpstreamHTTPError("Service unavailable", status=503))

        async with make_manager({DomainType.RISK: fetcher}) as dm:
            subscription = dm.use_domain("risk")
            await subscription.wait_idle()

            assert await subscription.refetch() is None
            assert subscription.state.is_error
            assert subscription.error.retryable is True
            assert subscription.data is None

    @pytest.mark.asyncio
    async def test_silent_refetch_suppresses_notification(self):
        clock = FakeClock()
        sent = []
        notifier = ErrorNotifier(sink=sent.append)
        fetcher = FakeFetcher(UpstreamHTTPError("down", status=502))

        async with make_manager(
            {DomainType.RISK: fetcher}, clock=clock, notifier=notifier
        ) as dm:
            subscription = dm.use_domain("risk", auto_fetch=False)

            await subscription.refetch(silent=True)
            assert sent == []

            clock.now += 5.0
            await subscription.refetch()
            assert [n.id for n in sent] == ["risk-error"]


# ===== Callbacks and unmount =====


class TestCallbacks:
    """Test on_success/on_error and unmount."""

    @pytest.mark.asyncio
    async def test_on_success_called(self):
        received = []
        fetcher = FakeFetcher({"summary": "ok"})

        async with make_manager({DomainType.AI_INSIGHTS: fetcher}) as dm:
            subscription = dm.use_domain("aiInsights", on_success=received.append)
            await subscription.wait_idle()

            assert received == [{"summary": "ok"}]

    @pytest.mark.asyncio
    async def test_on_error_called(self):
        errors = []
        fetcher = FakeFetcher(UpstreamHTTPError("Invalid project data", status=400))

        async with make_manager({DomainType.AI_INSIGHTS: fetcher}) as dm:
            subscription = dm.use_domain("aiInsights", on_error=errors.append)
            await subscription.wait_idle()

            assert len(errors) == 1
            assert errors[0].retryable is False
            assert errors[0].status == 400

    @pytest.mark.asyncio
    async def test_unmounted_subscription_is_inert(self):
        """After unmount no callback fires, but the shared fetch still commits."""
        received = []
        fetcher = FakeFetcher("data")
        fetcher.gate.clear()

        async with make_manager({DomainType.MANPOWER: fetcher}) as dm:
            subscription = dm.use_domain("manpower", on_success=received.append)
            await asyncio.sleep(0.01)

            subscription.unmount()
            fetcher.gate.set()
            await asyncio.sleep(0.01)

            assert received == []
            assert dm.get_data_state("manpower").status is DataStatus.SUCCESS
            assert await subscription.refetch() is None
            assert subscription.mounted is False
            assert dm.get_stats()["subscriptions"] == 0

    @pytest.mark.asyncio
    async def test_unmount_idempotent(self):
        async with make_manager({DomainType.RISK: FakeFetcher()}) as dm:
            subscription = dm.use_domain("risk", auto_fetch=False)

            subscription.unmount()
            subscription.unmount()

            assert subscription.mounted is False

    @pytest.mark.asyncio
    async def test_context_manager(self):
        fetcher = FakeFetcher()

        async with make_manager({DomainType.RISK: fetcher}) as dm:
            async with dm.use_domain("risk") as live:
                assert live.mounted is True
                await live.wait_idle()
                assert live.data == "data"

            assert live.mounted is False

    @pytest.mark.asyncio
    async def test_on_change_unsubscribe(self):
        views = []
        fetcher = FakeFetcher()

        async with make_manager({DomainType.RISK: fetcher}) as dm:
            subscription = dm.use_domain("risk", auto_fetch=False)
            unsubscribe = subscription.on_change(views.append)
            unsubscribe()

            await dm.load("risk")

            assert views == []
