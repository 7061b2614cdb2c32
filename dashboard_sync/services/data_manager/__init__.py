"""
Data Manager Layer (DML) - Single source of truth for dashboard data.

This module coordinates fetching, caching and state for every dashboard
domain, ensuring at most one request in flight per key, TTL-based cache
validity and safe cancellation of superseded requests.

Usage:
    from dashboard_sync.services.data_manager import DataManager, DomainKeys

    async with DataManager(client.fetchers()) as dm:
        progress = await dm.load(DomainKeys.PROGRESS)
        async with dm.use_domain("monthlySnapshot:2025-09") as snapshot:
            await snapshot.wait_idle()

Key Convention:
    {domain}[:{yearMonth}]

    Examples:
    - progress
    - aiInsights
    - monthlyIndex
    - monthlySnapshot:2025-09
"""

from .cache import CacheLayer
from .coordinator import RequestCoordinator
from .errors import classify_error, is_retryable_status
from .hooks import DomainSubscription
from .keys import DomainKeys
from .manager import DataManager
from .monitor import StalenessMonitor
from .state import StateStore, apply
from .types import (
    CacheEntry,
    DataFetchError,
    DataState,
    DataStatus,
    DomainKey,
    DomainType,
    DomainView,
    ErrorKind,
    FetchFailed,
    FetchStarted,
    FetchSucceeded,
)

__all__ = [
    "DataManager",
    "DomainKeys",
    "CacheLayer",
    "RequestCoordinator",
    "StateStore",
    "StalenessMonitor",
    "DomainSubscription",
    "apply",
    "classify_error",
    "is_retryable_status",
    "CacheEntry",
    "DataFetchError",
    "DataState",
    "DataStatus",
    "DomainKey",
    "DomainType",
    "DomainView",
    "ErrorKind",
    "FetchFailed",
    "FetchStarted",
    "FetchSucceeded",
]
