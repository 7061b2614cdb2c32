#!/usr/bin/env python3
"""
Watch dashboard domains through the Data Manager.

Creates a DataManager over the dashboard API, subscribes to the requested
domains and logs every state transition until the duration elapses.

Usage:
  # Watch the default domains against the configured API
  python scripts/watch_dashboard.py

  # Watch progress and one month's snapshot for two minutes
  python scripts/watch_dashboard.py --domain progress --month 2025-09 --duration 120

  # Verbose logging (cache hits, coalesced requests)
  python scripts/watch_dashboard.py --verbose
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for local execution
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from dashboard_sync.core.config import get_settings
from dashboard_sync.core.exceptions import AppError
from dashboard_sync.services.dashboard_api import DashboardApiClient
from dashboard_sync.services.data_manager import (
    DataManager,
    DataState,
    DomainKey,
    DomainKeys,
)

logger = structlog.get_logger()


def log_transition(key: DomainKey, previous: DataState, current: DataState) -> None:
    logger.info(
        "Domain transition",
        key=str(key),
        previous=previous.status.value,
        current=current.status.value,
        error=current.error.message if current.error else None,
    )


async def main():
    """Main execution function."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Watch dashboard data domains")
    parser.add_argument(
        "--base-url",
        type=str,
        default=settings.api_base_url,
        help=f"Dashboard API origin (default: {settings.api_base_url})",
    )
    parser.add_argument(
        "--domain",
        action="append",
        dest="domains",
        help="Domain to watch, repeatable (default: settings.auto_load_domains)",
    )
    parser.add_argument(
        "--month",
        type=str,
        help="Also watch the snapshot of this month (YYYY-MM)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=60.0,
        help="Seconds to watch before exiting (default: 60)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    # Configure logging
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    try:
        keys = DomainKeys.parse_many(args.domains or settings.auto_load_domains)
        if args.month:
            keys.append(DomainKeys.monthly_snapshot(args.month))
    except (AppError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(2)

    logger.info(
        "Dashboard watch started",
        base_url=args.base_url,
        keys=[str(key) for key in keys],
        duration=args.duration,
    )

    client = DashboardApiClient(args.base_url)
    manager = DataManager(client.fetchers(), settings)

    try:
        await manager.create(auto_load=False)
        manager.store.subscribe(log_transition)
        for key in keys:
            manager.use_domain(key)

        await asyncio.sleep(args.duration)

        stats = manager.get_stats()
        print("\n" + "=" * 60)
        print("DASHBOARD WATCH SUMMARY")
        print("=" * 60)
        for key, status in stats["states"].items():
            print(f"{key:<28} {status}")
        print(f"Cache hit rate: {stats['cache']['hit_rate_percent']}%")
        print(f"Notifications: {stats['notifications_sent']}")
        print("=" * 60)

        failed = [key for key, status in stats["states"].items() if status == "error"]
        sys.exit(1 if failed else 0)

    finally:
        await manager.dispose()
        await client.close()
        logger.info("Dashboard watch stopped")


if __name__ == "__main__":
    asyncio.run(main())
