"""
Domain key helpers for the Data Manager Layer.

All keys follow the convention: {domain}[:{parameter}]

Examples:
    progress
    aiInsights
    monthlyIndex
    monthlySnapshot:2025-09
"""

from collections.abc import Iterable

from .types import DomainKey, DomainType


class DomainKeys:
    """Canonical keys for every fixed domain plus month-keyed snapshots."""

    PROGRESS = DomainKey(DomainType.PROGRESS)
    MANPOWER = DomainKey(DomainType.MANPOWER)
    AI_INSIGHTS = DomainKey(DomainType.AI_INSIGHTS)
    RISK = DomainKey(DomainType.RISK)
    MONTHLY_INDEX = DomainKey(DomainType.MONTHLY_INDEX)

    @staticmethod
    def fixed() -> list[DomainKey]:
        """Keys of every non-parameterized domain, in declaration order."""
        return [DomainKey(domain) for domain in DomainType if not domain.is_parameterized]

    @staticmethod
    def monthly_snapshot(year_month: str) -> DomainKey:
        """
        Key for one month's snapshot.

        Args:
            year_month: Canonical "YYYY-MM"

        Returns:
            Key like 'monthlySnapshot:2025-09'
        """
        return DomainKey.monthly_snapshot(year_month)

    @staticmethod
    def parse_many(values: Iterable[str]) -> list[DomainKey]:
        """Parse key strings (e.g. from settings or CLI args), dropping duplicates."""
        keys: list[DomainKey] = []
        for value in values:
            key = DomainKey.parse(value)
            if key not in keys:
                keys.append(key)
        return keys

    @staticmethod
    def of_domain(keys: Iterable[DomainKey], domain: DomainType) -> list[DomainKey]:
        """Filter keys down to one domain (e.g. every cached month)."""
        return [key for key in keys if key.domain is domain]
