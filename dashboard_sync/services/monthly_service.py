"""
Monthly index and snapshot service.

Builds the monthly endpoints' payloads from a SheetSource: one spreadsheet
tab per month. Reading and normalizing the spreadsheet itself is the
source's job; this service only filters, sorts, looks up and summarizes.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from ..api.schemas.monthly_models import (
    MonthlyIndexResponse,
    MonthlySnapshot,
    MonthlySnapshotResponse,
    MonthlySummary,
    MonthlyTabMeta,
)
from ..core.exceptions import GatewayTimeoutError, NotFoundError, ValidationError
from ..core.utils.date_utils import DateUtils, is_year_month
from ..core.utils.timeout import CancellationToken, DeadlineExceededError, with_deadline

logger = structlog.get_logger()

INDEX_ORDERS = ("asc", "desc")
INDEX_MAX_LIMIT = 100


@dataclass
class MonthlyTab:
    """One monthly tab of the source spreadsheet."""

    sheet_id: int
    sheet_title: str
    year_month: str
    index: int

    @property
    def year(self) -> int:
        return DateUtils.split_year_month(self.year_month)[0]

    @property
    def month(self) -> int:
        return DateUtils.split_year_month(self.year_month)[1]

    def to_meta(self) -> MonthlyTabMeta:
        return MonthlyTabMeta(
            sheet_id=self.sheet_id,
            sheet_title=self.sheet_title,
            year_month=self.year_month,
            year=self.year,
            month=self.month,
            index=self.index,
        )


class SheetSource(Protocol):
    """What the monthly service needs from a spreadsheet backend."""

    async def list_monthly_tabs(self) -> list[MonthlyTab]: ...

    async def get_sheet_rows(self, title: str) -> list[dict[str, Any]]: ...


@dataclass
class InMemorySheetSource:
    """SheetSource over rows held in memory (tests and local runs)."""

    tabs: list[MonthlyTab] = field(default_factory=list)
    rows: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def from_months(
        cls, months: dict[str, list[dict[str, Any]]]
    ) -> "InMemorySheetSource":
        """Build a source with one tab per "YYYY-MM" key."""
        source = cls()
        for index, (year_month, rows) in enumerate(months.items()):
            title = f"Monthly {year_month}"
            source.tabs.append(MonthlyTab(index + 1, title, year_month, index))
            source.rows[title] = list(rows)
        return source

    async def list_monthly_tabs(self) -> list[MonthlyTab]:
        return list(self.tabs)

    async def get_sheet_rows(self, title: str) -> list[dict[str, Any]]:
        return list(self.rows.get(title, []))


def validate_index_query(
    order: str, limit: int, from_: str | None, to: str | None
) -> None:
    """
    Validate a monthly index query.

    Raises:
        ValidationError: On an unknown order, a limit outside 1..100 or a
            malformed from/to bound
    """
    if not 1 <= limit <= INDEX_MAX_LIMIT:
        raise ValidationError(
            f"Invalid limit: must be 1-{INDEX_MAX_LIMIT}", limit=limit
        )
    if order not in INDEX_ORDERS:
        raise ValidationError('Invalid order: must be "asc" or "desc"', order=order)
    if from_ is not None and not is_year_month(from_):
        raise ValidationError("Invalid from: must be YYYY-MM", from_=from_)
    if to is not None and not is_year_month(to):
        raise ValidationError("Invalid to: must be YYYY-MM", to=to)


def summarize(rows: Iterable[dict[str, Any]]) -> MonthlySummary:
    """
    Aggregate one month's rows.

    ``avgProgressPct`` averages the non-null CurrentProgressPct values;
    ``totalManpower`` sums the non-null ManpowerTotal values and is None when
    there are none.
    """
    rows = list(rows)
    progress = [
        row["CurrentProgressPct"]
        for row in rows
        if row.get("CurrentProgressPct") is not None
    ]
    manpower = [
        row["ManpowerTotal"] for row in rows if row.get("ManpowerTotal") is not None
    ]
    return MonthlySummary(
        total_rows=len(rows),
        avg_progress_pct=sum(progress) / len(progress) if progress else None,
        total_manpower=sum(manpower) if manpower else None,
    )


class MonthlyService:
    """Monthly index and snapshot lookups under a deadline."""

    def __init__(self, source: SheetSource, timeout_seconds: float = 10.0):
        self._source = source
        self._timeout = timeout_seconds

    async def list_index(
        self,
        order: str = "desc",
        limit: int = 12,
        from_: str | None = None,
        to: str | None = None,
    ) -> MonthlyIndexResponse:
        """
        List available months.

        Filters by the inclusive from/to bounds, sorts, then applies the
        limit. ``latestMonth`` is the first month after sorting.

        Raises:
            ValidationError: If the query is malformed
            GatewayTimeoutError: If the sheet source misses the deadline
        """
        validate_index_query(order, limit, from_, to)

        async def build(token: CancellationToken) -> MonthlyIndexResponse:
            tabs = await self._source.list_monthly_tabs()
            if from_:
                tabs = [t for t in tabs if t.year_month >= from_]
            if to:
                tabs = [t for t in tabs if t.year_month <= to]
            tabs.sort(key=lambda t: t.year_month, reverse=order == "desc")
            tabs = tabs[:limit]
            return MonthlyIndexResponse(
                months=[t.year_month for t in tabs],
                meta_by_month={t.year_month: t.to_meta() for t in tabs},
                latest_month=tabs[0].year_month if tabs else None,
            )

        return await self._run(build, "GET /api/monthly")

    async def get_snapshot(self, year_month: str) -> MonthlySnapshotResponse:
        """
        Get one month's rows and summary.

        Raises:
            ValidationError: If year_month is not "YYYY-MM"
            NotFoundError: If no tab exists for the month (e.g. "2025-13")
            GatewayTimeoutError: If the sheet source misses the deadline
        """
        if not is_year_month(year_month):
            raise ValidationError(
                "Invalid yearMonth: must be YYYY-MM", year_month=year_month
            )

        async def build(token: CancellationToken) -> MonthlySnapshotResponse:
            tabs = await self._source.list_monthly_tabs()
            tab = next((t for t in tabs if t.year_month == year_month), None)
            if tab is None:
                raise NotFoundError(f"Month {year_month} not found", year_month=year_month)

            token.raise_if_cancelled(year_month)
            rows = await self._source.get_sheet_rows(tab.sheet_title)
            return MonthlySnapshotResponse(
                month=year_month,
                snapshot=MonthlySnapshot(
                    month=year_month, rows=rows, summary=summarize(rows)
                ),
            )

        return await self._run(build, f"GET /api/monthly/{year_month}")

    async def _run(self, build, label: str):
        try:
            return await with_deadline(build, self._timeout, label)
        except DeadlineExceededError as e:
            raise GatewayTimeoutError("Request timed out", label=label) from e
