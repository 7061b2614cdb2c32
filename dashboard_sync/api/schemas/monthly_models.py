"""
Monthly index and snapshot API models.

Wire names are camelCase (``metaByMonth``, ``latestMonth``, ``avgProgressPct``);
Python attributes are snake_case. Models accept either form on input.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

YEAR_MONTH_REGEX = r"^[0-9]{4}-[0-9]{2}$"


class MonthlyTabMeta(BaseModel):
    """Metadata of one monthly tab in the source spreadsheet."""

    model_config = ConfigDict(populate_by_name=True)

    sheet_id: int = Field(..., alias="sheetId", description="Sheet identifier")
    sheet_title: str = Field(..., alias="sheetTitle", description="Original tab name")
    year_month: str = Field(
        ..., alias="yearMonth", pattern=YEAR_MONTH_REGEX, description="Canonical YYYY-MM"
    )
    year: int = Field(..., description="4-digit year")
    month: int = Field(..., ge=1, le=12, description="Month 1-12")
    index: int = Field(..., description="Position in the spreadsheet tab list")
    last_updated: str | None = Field(
        None, alias="lastUpdated", description="Last update time if known"
    )


class MonthlyIndexResponse(BaseModel):
    """Available months, sorted per the query's order."""

    model_config = ConfigDict(populate_by_name=True)

    months: list[str] = Field(default_factory=list, description="YYYY-MM keys")
    meta_by_month: dict[str, MonthlyTabMeta] = Field(
        default_factory=dict, alias="metaByMonth", description="Tab metadata per month"
    )
    latest_month: str | None = Field(
        None, alias="latestMonth", description="First month after sorting"
    )


class MonthlySummary(BaseModel):
    """Aggregates over one month's rows."""

    model_config = ConfigDict(populate_by_name=True)

    total_rows: int = Field(..., alias="totalRows", ge=0)
    avg_progress_pct: float | None = Field(
        None, alias="avgProgressPct", description="Mean of non-null CurrentProgressPct"
    )
    total_manpower: float | None = Field(
        None, alias="totalManpower", description="Sum of non-null ManpowerTotal"
    )


class MonthlySnapshot(BaseModel):
    """Rows and summary of one month."""

    month: str = Field(..., pattern=YEAR_MONTH_REGEX)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    summary: MonthlySummary | None = None


class MonthlySnapshotResponse(BaseModel):
    """Response of GET /api/monthly/{yearMonth}."""

    month: str = Field(..., pattern=YEAR_MONTH_REGEX)
    snapshot: MonthlySnapshot


class MonthlyErrorResponse(BaseModel):
    """Error body of the monthly routes."""

    error: str
