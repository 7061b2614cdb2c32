"""API request/response schemas."""

from .monthly_models import (
    MonthlyErrorResponse,
    MonthlyIndexResponse,
    MonthlySnapshot,
    MonthlySnapshotResponse,
    MonthlySummary,
    MonthlyTabMeta,
)

__all__ = [
    "MonthlyErrorResponse",
    "MonthlyIndexResponse",
    "MonthlySnapshot",
    "MonthlySnapshotResponse",
    "MonthlySummary",
    "MonthlyTabMeta",
]
