"""
Monthly index and snapshot endpoints.

Error bodies are ``{"error": "..."}``; every response, success or failure,
carries an ``x-duration-ms`` header with the handler's wall time.
"""

import time
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import AppError
from ..services.monthly_service import MonthlyService
from .schemas.monthly_models import MonthlyIndexResponse, MonthlySnapshotResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/api/monthly", tags=["monthly"])


def get_monthly_service(request: Request) -> MonthlyService:
    """Dependency to get the MonthlyService from app state."""
    service: MonthlyService = request.app.state.monthly_service
    return service


def _respond(content: Any, start_time: float, status_code: int = 200) -> JSONResponse:
    duration_ms = int((time.perf_counter() - start_time) * 1000)
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"x-duration-ms": str(duration_ms)},
    )


def _error(exc: Exception, start_time: float, path: str) -> JSONResponse:
    if isinstance(exc, AppError):
        if exc.status_code >= 500:
            logger.error("Monthly request failed", path=path, **exc.to_dict())
        return _respond({"error": exc.message}, start_time, exc.status_code)

    logger.error(
        "Monthly request failed",
        path=path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return _respond({"error": "Internal server error"}, start_time, 500)


@router.get("", response_model=MonthlyIndexResponse)
async def list_months(
    order: str = Query("desc", description="Sort order: asc or desc"),
    limit: str = Query("12", description="Maximum number of months (1-100)"),
    from_: str | None = Query(None, alias="from", description="Lower bound YYYY-MM"),
    to: str | None = Query(None, description="Upper bound YYYY-MM"),
    service: MonthlyService = Depends(get_monthly_service),
) -> JSONResponse:
    """
    List available months.

    Months are filtered by the inclusive from/to bounds, sorted, then limited;
    ``latestMonth`` is the first month after sorting.
    """
    start_time = time.perf_counter()
    try:
        try:
            parsed_limit = int(limit)
        except ValueError:
            parsed_limit = 0
        result = await service.list_index(order, parsed_limit, from_, to)
    except Exception as e:
        return _error(e, start_time, "/api/monthly")

    return _respond(result.model_dump(by_alias=True, exclude_none=True), start_time)


@router.get("/{year_month}", response_model=MonthlySnapshotResponse)
async def get_month(
    year_month: str,
    service: MonthlyService = Depends(get_monthly_service),
) -> JSONResponse:
    """Get one month's rows and summary (404 if no tab exists for the month)."""
    start_time = time.perf_counter()
    try:
        result = await service.get_snapshot(year_month)
    except Exception as e:
        return _error(e, start_time, f"/api/monthly/{year_month}")

    logger.info(
        "Monthly snapshot served",
        year_month=year_month,
        rows=len(result.snapshot.rows),
    )
    return _respond(result.model_dump(by_alias=True), start_time)
