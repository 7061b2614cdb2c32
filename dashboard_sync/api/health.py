"""
Health check endpoint for monitoring and connectivity verification.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from ..core.config import Settings, get_settings
from ..core.utils.date_utils import utcnow

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """
    Health check with the active sync budgets.

    Reports configuration only; the dashboard API itself is not called.
    """
    logger.info("Health check requested")

    return {
        "status": "ok",
        "environment": settings.environment,
        "version": "0.1.0",
        "timestamp": utcnow().isoformat(),
        "configuration": {
            "api_base_url": settings.api_base_url,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "staleness_sweep_interval_seconds": settings.staleness_sweep_interval_seconds,
            "refetch_throttle_seconds": settings.refetch_throttle_seconds,
            "client_fetch_timeout_seconds": settings.client_fetch_timeout_seconds,
            "ai_insights_timeout_seconds": settings.ai_insights_timeout_seconds,
            "sheets_timeout_seconds": settings.sheets_timeout_seconds,
        },
    }
