"""
FastAPI application entry point for the dashboard monthly endpoints.

The monthly routes read from a SheetSource; spreadsheet access is supplied by
the deployment. Without one, an empty in-memory source is used.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.health import router as health_router
from .api.monthly import router as monthly_router
from .core.config import get_settings
from .core.exceptions import AppError
from .services.monthly_service import InMemorySheetSource, MonthlyService, SheetSource

# Set the root logger level to INFO so we can see detailed logs
logging.basicConfig(level=logging.INFO)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan management."""
    settings = get_settings()

    logger.info(
        "Starting dashboard sync API",
        environment=settings.environment,
        sheets_timeout_seconds=settings.sheets_timeout_seconds,
    )
    try:
        yield
    finally:
        logger.info("Dashboard sync API stopped")


def create_app(sheet_source: SheetSource | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        sheet_source: Backend for the monthly routes (default: empty in-memory source)
    """
    settings = get_settings()

    app = FastAPI(
        title="Dashboard Sync API",
        description="Monthly project-status data for the dashboard",
        version="0.1.0",
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None,
        lifespan=lifespan,
    )

    # CORS middleware for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Store in app state for dependency injection
    app.state.monthly_service = MonthlyService(
        sheet_source or InMemorySheetSource(),
        timeout_seconds=settings.sheets_timeout_seconds,
    )

    # Global exception handler for custom app errors
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """Handle all custom AppError exceptions with proper HTTP status codes."""
        error_dict = exc.to_dict()

        logger.error(
            "Application error occurred",
            path=request.url.path,
            method=request.method,
            **error_dict,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error_type": exc.error_type},
        )

    # Include routers
    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(monthly_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint for basic connectivity check."""
        return {
            "message": "Dashboard Sync API",
            "version": "0.1.0",
            "environment": settings.environment,
        }

    return app


# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dashboard_sync.main:app",
        host="0.0.0.0",  # nosec B104 - Required for Docker container
        port=8000,
        reload=settings.environment == "development",
        log_config=None,  # Use structlog configuration
    )
