"""
Application configuration using Pydantic Settings.

Supports hierarchical environment configuration:
- .env.base: Common non-secret defaults (committed to git)
- .env.{ENVIRONMENT}: Environment-specific overrides (gitignored)
- Environment variables: Highest priority

All durations are float seconds.
"""

import os
from functools import lru_cache
from typing import TYPE_CHECKING, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from ..services.data_manager.types import DomainType

# Get environment from env var, default to development
ENV = os.getenv("ENVIRONMENT", "development")


class Settings(BaseSettings):
    """Application settings with hierarchical env file support."""

    model_config = SettingsConfigDict(
        # Load base first, then environment-specific override
        env_file=[
            ".env.base",  # Common defaults (committed)
            f".env.{ENV}",  # Environment overrides (gitignored)
        ],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "test", "production"] = "development"

    # Upstream dashboard API (spreadsheet-backed project data, AI insights, monthly)
    api_base_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Cache settings
    cache_ttl_seconds: float = 300.0  # 5 minutes
    monthly_snapshot_ttl_seconds: float = 300.0  # Same as default

    # Background staleness sweep
    staleness_sweep_interval_seconds: float = 30.0

    # Consumer refetch throttle (absorbs double-clicks)
    refetch_throttle_seconds: float = 2.0

    # Per-call deadlines
    client_fetch_timeout_seconds: float = 10.0  # Spreadsheet-backed reads
    ai_insights_timeout_seconds: float = 20.0  # Generation takes longer
    sheets_timeout_seconds: float = 10.0  # Server-side monthly routes

    # Monthly index
    monthly_index_default_limit: int = 12

    # Domains loaded as soon as a DataManager is created
    auto_load_domains: list[str] = ["progress", "manpower", "aiInsights"]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def timeout_for(self, domain: "DomainType") -> float:
        """Deadline in seconds for one fetch of the given domain."""
        if domain.value == "aiInsights":
            return self.ai_insights_timeout_seconds
        return self.client_fetch_timeout_seconds

    def ttl_for(self, domain: "DomainType") -> float:
        """Cache TTL in seconds for the given domain."""
        if domain.value == "monthlySnapshot":
            return self.monthly_snapshot_ttl_seconds
        return self.cache_ttl_seconds


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
