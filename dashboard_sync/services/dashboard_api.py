"""
Dashboard API client - upstream collaborator for the Data Manager Layer.

Wraps the dashboard's HTTP endpoints:
- GET  /api/project-data   (progress = mechanicalPlan, manpower = manpower)
- POST /api/ai-insights    (generated summary of the project data)
- GET  /api/risk           (risk register)
- GET  /api/monthly        (monthly index)
- GET  /api/monthly/{ym}   (one month's snapshot)

Every method takes an optional CancellationToken. Non-success responses raise
UpstreamHTTPError with the transport status and the body's machine code;
bodies that are not JSON, or not the expected shape, raise PayloadDecodeError
or pydantic.ValidationError.
"""

from typing import Any

import httpx
import structlog

from ..api.schemas.monthly_models import MonthlyIndexResponse, MonthlySnapshotResponse
from ..core.exceptions import PayloadDecodeError, UpstreamHTTPError
from ..core.utils.timeout import CancellationToken
from .data_manager.types import DomainKey, DomainType

logger = structlog.get_logger()

# Transport-level ceiling; per-domain deadlines are enforced by with_deadline
HTTP_TIMEOUT_SECONDS = 30.0


class DashboardApiClient:
    """
    Async client for the dashboard API.

    ``fetchers()`` adapts the methods to the DataManager's
    ``fetcher(key, token, **params)`` contract.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None):
        """
        Initialize the client.

        Args:
            base_url: Dashboard API origin (e.g., "http://localhost:3000")
            client: Optional httpx AsyncClient for connection pooling
        """
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        return self._client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        token: CancellationToken | None = None,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        failure_message: str = "Failed to fetch data",
    ) -> Any:
        """
        Send one request and decode its JSON body.

        Raises:
            OperationAbortedError: If the token is cancelled before or after the call
            UpstreamHTTPError: On a non-success status, or ``{"success": false}``
            PayloadDecodeError: If a success body is not JSON
        """
        if token is not None:
            token.raise_if_cancelled(path)

        client = await self._get_client()
        response = await client.request(
            method, f"{self.base_url}{path}", params=params, json=json
        )

        if token is not None:
            token.raise_if_cancelled(path)

        try:
            body = response.json()
        except ValueError:
            body = None

        error_body = body if isinstance(body, dict) else {}
        if response.is_error or error_body.get("success") is False:
            message = (
                error_body.get("message") or error_body.get("error") or failure_message
            )
            logger.warning(
                "Dashboard API request failed",
                method=method,
                path=path,
                status=response.status_code,
                error=message,
            )
            raise UpstreamHTTPError(
                message,
                status=response.status_code,
                code=error_body.get("code"),
                path=path,
            )

        if body is None:
            raise PayloadDecodeError("Response body is not valid JSON", path=path)
        return body

    # =========================================================================
    # Project data
    # =========================================================================

    async def get_project_data(
        self, token: CancellationToken | None = None
    ) -> dict[str, Any]:
        """Get the consolidated project data (``data`` envelope is unwrapped)."""
        body = await self._request(
            "GET",
            "/api/project-data",
            token,
            failure_message="Failed to fetch project data",
        )
        data = body.get("data", body) if isinstance(body, dict) else body
        if not isinstance(data, dict):
            raise PayloadDecodeError(
                "Project data must be a JSON object", path="/api/project-data"
            )
        return data

    async def get_progress(
        self, token: CancellationToken | None = None
    ) -> list[dict[str, Any]]:
        """Progress rows (the mechanical plan)."""
        project_data = await self.get_project_data(token)
        return project_data.get("mechanicalPlan") or []

    async def get_manpower(
        self, token: CancellationToken | None = None
    ) -> list[dict[str, Any]]:
        project_data = await self.get_project_data(token)
        return project_data.get("manpower") or []

    async def generate_ai_insights(self, token: CancellationToken | None = None) -> Any:
        """
        Generate AI insights for the current project data.

        Makes two calls: the project data, then the generation request.
        """
        project_data = await self.get_project_data(token)
        body = await self._request(
            "POST",
            "/api/ai-insights",
            token,
            json={"projectData": project_data},
            failure_message="Failed to generate AI insights",
        )
        return body.get("data", body) if isinstance(body, dict) else body

    async def get_risks(self, token: CancellationToken | None = None) -> Any:
        return await self._request("GET", "/api/risk", token)

    # =========================================================================
    # Monthly data
    # =========================================================================

    async def get_monthly_index(
        self,
        token: CancellationToken | None = None,
        *,
        order: str = "desc",
        limit: int = 12,
        from_: str | None = None,
        to: str | None = None,
    ) -> MonthlyIndexResponse:
        params: dict[str, Any] = {"order": order, "limit": limit}
        if from_:
            params["from"] = from_
        if to:
            params["to"] = to
        body = await self._request(
            "GET",
            "/api/monthly",
            token,
            params=params,
            failure_message="Failed to fetch monthly index",
        )
        return MonthlyIndexResponse.model_validate(body)

    async def get_monthly_snapshot(
        self,
        year_month: str,
        token: CancellationToken | None = None,
    ) -> MonthlySnapshotResponse:
        body = await self._request(
            "GET",
            f"/api/monthly/{year_month}",
            token,
            failure_message="Failed to fetch monthly snapshot",
        )
        return MonthlySnapshotResponse.model_validate(body)

    # =========================================================================
    # DataManager adapter
    # =========================================================================

    def fetchers(self) -> dict[DomainType, Any]:
        """Fetch functions per domain, in the DataManager's calling convention."""

        async def progress(key: DomainKey, token: CancellationToken, **_: Any) -> Any:
            return await self.get_progress(token)

        async def manpower(key: DomainKey, token: CancellationToken, **_: Any) -> Any:
            return await self.get_manpower(token)

        async def ai_insights(
            key: DomainKey, token: CancellationToken, **_: Any
        ) -> Any:
            return await self.generate_ai_insights(token)

        async def risk(key: DomainKey, token: CancellationToken, **_: Any) -> Any:
            return await self.get_risks(token)

        async def monthly_index(
            key: DomainKey, token: CancellationToken, **query: Any
        ) -> Any:
            return await self.get_monthly_index(token, **query)

        async def monthly_snapshot(
            key: DomainKey, token: CancellationToken, **_: Any
        ) -> Any:
            return await self.get_monthly_snapshot(key.param, token)

        return {
            DomainType.PROGRESS: progress,
            DomainType.MANPOWER: manpower,
            DomainType.AI_INSIGHTS: ai_insights,
            DomainType.RISK: risk,
            DomainType.MONTHLY_INDEX: monthly_index,
            DomainType.MONTHLY_SNAPSHOT: monthly_snapshot,
        }
