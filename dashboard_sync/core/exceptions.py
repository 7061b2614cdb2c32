"""
Custom exception hierarchy for proper error categorization and HTTP status mapping.

This module provides a scalable exception system that maps internal errors to
appropriate HTTP status codes:
- User errors (400-level): Client sent bad data
- Server errors (500-level): Our infrastructure/code failed
- Upstream errors (502/503/504): The dashboard API or the sheet source failed

Usage:
    from dashboard_sync.core.exceptions import NotFoundError, UpstreamHTTPError

    # Unknown month → 404 Not Found
    raise NotFoundError("Month 2025-13 not found", year_month="2025-13")

    # Non-success response from the dashboard API
    raise UpstreamHTTPError("Failed to fetch project data", status=503)
"""

from typing import Any


class AppError(Exception):
    """
    Base application error with HTTP status mapping.

    All custom exceptions inherit from this to enable consistent error handling.
    """

    # Default status code (subclasses override)
    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, **context: Any):
        """
        Initialize error with message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional key-value pairs for logging (e.g., domain, year_month)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON response and structured logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            **self.context,
        }


# ===== 400-level: Client Errors =====


class ValidationError(AppError):
    """User provided invalid input (e.g., malformed year-month, bad limit)."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(AppError):
    """Requested resource does not exist."""

    status_code = 404
    error_type = "not_found_error"


# ===== 500-level: Server Errors =====


class ConfigurationError(AppError):
    """
    Application misconfigured (e.g., missing fetcher for a domain).

    Should be caught during startup, not during request handling.
    """

    status_code = 500
    error_type = "configuration_error"


class PayloadDecodeError(AppError):
    """
    Upstream payload could not be decoded into the expected shape.

    Indicates a contract mismatch between client and server, not a transient
    condition, so it is never retried automatically.
    """

    status_code = 502
    error_type = "payload_decode_error"


# ===== 502/503/504: Upstream Errors =====


class UpstreamHTTPError(AppError):
    """
    The dashboard API answered with a non-success status.

    Unlike the other errors, the status code is per-instance: it is the
    transport status returned by the upstream, not a fixed mapping.
    """

    error_type = "upstream_http_error"

    def __init__(
        self,
        message: str,
        status: int,
        code: str | None = None,
        **context: Any,
    ):
        """
        Args:
            message: Error description (from the response body when available)
            status: HTTP status returned by the upstream
            code: Optional machine-readable error code from the response body
            **context: Additional context (e.g., path)
        """
        super().__init__(message, **context)
        self.status_code = status
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.code:
            result["code"] = self.code
        return result


class GatewayTimeoutError(AppError):
    """A server-side deadline expired while waiting on the sheet source."""

    status_code = 504
    error_type = "gateway_timeout_error"
