"""
Unit tests for custom exception hierarchy.

Tests exception mapping, status codes, and error serialization including:
- Base AppError functionality (to_dict, context handling)
- Client errors (400-level): ValidationError, NotFoundError
- Server errors (500-level): ConfigurationError, PayloadDecodeError
- Upstream errors: UpstreamHTTPError, GatewayTimeoutError
"""

from dashboard_sync.core.exceptions import (
    AppError,
    ConfigurationError,
    GatewayTimeoutError,
    NotFoundError,
    PayloadDecodeError,
    UpstreamHTTPError,
    ValidationError,
)

# ===== Base AppError Tests =====


class TestAppError:
    """Test base AppError functionality"""

    def test_create_app_error(self):
        """Test creating basic AppError"""
        error = AppError("Something went wrong")

        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.status_code == 500
        assert error.error_type == "internal_error"

    def test_app_error_to_dict(self):
        """Test AppError serialization includes context"""
        error = AppError("Lookup failed", year_month="2025-09")

        assert error.to_dict() == {
            "error_type": "internal_error",
            "message": "Lookup failed",
            "status_code": 500,
            "year_month": "2025-09",
        }


# ===== Status Mapping Tests =====


class TestStatusMapping:
    """Test the fixed HTTP status of each error class"""

    def test_client_errors(self):
        assert ValidationError("bad").status_code == 400
        assert NotFoundError("missing").status_code == 404

    def test_server_errors(self):
        assert ConfigurationError("no fetcher").status_code == 500
        assert PayloadDecodeError("not json").status_code == 502
        assert GatewayTimeoutError("Request timed out").status_code == 504

    def test_all_inherit_app_error(self):
        for cls in (ValidationError, NotFoundError, ConfigurationError, GatewayTimeoutError):
            assert issubclass(cls, AppError)


# ===== Upstream Error Tests =====


class TestUpstreamErrors:
    """Test errors that carry upstream details"""

    def test_upstream_http_error_uses_transport_status(self):
        error = UpstreamHTTPError("Invalid project data", status=400, code="BAD_INPUT")

        assert error.status_code == 400
        assert error.code == "BAD_INPUT"
        assert error.to_dict()["code"] == "BAD_INPUT"
        assert error.to_dict()["status_code"] == 400

    def test_upstream_http_error_status_is_per_instance(self):
        first = UpstreamHTTPError("not found", status=404)
        second = UpstreamHTTPError("down", status=503)

        assert first.status_code == 404
        assert second.status_code == 503
        assert "code" not in first.to_dict()
