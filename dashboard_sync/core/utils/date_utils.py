"""
Date utility functions for the dashboard.
Handles UTC timestamps and canonical year-month ("YYYY-MM") keys.
"""

import re
from datetime import UTC, datetime

# ASCII digits only, matched against the whole string (no trailing newline)
YEAR_MONTH_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}")


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Replaces deprecated datetime.utcnow() which is scheduled for removal in Python 3.14.
    See: https://docs.python.org/3/library/datetime.html#datetime.datetime.utcnow
    """
    return datetime.now(UTC)


def is_year_month(value: str | None) -> bool:
    """
    Check that a value has the canonical "YYYY-MM" shape.

    Only the shape is checked: "2025-13" passes, so an impossible month reaches
    the sheet lookup and is reported as not found there.
    """
    return bool(value) and YEAR_MONTH_PATTERN.fullmatch(value) is not None


class DateUtils:
    """Utility class for year-month operations."""

    @staticmethod
    def validate_year_month(value: str, field: str = "yearMonth") -> str:
        """
        Validate a year-month string.

        Args:
            value: Candidate "YYYY-MM" string
            field: Parameter name used in the error message

        Returns:
            The value unchanged

        Raises:
            ValueError: If the value does not match YYYY-MM
        """
        if not is_year_month(value):
            raise ValueError(f"Invalid {field}: must be YYYY-MM")
        return value

    @staticmethod
    def split_year_month(value: str) -> tuple[int, int]:
        """
        Split "YYYY-MM" into (year, month).

        Raises:
            ValueError: If the value does not match YYYY-MM
        """
        DateUtils.validate_year_month(value)
        year, month = value.split("-")
        return int(year), int(month)

    @staticmethod
    def format_year_month(year: int, month: int) -> str:
        """Format a year and month as a canonical "YYYY-MM" key."""
        return f"{year:04d}-{month:02d}"
