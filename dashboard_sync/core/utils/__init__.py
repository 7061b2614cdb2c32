"""
Core utility functions for the dashboard sync layer.
"""

from .date_utils import DateUtils, is_year_month, utcnow
from .timeout import (
    CancellationSource,
    CancellationToken,
    DeadlineExceededError,
    OperationAbortedError,
    any_of,
    is_abort_error,
    is_timeout_error,
    with_deadline,
)

__all__ = [
    "DateUtils",
    "is_year_month",
    "utcnow",
    "CancellationSource",
    "CancellationToken",
    "DeadlineExceededError",
    "OperationAbortedError",
    "any_of",
    "is_abort_error",
    "is_timeout_error",
    "with_deadline",
]
