"""
Error classification for the Data Manager Layer.

Every failure that crosses the coordinator becomes a DataFetchError whose
``retryable`` flag tells consumers whether offering a retry makes sense:

- Timeout: always retryable
- HTTP 404: never retryable (the resource is absent)
- HTTP 400: not retryable for AI insights (same input, same rejection)
- Other HTTP statuses (5xx, 429): retryable
- Payload shape mismatch: not retryable
- Aborted (superseded or cancelled by the caller): retryable
- Anything else: retryable
"""

import json

import pydantic

from ...core.exceptions import PayloadDecodeError, UpstreamHTTPError
from ...core.utils.timeout import is_abort_error, is_timeout_error
from .types import DataFetchError, DomainKey, DomainType, ErrorKind

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"

# Statuses that can never succeed on retry, per domain
_NON_RETRYABLE_STATUSES: dict[DomainType, frozenset[int]] = {
    DomainType.AI_INSIGHTS: frozenset({400, 404}),
}
_DEFAULT_NON_RETRYABLE = frozenset({404})


def is_retryable_status(status: int, domain: DomainType) -> bool:
    """Whether an upstream HTTP status is worth retrying for a domain."""
    return status not in _NON_RETRYABLE_STATUSES.get(domain, _DEFAULT_NON_RETRYABLE)


def classify_error(error: BaseException, key: DomainKey) -> DataFetchError:
    """
    Convert any failure into a DataFetchError.

    Args:
        error: What the fetch raised
        key: Key of the fetch, used for the per-domain retry policy

    Returns:
        A DataFetchError (``error`` itself when it already is one)
    """
    if isinstance(error, DataFetchError):
        return error

    domain = str(key)

    # The status decides for HTTP errors, whatever code the body carries
    if isinstance(error, UpstreamHTTPError):
        return DataFetchError(
            error.message,
            retryable=is_retryable_status(error.status_code, key.domain),
            kind=ErrorKind.HTTP,
            status=error.status_code,
            code=error.code,
            domain=domain,
        )

    if is_timeout_error(error):
        return DataFetchError(
            "Request timed out. Please try again.",
            retryable=True,
            kind=ErrorKind.TIMEOUT,
            code="TIMEOUT",
            domain=domain,
        )

    if is_abort_error(error):
        return DataFetchError(
            "Request was cancelled",
            retryable=True,
            kind=ErrorKind.ABORTED,
            code="ABORT_ERR",
            domain=domain,
        )

    if isinstance(
        error, PayloadDecodeError | pydantic.ValidationError | json.JSONDecodeError
    ):
        message = error.message if isinstance(error, PayloadDecodeError) else str(error)
        return DataFetchError(
            message,
            retryable=False,
            kind=ErrorKind.PARSE,
            code="PARSE_ERROR",
            domain=domain,
        )

    return DataFetchError(
        str(error) or UNKNOWN_ERROR_MESSAGE,
        retryable=True,
        kind=ErrorKind.UNKNOWN,
        domain=domain,
    )
