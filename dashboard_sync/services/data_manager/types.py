"""
Data types for the Data Manager Layer.

These models define the keys, states, cache entries, actions and errors that
flow between the coordinator components, ensuring consistent interfaces across
all data consumers.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ...core.exceptions import ValidationError
from ...core.utils.date_utils import is_year_month, utcnow


class DomainType(str, Enum):
    """Logical data sets the dashboard renders."""

    PROGRESS = "progress"
    MANPOWER = "manpower"
    AI_INSIGHTS = "aiInsights"
    RISK = "risk"
    MONTHLY_INDEX = "monthlyIndex"
    MONTHLY_SNAPSHOT = "monthlySnapshot"

    @property
    def is_parameterized(self) -> bool:
        """Returns True for domains keyed by an extra parameter (year-month)."""
        return self is DomainType.MONTHLY_SNAPSHOT


class DataStatus(str, Enum):
    """Lifecycle of one domain's data."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class ErrorKind(str, Enum):
    """How a fetch failed."""

    TIMEOUT = "timeout"
    HTTP = "http"
    PARSE = "parse"
    ABORTED = "aborted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DomainKey:
    """
    Identifies an independently cached data set.

    Fixed domains have no parameter; ``monthlySnapshot`` carries a canonical
    "YYYY-MM" parameter. The string form is ``progress`` or
    ``monthlySnapshot:2025-09``.
    """

    domain: DomainType
    param: str | None = None

    def __post_init__(self) -> None:
        if self.domain.is_parameterized:
            if not is_year_month(self.param):
                raise ValidationError(
                    "Invalid yearMonth: must be YYYY-MM",
                    domain=self.domain.value,
                    year_month=self.param,
                )
        elif self.param is not None:
            raise ValidationError(
                f"Domain {self.domain.value} does not take a parameter",
                domain=self.domain.value,
            )

    def __str__(self) -> str:
        if self.param is None:
            return self.domain.value
        return f"{self.domain.value}:{self.param}"

    @classmethod
    def of(cls, domain: "DomainType | str") -> "DomainKey":
        """Key for a fixed (non-parameterized) domain."""
        return cls(DomainType(domain))

    @classmethod
    def monthly_snapshot(cls, year_month: str) -> "DomainKey":
        """Key for one month's snapshot."""
        return cls(DomainType.MONTHLY_SNAPSHOT, year_month)

    @classmethod
    def parse(cls, value: "str | DomainKey | DomainType") -> "DomainKey":
        """
        Parse ``progress`` or ``monthlySnapshot:2025-09`` into a key.

        Raises:
            ValueError: If the domain name is unknown
            ValidationError: If the parameter is missing or malformed
        """
        if isinstance(value, DomainKey):
            return value
        if isinstance(value, DomainType):
            return cls(value)
        domain, _, param = value.partition(":")
        return cls(DomainType(domain), param or None)


@dataclass
class CacheEntry:
    """A cached payload with the monotonic time it was stored and its TTL."""

    data: Any
    timestamp: float
    ttl_seconds: float

    def age(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.timestamp

    def is_stale(self, now: float) -> bool:
        """An entry is usable only while ``age < ttl``."""
        return self.age(now) >= self.ttl_seconds


class DataFetchError(Exception):
    """
    A classified fetch failure.

    Raised by the RequestCoordinator and stored in DataState.error, so the
    same object is both an exception and plain data for consumers.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status: int | None = None,
        code: str | None = None,
        domain: str | None = None,
        timestamp: datetime | None = None,
    ):
        self.message = message
        self.retryable = retryable
        self.kind = kind
        self.status = status
        self.code = code
        self.domain = domain
        self.timestamp = timestamp or utcnow()
        super().__init__(f"{domain}: {message}" if domain else message)

    @property
    def is_timeout(self) -> bool:
        return self.kind is ErrorKind.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.retryable,
            "kind": self.kind.value,
            "domain": self.domain,
        }


@dataclass(frozen=True)
class DataState:
    """
    Snapshot of one domain.

    ``data`` is only set in ``success`` and ``error`` only in ``error``.
    """

    status: DataStatus = DataStatus.IDLE
    data: Any = None
    error: DataFetchError | None = None
    timestamp: datetime | None = None

    def __post_init__(self) -> None:
        if self.status is not DataStatus.SUCCESS and self.data is not None:
            raise ValueError(f"data is only allowed in success, not {self.status.value}")
        if (self.status is DataStatus.ERROR) != (self.error is not None):
            raise ValueError("error must be set exactly when status is error")

    @property
    def is_idle(self) -> bool:
        return self.status is DataStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is DataStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is DataStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is DataStatus.ERROR


# =========================================================================
# Actions (inputs to the state transition function)
# =========================================================================


@dataclass(frozen=True)
class FetchStarted:
    """A fetch for ``key`` became the current owner of the key."""

    key: DomainKey


@dataclass(frozen=True)
class FetchSucceeded:
    """The current owner of ``key`` settled with ``data``."""

    key: DomainKey
    data: Any


@dataclass(frozen=True)
class FetchFailed:
    """The current owner of ``key`` settled with ``error``."""

    key: DomainKey
    error: DataFetchError


Action = FetchStarted | FetchSucceeded | FetchFailed


@dataclass
class DomainView:
    """What a consumer renders for one domain at one moment."""

    status: DataStatus
    data: Any = None
    error: DataFetchError | None = None
    is_loading: bool = False
    is_refreshing: bool = False
    is_initial_loading: bool = False
