"""
Per-domain state for the Data Manager Layer.

``apply`` is the pure transition function:

    idle ──Started──▶ loading ──Succeeded──▶ success
                         │                      │
                         └──Failed──▶ error ◀───┘ (via loading on refresh)

``StateStore`` holds one DataState per key, funnels every change through
``apply`` and notifies listeners afterwards.
"""

from collections.abc import Callable, Iterator
from datetime import datetime

import structlog

from ...core.utils.date_utils import utcnow
from .types import (
    Action,
    DataState,
    DataStatus,
    DomainKey,
    FetchFailed,
    FetchStarted,
    FetchSucceeded,
)

logger = structlog.get_logger(__name__)

StateListener = Callable[[DomainKey, DataState, DataState], None]

IDLE = DataState()


def apply(state: DataState, action: Action, now: datetime | None = None) -> DataState:
    """
    Compute the next state for one key.

    Reads only ``state`` and ``action``; has no side effects.

    Args:
        state: Previous state of the key
        action: FetchStarted, FetchSucceeded or FetchFailed
        now: Timestamp for the new state (default: current UTC time)

    Returns:
        The new state (``state`` itself for an unknown action)
    """
    timestamp = now or utcnow()

    if isinstance(action, FetchStarted):
        return DataState(status=DataStatus.LOADING, timestamp=timestamp)
    if isinstance(action, FetchSucceeded):
        return DataState(
            status=DataStatus.SUCCESS, data=action.data, timestamp=timestamp
        )
    if isinstance(action, FetchFailed):
        return DataState(
            status=DataStatus.ERROR, error=action.error, timestamp=timestamp
        )
    return state


class StateStore:
    """
    Container of DataState per DomainKey.

    Keys start ``idle`` and are created lazily on first access.
    """

    def __init__(self) -> None:
        self._states: dict[DomainKey, DataState] = {}
        self._listeners: list[StateListener] = []

    def get(self, key: DomainKey) -> DataState:
        """Current state of a key (``idle`` if never touched)."""
        return self._states.get(key, IDLE)

    def dispatch(self, action: Action) -> DataState:
        """
        Apply an action and notify listeners.

        Returns:
            The new state of ``action.key``
        """
        previous = self.get(action.key)
        current = apply(previous, action)
        self._states[action.key] = current

        logger.debug(
            "state_transition",
            key=str(action.key),
            previous=previous.status.value,
            current=current.status.value,
        )

        for listener in list(self._listeners):
            listener(action.key, previous, current)
        return current

    def seed(self, key: DomainKey, data: object) -> DataState:
        """Start a key in ``success`` with pre-loaded data."""
        return self.dispatch(FetchSucceeded(key, data))

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Call ``listener(key, previous, current)`` after every transition.

        Returns:
            Unsubscribe function (safe to call repeatedly)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def keys(self) -> list[DomainKey]:
        return list(self._states)

    def items(self) -> Iterator[tuple[DomainKey, DataState]]:
        return iter(list(self._states.items()))

    def snapshot(self) -> dict[str, DataState]:
        """Copy of every known state keyed by the key's string form."""
        return {str(key): state for key, state in self._states.items()}

    def clear(self) -> None:
        self._states.clear()
        self._listeners.clear()
