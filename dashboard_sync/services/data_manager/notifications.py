"""
User-visible error notifications for data fetches.

The ErrorNotifier listens to a StateStore and emits one notification each
time a key enters ``error``, so a failure is reported once per fetch attempt
rather than on every read. Aborted fetches (superseded or cancelled) are not
reported. Notification ids are ``<key>-timeout`` or ``<key>-error`` so a UI
can replace an earlier toast for the same key instead of stacking them.
"""

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from .state import StateStore
from .types import DataFetchError, DataState, DomainKey, ErrorKind

logger = structlog.get_logger()


@dataclass(frozen=True)
class Notification:
    """A single user-visible error message."""

    id: str
    key: str
    message: str
    retryable: bool
    kind: ErrorKind

    @classmethod
    def from_error(cls, key: DomainKey, error: DataFetchError) -> "Notification":
        suffix = "timeout" if error.is_timeout else "error"
        return cls(
            id=f"{key}-{suffix}",
            key=str(key),
            message=error.message,
            retryable=error.retryable,
            kind=error.kind,
        )


NotificationSink = Callable[[Notification], None]


def log_sink(notification: Notification) -> None:
    """Default sink: structured warning log."""
    logger.warning(
        "Data fetch failed",
        notification_id=notification.id,
        key=notification.key,
        message=notification.message,
        retryable=notification.retryable,
    )


class ErrorNotifier:
    """Turns StateStore transitions into error notifications."""

    def __init__(self, sink: NotificationSink = log_sink):
        self._sink = sink
        # Requested by silence_next, waiting for the next attempt to start
        self._pending: set[DomainKey] = set()
        # Keys whose current attempt is silenced
        self._silenced: set[DomainKey] = set()
        self.sent = 0

    def attach(self, store: StateStore) -> Callable[[], None]:
        """
        Start listening to a store.

        Returns:
            Function that detaches the notifier
        """
        return store.subscribe(self._on_transition)

    def silence_next(self, key: DomainKey) -> None:
        """
        Suppress the notification for the next attempt started on ``key``.

        The silence covers that one attempt only: if another attempt supersedes
        it, the new attempt is reported as usual.
        """
        self._pending.add(key)

    def release(self, key: DomainKey) -> None:
        """Drop a silence whose attempt never started."""
        self._pending.discard(key)

    def _on_transition(
        self, key: DomainKey, previous: DataState, current: DataState
    ) -> None:
        if current.is_loading:
            if key in self._pending:
                self._pending.discard(key)
                self._silenced.add(key)
            else:
                self._silenced.discard(key)
            return
        if current.is_success:
            self._silenced.discard(key)
            return
        if not current.is_error or previous.is_error:
            return

        if key in self._silenced:
            self._silenced.discard(key)
            logger.debug("Notification silenced", key=str(key))
            return
        if current.error.kind is ErrorKind.ABORTED:
            return

        self.sent += 1
        self._sink(Notification.from_error(key, current.error))
