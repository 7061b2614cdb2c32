"""
Shared timeout and cancellation utilities.

These helpers provide a consistent way to:
- Hand a cancellation token to any asynchronous unit of work
- Combine several tokens so that any one of them cancels the work (any_of)
- Race work against a deadline and cancel it when the deadline fires (with_deadline)
- Detect timeout and abort errors (is_timeout_error, is_abort_error)

Usage:
    async def fetch(token: CancellationToken) -> dict:
        response = await client.get("/api/project-data")
        token.raise_if_cancelled("project-data")
        return response.json()

    data = await with_deadline(fetch, 10.0, "project-data", signal=caller_token)
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")

CancelCallback = Callable[[Any], None]


class DeadlineExceededError(TimeoutError):
    """Raised when a task does not settle before its deadline."""

    code = "TIMEOUT"

    def __init__(
        self,
        label: str,
        timeout_seconds: float,
        cause: BaseException | None = None,
    ):
        self.label = label
        self.timeout_seconds = timeout_seconds
        self.cause = cause
        super().__init__(
            f"Operation timed out [{label}] after {self.timeout_ms}ms"
        )

    @property
    def timeout_ms(self) -> int:
        return round(self.timeout_seconds * 1000)


class OperationAbortedError(Exception):
    """Raised when a task is cancelled through its token before settling."""

    code = "ABORT_ERR"

    def __init__(self, label: str, reason: Any = None):
        self.label = label
        self.reason = reason
        super().__init__(f"Operation aborted [{label}]: {reason}")


class CancellationToken:
    """
    Read-only side of a CancellationSource.

    Work receives a token and either polls ``cancelled`` / ``raise_if_cancelled``
    at its suspension points or registers a callback. Once cancelled, a token
    stays cancelled.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Any = None
        self._callbacks: list[CancelCallback] = []
        self._upstream_removers: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Any:
        return self._reason

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """
        Run ``callback(reason)`` when the token is cancelled.

        Runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback (safe to call repeatedly)
        """
        if self._cancelled:
            callback(self._reason)
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)

        return remove

    def detach(self) -> None:
        """
        Stop following the tokens this one was combined from (see ``any_of``).

        Safe to call repeatedly; a no-op for tokens not built by ``any_of``.
        """
        removers, self._upstream_removers = self._upstream_removers, []
        for remove in removers:
            remove()

    def raise_if_cancelled(self, label: str = "operation") -> None:
        """Raise OperationAbortedError if the token has been cancelled."""
        if self._cancelled:
            raise OperationAbortedError(label, self._reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def wake(_reason: Any) -> None:
            if not future.done():
                future.set_result(None)

        remove = self.add_callback(wake)
        try:
            await future
        finally:
            remove()

    def _fire(self, reason: Any) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True


class CancellationSource:
    """Owner side of a cancellation token. ``cancel`` is idempotent."""

    def __init__(self) -> None:
        self._token = CancellationToken()

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def cancel(self, reason: Any = "cancelled") -> bool:
        """
        Cancel the token.

        Returns:
            True on the first call, False when already cancelled
        """
        return self._token._fire(reason)


def any_of(*tokens: CancellationToken | None) -> CancellationToken:
    """
    Combine tokens so that cancelling any one of them cancels the result.

    ``None`` entries are ignored. A single token is returned unchanged. If one
    of the inputs is already cancelled, the result is cancelled with its reason.

    A combined token listens to its inputs until one of them fires or its
    ``detach()`` is called; call ``detach()`` once the work using it settles.
    """
    present = [token for token in tokens if token is not None]
    if len(present) == 1:
        return present[0]

    combined = CancellationSource()
    removers: list[Callable[[], None]] = []

    def on_cancel(reason: Any) -> None:
        for remove in removers:
            remove()
        combined.cancel(reason)

    for token in present:
        removers.append(token.add_callback(on_cancel))
        if combined.cancelled:
            break
    combined.token._upstream_removers = removers

    return combined.token


def _consume_result(task: asyncio.Future[Any]) -> None:
    # Abandoned tasks still settle; read the outcome so asyncio does not warn.
    if not task.cancelled():
        task.exception()


async def with_deadline(
    task_factory: Callable[[CancellationToken], Awaitable[T]],
    timeout_seconds: float,
    label: str,
    signal: CancellationToken | None = None,
) -> T:
    """
    Race a task against a deadline.

    The task receives a token that fires when the deadline expires or when
    ``signal`` is cancelled, whichever comes first. Either way the underlying
    asyncio task is cancelled as well.

    Args:
        task_factory: Called once with the combined token; returns the awaitable
        timeout_seconds: Deadline in seconds (must be positive)
        label: Human-readable label for diagnostics
        signal: Optional caller-owned cancellation token

    Returns:
        The task's result, unchanged

    Raises:
        ValueError: If timeout_seconds is not positive
        DeadlineExceededError: If the deadline fired first
        OperationAbortedError: If ``signal`` cancelled the task first
        Exception: Whatever the task itself raised
    """
    if timeout_seconds <= 0:
        raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")

    if signal is not None and signal.cancelled:
        raise OperationAbortedError(label, signal.reason)

    internal = CancellationSource()
    token = any_of(signal, internal.token)
    task = asyncio.ensure_future(task_factory(token))
    remove = token.add_callback(lambda _reason: task.cancel())

    try:
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
        except asyncio.CancelledError:
            internal.cancel("caller cancelled")
            task.add_done_callback(_consume_result)
            raise
        finally:
            remove()

        if task in done:
            if task.cancelled():
                raise OperationAbortedError(label, token.reason)
            return task.result()

        error = DeadlineExceededError(label, timeout_seconds)
        logger.warning(
            "Operation timed out",
            label=label,
            timeout_ms=error.timeout_ms,
        )
        internal.cancel(error)
        task.cancel()
        task.add_done_callback(_consume_result)
        raise error
    finally:
        # The caller's signal may outlive this call
        token.detach()


def is_abort_error(err: BaseException | None) -> bool:
    """Check whether an error represents cancellation rather than failure."""
    if err is None:
        return False
    if isinstance(err, OperationAbortedError | asyncio.CancelledError):
        return True
    return str(getattr(err, "code", "")).upper() == "ABORT_ERR"


def is_timeout_error(err: BaseException | None) -> bool:
    """
    Check whether an error represents an expired deadline.

    Recognizes DeadlineExceededError, builtin/asyncio TimeoutError, httpx
    timeouts and errors coded ETIMEDOUT, including one level of cause.
    """
    if err is None:
        return False
    if isinstance(err, TimeoutError | httpx.TimeoutException):
        return True
    if str(getattr(err, "code", "")).upper() in ("TIMEOUT", "ETIMEDOUT"):
        return True
    cause = getattr(err, "cause", None) or err.__cause__
    if cause is not None and cause is not err:
        if isinstance(cause, TimeoutError | httpx.TimeoutException):
            return True
        return str(getattr(cause, "code", "")).upper() == "ETIMEDOUT"
    return False
