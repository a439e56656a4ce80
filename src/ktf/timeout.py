"""Timeout class for cluster and addon operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Self

from safir.datetime import current_datetime

from .exceptions import OperationTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    Every cluster, addon, and cleanup operation takes a timeout, which plays
    the role of the caller's deadline. Work done on behalf of the operation
    (API calls, watches, readiness polls, dependency waits) must complete
    within the total timeout. This class encapsulates that type of timeout and
    provides methods to retrieve timeouts for individual operations.

    A timeout with no duration never expires. Operations run under it until
    they converge or the enclosing task is cancelled.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout, or `None` for no limit.
    """

    def __init__(self, operation: str, timeout: timedelta | None) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = current_datetime(microseconds=True)

    @property
    def operation(self) -> str:
        """Human-readable name of the operation."""
        return self._operation

    def child(self, operation: str) -> Self:
        """Create a timeout with the same deadline for a sub-operation.

        Parameters
        ----------
        operation
            Human-readable name of the sub-operation, used in errors.

        Returns
        -------
        Timeout
            Timeout ending at the same time as this one.
        """
        remaining = self.remaining()
        if remaining is not None and remaining < timedelta(seconds=0):
            remaining = timedelta(seconds=0)
        return type(self)(operation, remaining)

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = current_datetime(microseconds=True)
        return (now - self._start).total_seconds()

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout and translate `TimeoutError`.

        Used to wrap a block of code in `asyncio.timeout` and catch any
        `TimeoutError`, translating it into
        `~ktf.exceptions.OperationTimeoutError` with additional context.
        Task cancellation is not caught and propagates to the caller.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout had already expired on entry or if
            `TimeoutError` was raised inside the enclosed operation.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except TimeoutError as e:
            raise self.error() from e

    def error(self, pending: list[str] | None = None) -> OperationTimeoutError:
        """Build the exception reporting that this timeout expired.

        Parameters
        ----------
        pending
            Objects the operation was still waiting on, if known.

        Returns
        -------
        OperationTimeoutError
            Exception to raise.
        """
        return OperationTimeoutError(
            self._operation,
            started_at=self._start,
            failed_at=current_datetime(microseconds=True),
            pending=pending,
        )

    def expired(self) -> bool:
        """Whether the timeout has expired."""
        remaining = self.remaining()
        return remaining is not None and remaining <= timedelta(seconds=0)

    def left(self) -> float | None:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float or None
            Time remaining in the timeout in seconds, or `None` if the timeout
            has no limit.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout has expired.
        """
        remaining = self.remaining()
        if remaining is None:
            return None
        left = remaining.total_seconds()
        if left <= 0.0:
            raise self.error()
        return left

    def partial(
        self, timeout: timedelta, operation: str | None = None
    ) -> Self:
        """Create a timeout that is an extension of this timeout.

        In some cases, such as after a watch for object deletion times out, we
        want to perform several operations that fit within an overall timeout.
        This method returns a timeout that is shorter than an overall timeout,
        with the same metadata, which can be used for a sub-operation.

        Parameters
        ----------
        timeout
            Maximum duration of timeout. The newly-created timeout will be
            capped at the remaining duration of the parent timeout.
        operation
            Name of the sub-operation, if it should be reported differently
            from the parent operation.

        Returns
        -------
        Timeout
            Child timeout.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout parameter is less than 0, which may happen
            if it is constructed by subtracting some time from the remaining
            time in the timeout.
        """
        if timeout < timedelta(seconds=0):
            raise self.error()
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(remaining, timeout)
        return type(self)(operation or self._operation, timeout)

    def remaining(self) -> timedelta | None:
        """Return the time remaining, which may be negative.

        Returns
        -------
        datetime.timedelta or None
            Time remaining, or `None` if the timeout has no limit.
        """
        if self._timeout is None:
            return None
        now = current_datetime(microseconds=True)
        return self._timeout - (now - self._start)
