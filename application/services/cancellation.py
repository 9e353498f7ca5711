"""Caller cancellation and bounded waits on out-of-process providers."""
from __future__ import annotations

import threading
import time
from concurrent.futures import Executor, wait
from typing import Callable, TypeVar

from domain.errors import SearchCancelledError

T = TypeVar("T")

_POLL_INTERVAL = 0.05


class ProviderTimeout(Exception):
    """A provider did not answer within its time budget."""


class CancellationToken:
    """Cancellation flag with an optional absolute deadline.

    The token is shared between the caller and the search; the caller may
    call :meth:`cancel` from any thread.
    """

    def __init__(self, timeout: float | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` without a deadline."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SearchCancelledError("Search was cancelled by the caller.")


def call_with_timeout(
    executor: Executor,
    func: Callable[..., T],
    *args: object,
    timeout: float,
    token: CancellationToken | None = None,
) -> T:
    """Run ``func`` on ``executor`` and wait at most ``timeout`` seconds.

    Raises :class:`ProviderTimeout` when the provider is too slow and
    :class:`SearchCancelledError` when the caller cancels first. Exceptions
    raised by ``func`` propagate unchanged.
    """
    if token is not None:
        token.raise_if_cancelled()
    future = executor.submit(func, *args)
    started = time.monotonic()
    while True:
        done, _ = wait([future], timeout=_POLL_INTERVAL)
        if done:
            return future.result()
        if token is not None and token.cancelled:
            future.cancel()
            raise SearchCancelledError("Search was cancelled while waiting for a provider.")
        if time.monotonic() - started >= timeout:
            future.cancel()
            raise ProviderTimeout(f"Provider did not answer within {timeout:.2f}s.")


__all__ = ["CancellationToken", "ProviderTimeout", "call_with_timeout"]
