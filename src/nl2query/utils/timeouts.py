"""Bounded, cancellable execution of blocking provider calls."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, TypeVar

T = TypeVar("T")

_POLL_INTERVAL_SECONDS = 0.05


class CallTimeoutError(TimeoutError):
    """Raised when a blocking call does not finish within its timeout."""


class TurnCancelledError(RuntimeError):
    """Raised when the caller cancels a turn while a call is in flight."""


def raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TurnCancelledError("Turn was cancelled by the caller.")


def run_with_timeout(
    func: Callable[[], T],
    timeout_seconds: float,
    *,
    cancel_event: threading.Event | None = None,
) -> T:
    """Run ``func`` in a worker thread and wait at most ``timeout_seconds``.

    On timeout or cancellation the worker is abandoned: its result, if it ever
    arrives, is discarded.
    """
    raise_if_cancelled(cancel_event)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nl2query-call")
    future = pool.submit(func)
    try:
        deadline = time.monotonic() + timeout_seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise CallTimeoutError(
                    f"Call did not complete within {timeout_seconds:g}s."
                )
            step = remaining if cancel_event is None else min(
                remaining, _POLL_INTERVAL_SECONDS
            )
            wait([future], timeout=step)
            if future.done():
                return future.result()
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                raise TurnCancelledError("Turn was cancelled by the caller.")
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
