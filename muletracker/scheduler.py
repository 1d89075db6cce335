"""
Bounded-concurrency fan-out with a global dispatch rate ceiling.

fan_out runs a worker over every item on a thread pool that admits at most
`concurrency` workers at once. Before doing any work each worker waits on a
shared Ticker, so dispatches across the whole run are spaced at least
`interval` seconds apart no matter how many slots are free. The two limits
are independent: the pool caps burst size, the ticker caps sustained rate.

The call is a barrier: it returns once every item has produced a result, in
completion order. Workers are expected to report failures in their return
value. An exception that still escapes a worker is turned into a result by
the on_error fallback, so one item never takes down the rest of the run.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent import futures
from typing import Callable, Iterable, TypeVar

from .apps import ApplicationHandle
from .monitor import MetricsBackend, MonitorResult, monitor_app

logger = logging.getLogger(__name__)

CONCURRENCY_LIMIT = 5
DISPATCH_INTERVAL = 0.1  # seconds; at most 10 dispatches per second

T = TypeVar("T")
R = TypeVar("R")


class Ticker:
    """
    Thread-safe fixed-interval gate.

    Each wait() reserves the next free slot and sleeps until it. The first
    slot is one interval after construction; successive slots are exactly
    one interval apart, or later when the ticker was idle.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = clock() + interval

    def wait(self) -> float:
        """Block until this caller's slot. Returns the slot time on the ticker's clock."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return slot


def fan_out(
    items: Iterable[T],
    worker: Callable[[T], R],
    *,
    concurrency: int = CONCURRENCY_LIMIT,
    interval: float = DISPATCH_INTERVAL,
    timeout: float | None = None,
    on_result: Callable[[R], None] | None = None,
    on_error: Callable[[T, Exception], R] | None = None,
    ticker: Ticker | None = None,
) -> list[R]:
    """
    Run worker over items with bounded concurrency and rate-limited dispatch.

    timeout is an optional deadline for the whole run, in seconds. When it
    passes, queued items are cancelled and only the results completed so far
    are returned. on_result is called in the calling thread as each result
    arrives. on_error builds the result for an item whose worker raised;
    without it the exception propagates to the caller.
    """
    items = list(items)
    if not items:
        return []

    gate = ticker or Ticker(interval)

    def _dispatch(item: T) -> R:
        gate.wait()
        try:
            return worker(item)
        except Exception as exc:
            if on_error is None:
                raise
            logger.warning("Worker failed for %r: %s", item, exc)
            return on_error(item, exc)

    results: list[R] = []
    pool = futures.ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="muletracker")
    timed_out = False
    try:
        pending = [pool.submit(_dispatch, item) for item in items]
        for fut in futures.as_completed(pending, timeout=timeout):
            result = fut.result()
            results.append(result)
            if on_result is not None:
                on_result(result)
    except futures.TimeoutError:
        timed_out = True
        logger.warning(
            "Deadline of %ss reached: %d of %d items completed, the rest were abandoned",
            timeout, len(results), len(items),
        )
    finally:
        pool.shutdown(wait=not timed_out, cancel_futures=True)
    return results


def monitor_apps_concurrently(
    backend: MetricsBackend,
    org_id: str,
    env_id: str,
    lc_window: str,
    rc_window: str,
    apps: Iterable[ApplicationHandle],
    **kwargs,
) -> list[MonitorResult]:
    """Monitor every app through fan_out. Result order is unspecified; key rows by app_id."""

    def _monitor(app: ApplicationHandle) -> MonitorResult:
        return monitor_app(backend, org_id, env_id, app, lc_window, rc_window)

    def _failed(app: ApplicationHandle, exc: Exception) -> MonitorResult:
        return MonitorResult(
            app_id=app.app_id,
            app_type=app.type_label,
            lc_window=lc_window,
            rc_window=rc_window,
            error=f"unexpected error: {exc}",
        )

    kwargs.setdefault("on_error", _failed)
    return fan_out(apps, _monitor, **kwargs)
