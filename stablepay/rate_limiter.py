"""Sliding-window rate limiting for outbound RPC calls."""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from stablepay.cache import Clock, system_clock
from stablepay.constants import (
    RPC_BATCH_DELAY_SECONDS,
    RPC_BATCH_SIZE,
    RPC_MAX_CALLS_PER_SECOND,
    RPC_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SlidingWindowRateLimiter:
    """Caps calls to `max_calls` per `window_seconds`.

    When the window is full the caller waits until the oldest call leaves it. There is no
    backpressure signal beyond that added latency. Exceptions raised by the wrapped call
    propagate unchanged and are not retried.
    """

    def __init__(
        self,
        max_calls: int = RPC_MAX_CALLS_PER_SECOND,
        window_seconds: float = RPC_WINDOW_SECONDS,
        *,
        clock: Clock = system_clock,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def _acquire(self) -> None:
        while True:
            with self._lock:
                now = self._clock()
                self._cleanup(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self.window_seconds - (now - self._calls[0])
            if wait > 0:
                logger.debug("RPC rate limit reached, waiting %.3fs", wait)
                self._sleep(wait)

    @property
    def in_flight(self) -> int:
        """Calls recorded in the current window."""
        with self._lock:
            self._cleanup(self._clock())
            return len(self._calls)

    def execute(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run `fn` once a slot in the window is free."""
        self._acquire()
        return fn(*args, **kwargs)

    def execute_batch(
        self,
        fns: Sequence[Callable[[], T]],
        *,
        batch_size: int = RPC_BATCH_SIZE,
        batch_delay_seconds: float = RPC_BATCH_DELAY_SECONDS,
        limit_each: bool = True,
        on_result: Callable[[T], None] | None = None,
    ) -> list[T]:
        """Run `fns` in batches of `batch_size`, pausing between batches.

        Results come back in input order. The first exception aborts the remaining calls.
        Pass `limit_each=False` when every fn already goes through this limiter internally,
        so a composite call does not take an extra slot.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        results: list[T] = []
        for start in range(0, len(fns), batch_size):
            for fn in fns[start : start + batch_size]:
                result = self.execute(fn) if limit_each else fn()
                results.append(result)
                if on_result is not None:
                    on_result(result)
            if start + batch_size < len(fns) and batch_delay_seconds > 0:
                self._sleep(batch_delay_seconds)
        return results
