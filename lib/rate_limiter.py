"""Per-action rolling-window rate limiter.

Tencent Cloud throttles each API action independently (typically 20 requests
per second per action), so one window is tracked per action name.

Usage:
    limiter = ActionRateLimiter(max_calls=20, window=1)
    limiter.acquire("DescribeAccelerationDomains")
"""

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Deque, Dict


class ActionRateLimiter:
    """Thread-safe rolling-window limiter keyed by action name.

    Args:
        max_calls: Maximum calls to a single action within *window* seconds.
        window:    Length of the rolling window in seconds.
        clock:     Monotonic time source (injectable for tests).
        sleep:     Sleep function (injectable for tests).
    """

    def __init__(
        self,
        max_calls: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._calls: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def acquire(self, action: str) -> float:
        """Block until *action* has a free slot, claim it, return seconds waited."""
        waited = 0.0
        with self._lock:
            calls = self._calls[action]
            while True:
                now = self._clock()
                cutoff = now - self.window
                while calls and calls[0] <= cutoff:
                    calls.popleft()

                if len(calls) < self.max_calls:
                    calls.append(now)
                    return waited

                sleep_for = calls[0] - cutoff
                waited += sleep_for
                self._lock.release()
                try:
                    self._sleep(sleep_for)
                finally:
                    self._lock.acquire()

    def remaining(self, action: str) -> int:
        """Return how many calls *action* may make right now without blocking."""
        with self._lock:
            cutoff = self._clock() - self.window
            active = sum(1 for t in self._calls.get(action, ()) if t > cutoff)
            return max(0, self.max_calls - active)


# Tencent Cloud documents 20 requests/second per action for SSL, CDN and TEO.
DEFAULT_LIMITER = ActionRateLimiter(max_calls=20, window=1.0)
