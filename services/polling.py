"""Bounded fixed-interval polling.

Remote deletes and rebinds settle asynchronously. Both are polled at a
constant interval for a fixed number of attempts; running out of attempts is
reported as PollOutcome.TIMED_OUT rather than raised, so the caller decides
whether a slow task should fail the run.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

DEFAULT_POLL_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 1.0  # seconds


class PollOutcome(Enum):
    SETTLED = "settled"
    TIMED_OUT = "timed_out"


@dataclass
class PollSettings:
    attempts: int = DEFAULT_POLL_ATTEMPTS
    interval: float = DEFAULT_POLL_INTERVAL


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int

    @property
    def settled(self) -> bool:
        return self.outcome is PollOutcome.SETTLED


def poll_until(
    check: Callable[[], bool],
    settings: PollSettings,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int, int], None]] = None,
) -> PollResult:
    """Sleep one interval, then call *check*; repeat until it returns True.

    *on_attempt* receives ``(attempt, total)`` before each sleep. Exceptions
    raised by *check* propagate unchanged.
    """
    for attempt in range(1, settings.attempts + 1):
        if on_attempt:
            on_attempt(attempt, settings.attempts)
        sleep(settings.interval)
        if check():
            return PollResult(PollOutcome.SETTLED, attempt)
    return PollResult(PollOutcome.TIMED_OUT, settings.attempts)
