from __future__ import annotations

import random
from typing import Callable

INITIAL_DELAY_MS = 1000
MAX_DELAY_MS = 60 * 1000
MAX_JITTER_MS = 1000


def _random_jitter() -> int:
    return random.randint(0, MAX_JITTER_MS)


class BackoffPolicy:
    """Retry delays starting at one second, doubling plus jitter, capped at a minute.

    There is no limit on the number of retries; only the delay is bounded.
    """

    def __init__(
        self,
        *,
        initial_ms: int = INITIAL_DELAY_MS,
        max_ms: int = MAX_DELAY_MS,
        jitter: Callable[[], int] = _random_jitter,
    ) -> None:
        self.initial_ms = initial_ms
        self.max_ms = max_ms
        self._jitter = jitter
        self.interval_ms = initial_ms

    def initial(self) -> int:
        return self.initial_ms

    def next(self, current_ms: int) -> int:
        return min(current_ms * 2 + self._jitter(), self.max_ms)

    def reset(self) -> int:
        self.interval_ms = self.initial_ms
        return self.interval_ms

    def retry_delay(self) -> int:
        """Return the delay to wait now and advance the interval for the next retry."""
        delay = self.interval_ms
        self.interval_ms = self.next(delay)
        return delay
