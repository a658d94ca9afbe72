"""Wall-clock deadline for a whole pipeline run.

Nothing in the run is cancellable mid-command, so the deadline is enforced
by clamping each subprocess timeout and each wait to the time left.
"""

from __future__ import annotations

import time
from collections.abc import Callable

Clock = Callable[[], float]
Sleep = Callable[[float], None]


class Deadline:
    def __init__(
        self,
        seconds: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._sleep = sleep
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def clamp(self, timeout: float | None = None) -> float:
        """``timeout`` reduced to the time left in the run; the time left if None."""
        left = self.remaining()
        if timeout is None:
            return left
        return min(timeout, left)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; False if the deadline cut the wait short."""
        left = self.remaining()
        if seconds <= left:
            if seconds > 0:
                self._sleep(seconds)
            return True
        if left > 0:
            self._sleep(left)
        return False
