"""Cancelable deadline timers owned by a connection worker."""

from __future__ import annotations

import time
from typing import Optional


class IntervalTimer:
    """A one-shot deadline that can be armed, checked and cancelled.

    Each timer belongs to a single worker thread, which polls it between
    blocking waits; cancel() may be called from any thread.
    """

    def __init__(self, interval: float, clock=time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._deadline: Optional[float] = None

    @property
    def armed(self) -> bool:
        return self._deadline is not None

    def arm(self) -> None:
        self._deadline = self._clock() + self.interval

    def cancel(self) -> None:
        self._deadline = None

    def remaining(self) -> float:
        deadline = self._deadline
        if deadline is None:
            return float("inf")
        return max(0.0, deadline - self._clock())

    def expired(self) -> bool:
        deadline = self._deadline
        return deadline is not None and self._clock() >= deadline
