"""
Time sources for the exchange core.

Limiter windows, cooldowns and grace periods never read the wall clock
themselves; the state manager asks its injected Clock for ``now`` once per
operation and passes the timestamp down.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Supplies monotonically non-decreasing integer timestamps (seconds)."""

    def now(self) -> int:
        ...


class SystemClock:
    """Unix time, truncated to whole seconds and never allowed to step back."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock:
    """Caller-driven clock for tests and simulations."""

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"start must be non-negative: {start}")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Clock cannot move backwards ({seconds}s)")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(f"Clock cannot move backwards: {timestamp} < {self._now}")
        self._now = timestamp
        return self._now
