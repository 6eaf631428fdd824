"""
DOMEX Rate Limiter

Per-identifier accumulator that flags an identifier as rate limited when
the tracked volume moves more than ``threshold`` inside one window:

  NORMAL ──(accumulated > threshold, not overridden)──▶ TRIGGERED
  TRIGGERED ──(now >= triggered_at + cooldown_period)──▶ NORMAL
  TRIGGERED ──(admin override)──▶ NORMAL (bypass until revoked)

Windows are half-open ``[window_start, window_start + window_duration)``;
a delta recorded at exactly the boundary opens a new window. Cooldown
expiry is evaluated lazily on the next check or record, there is no timer.
All timestamps are supplied by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..constants import (
    DEFAULT_RATE_LIMIT_COOLDOWN,
    DEFAULT_RATE_LIMIT_THRESHOLD,
    DEFAULT_RATE_LIMIT_WINDOW,
)
from .amounts import FixedPointAmount

logger = logging.getLogger(__name__)

ZERO = FixedPointAmount.zero()

Delta = Union[FixedPointAmount, int]


class LimiterStatus(str, Enum):
    NORMAL = "normal"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class DeltaRecord:
    """What a single ``record_delta`` call changed, for compensating rollback."""
    identifier: str
    delta: FixedPointAmount
    recorded_at: int
    window_start: int
    previous_window_start: Optional[int]
    previous_accumulated: FixedPointAmount
    tripped: bool


def _magnitude(delta: Delta) -> FixedPointAmount:
    if isinstance(delta, FixedPointAmount):
        return delta
    if isinstance(delta, int) and not isinstance(delta, bool):
        return FixedPointAmount(abs(delta))
    raise TypeError(f"delta must be FixedPointAmount or raw int, got {type(delta).__name__}")


@dataclass
class RateLimiter:
    """Window/cooldown state of one identifier."""
    identifier: str
    threshold: FixedPointAmount = FixedPointAmount(DEFAULT_RATE_LIMIT_THRESHOLD)
    window_duration: int = DEFAULT_RATE_LIMIT_WINDOW
    cooldown_period: int = DEFAULT_RATE_LIMIT_COOLDOWN

    window_start: Optional[int] = None
    accumulated_delta: FixedPointAmount = ZERO
    triggered_at: Optional[int] = None
    overridden: bool = False

    def __post_init__(self) -> None:
        self._validate(self.window_duration, self.cooldown_period)

    @staticmethod
    def _validate(window_duration: int, cooldown_period: int) -> None:
        if window_duration <= 0:
            raise ValueError(f"window_duration must be positive: {window_duration}")
        if cooldown_period < 0:
            raise ValueError(f"cooldown_period must be non-negative: {cooldown_period}")

    # -- state machine ------------------------------------------------------

    def _expire_cooldown(self, now: int) -> None:
        if self.triggered_at is not None and now >= self.triggered_at + self.cooldown_period:
            logger.info("Rate limiter %s NORMAL after cooldown (triggered at %d)",
                        self.identifier, self.triggered_at)
            self.triggered_at = None
            self.window_start = now
            self.accumulated_delta = ZERO

    def record_delta(self, delta: Delta, now: int) -> DeltaRecord:
        """Accumulate the magnitude of ``delta`` and trip if over threshold."""
        magnitude = _magnitude(delta)
        self._expire_cooldown(now)

        previous_start = self.window_start
        previous_accumulated = self.accumulated_delta
        if self.window_start is None or now >= self.window_start + self.window_duration:
            self.window_start = now
            self.accumulated_delta = ZERO

        self.accumulated_delta = self.accumulated_delta + magnitude

        tripped = False
        if (
            self.triggered_at is None
            and not self.overridden
            and self.accumulated_delta > self.threshold
        ):
            self.triggered_at = now
            tripped = True
            logger.warning(
                "Rate limiter %s TRIGGERED: %s > threshold %s within %ds window",
                self.identifier, self.accumulated_delta, self.threshold, self.window_duration,
            )

        return DeltaRecord(
            identifier=self.identifier,
            delta=magnitude,
            recorded_at=now,
            window_start=self.window_start,
            previous_window_start=previous_start,
            previous_accumulated=previous_accumulated,
            tripped=tripped,
        )

    def rollback(self, record: DeltaRecord) -> None:
        """Undo one ``record_delta`` whose paired operation failed."""
        if record.tripped and self.triggered_at == record.recorded_at:
            self.triggered_at = None
        if self.window_start != record.window_start:
            return  # window already moved on; nothing left to compensate
        remaining = self.accumulated_delta.raw - record.delta.raw
        if remaining <= 0 and record.previous_window_start != record.window_start:
            self.window_start = record.previous_window_start
            self.accumulated_delta = record.previous_accumulated
        else:
            self.accumulated_delta = FixedPointAmount(max(remaining, 0))

    def is_limited(self, now: int) -> bool:
        self._expire_cooldown(now)
        return self.triggered_at is not None and not self.overridden

    def status(self, now: int) -> LimiterStatus:
        return LimiterStatus.TRIGGERED if self.is_limited(now) else LimiterStatus.NORMAL

    def retry_after(self, now: int) -> Optional[int]:
        if not self.is_limited(now):
            return None
        return self.triggered_at + self.cooldown_period

    def time_until_reset(self, now: int) -> int:
        retry = self.retry_after(now)
        return 0 if retry is None else max(retry - now, 0)

    # -- admin --------------------------------------------------------------

    def override(self) -> None:
        self.overridden = True
        self.triggered_at = None

    def revoke_override(self) -> None:
        self.overridden = False

    def configure(
        self,
        threshold: Optional[FixedPointAmount] = None,
        window_duration: Optional[int] = None,
        cooldown_period: Optional[int] = None,
    ) -> None:
        self._validate(
            self.window_duration if window_duration is None else window_duration,
            self.cooldown_period if cooldown_period is None else cooldown_period,
        )
        if threshold is not None:
            self.threshold = threshold
        if window_duration is not None:
            self.window_duration = window_duration
        if cooldown_period is not None:
            self.cooldown_period = cooldown_period

    # -- persistence --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "threshold": str(self.threshold.raw),
            "window_duration": self.window_duration,
            "cooldown_period": self.cooldown_period,
            "window_start": self.window_start,
            "accumulated_delta": str(self.accumulated_delta.raw),
            "triggered_at": self.triggered_at,
            "overridden": self.overridden,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RateLimiter:
        return cls(
            identifier=data["identifier"],
            threshold=FixedPointAmount(int(data.get("threshold", DEFAULT_RATE_LIMIT_THRESHOLD))),
            window_duration=int(data.get("window_duration", DEFAULT_RATE_LIMIT_WINDOW)),
            cooldown_period=int(data.get("cooldown_period", DEFAULT_RATE_LIMIT_COOLDOWN)),
            window_start=data.get("window_start"),
            accumulated_delta=FixedPointAmount(int(data.get("accumulated_delta", 0))),
            triggered_at=data.get("triggered_at"),
            overridden=bool(data.get("overridden", False)),
        )
