"""
DOMEX Circuit Breaker

Single gate every pool-mutating call passes before it reaches a pool:
  - Global kill switch (operational / paused)
  - Emergency grace period: withdrawals only until ``grace_period_end``
  - Protected identifiers, each tracked by its own RateLimiter
  - Admin overrides for false-positive recovery

Admin methods require an AdminCapability minted by this breaker. Who may
hold one is decided by the authorization layer in front of the core; the
breaker only checks that the capability is genuine.

Every transition is appended to an audit trail of BreakerEvents.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from ..constants import (
    DEFAULT_RATE_LIMIT_COOLDOWN,
    DEFAULT_RATE_LIMIT_THRESHOLD,
    DEFAULT_RATE_LIMIT_WINDOW,
)
from ..exceptions import CircuitBreakerPaused, GracePeriodActive, RateLimited, Unauthorized
from .amounts import FixedPointAmount
from .rate_limiter import Delta, DeltaRecord, RateLimiter

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    SWAP = "swap"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class AdminCapability:
    """Proof that the holder passed the admin authorization check."""
    breaker_id: str
    token: str = field(repr=False)


@dataclass(frozen=True)
class GuardReceipt:
    """Permission granted by ``guard``; hand back to ``rollback`` if the mutation fails."""
    kind: OperationKind
    identifier: str
    checked_at: int
    record: Optional[DeltaRecord] = None
    previous_last_rate_limit: Optional[int] = None

    @property
    def tripped(self) -> bool:
        return self.record is not None and self.record.tripped


@dataclass(frozen=True)
class BreakerEvent:
    name: str
    timestamp: Optional[int]
    data: Dict[str, Any] = field(default_factory=dict)


class CircuitBreaker:
    """
    Operational / Paused state machine with an orthogonal grace period and
    per-identifier rate limiters.

    ``guard`` checks, in order:
      1. operational, else CircuitBreakerPaused
      2. grace period, else GracePeriodActive for non-withdrawals
      3. protected membership; unprotected identifiers skip rate checks
      4. limiter state, else RateLimited
    and then records the delta for protected identifiers.
    """

    def __init__(
        self,
        default_threshold: FixedPointAmount = FixedPointAmount(DEFAULT_RATE_LIMIT_THRESHOLD),
        default_window: int = DEFAULT_RATE_LIMIT_WINDOW,
        default_cooldown: int = DEFAULT_RATE_LIMIT_COOLDOWN,
        operational: bool = True,
    ):
        RateLimiter._validate(default_window, default_cooldown)
        self.breaker_id = secrets.token_hex(8)
        self._admin_token = secrets.token_hex(32)
        self._lock = threading.RLock()

        self.default_threshold = default_threshold
        self.default_window = default_window
        self.default_cooldown = default_cooldown

        self._operational: bool = operational
        self._protected: Set[str] = set()
        self._grace_period_end: Optional[int] = None
        self._limiters: Dict[str, RateLimiter] = {}
        self._last_rate_limit_timestamp: Optional[int] = None
        self._events: List[BreakerEvent] = []

    # -- Authorization ------------------------------------------------------

    def grant_admin_capability(self) -> AdminCapability:
        """Mint a capability. Call only after the caller's identity was verified."""
        return AdminCapability(breaker_id=self.breaker_id, token=self._admin_token)

    def _require_admin(self, capability: Optional[AdminCapability]) -> None:
        if (
            not isinstance(capability, AdminCapability)
            or capability.breaker_id != self.breaker_id
            or not secrets.compare_digest(capability.token, self._admin_token)
        ):
            raise Unauthorized("Admin capability required")

    # -- Gate ---------------------------------------------------------------

    def precheck(self, kind: OperationKind, now: int) -> None:
        """Global checks of ``guard`` (kill switch, grace period); records nothing."""
        with self._lock:
            if not self._operational:
                raise CircuitBreakerPaused("Circuit breaker is paused")

            if self.is_grace_period_active(now) and kind is not OperationKind.WITHDRAW:
                raise GracePeriodActive(self._grace_period_end)

    def guard(
        self,
        kind: OperationKind,
        identifier: str,
        delta: Delta,
        now: int,
    ) -> GuardReceipt:
        with self._lock:
            self.precheck(kind, now)

            if identifier not in self._protected:
                return GuardReceipt(kind=kind, identifier=identifier, checked_at=now)

            limiter = self._limiter(identifier)
            if limiter.is_limited(now):
                raise RateLimited(identifier, limiter.retry_after(now))

            previous_last = self._last_rate_limit_timestamp
            record = limiter.record_delta(delta, now)
            if record.tripped:
                self._last_rate_limit_timestamp = now
                self._emit("RateLimitTriggered", now, identifier=identifier,
                           accumulated=str(limiter.accumulated_delta))
            return GuardReceipt(
                kind=kind,
                identifier=identifier,
                checked_at=now,
                record=record,
                previous_last_rate_limit=previous_last,
            )

    def rollback(self, receipt: GuardReceipt) -> None:
        """Compensate a granted ``guard`` whose paired mutation failed."""
        if receipt.record is None:
            return
        with self._lock:
            limiter = self._limiters.get(receipt.identifier)
            if limiter is None:
                return
            limiter.rollback(receipt.record)
            if receipt.tripped and self._last_rate_limit_timestamp == receipt.checked_at:
                self._last_rate_limit_timestamp = receipt.previous_last_rate_limit
            logger.debug("Guard for %s rolled back", receipt.identifier)

    # -- Admin operations ---------------------------------------------------

    def set_operational_status(self, capability: AdminCapability, operational: bool) -> None:
        self._require_admin(capability)
        with self._lock:
            self._operational = bool(operational)
            self._emit("OperationalStatusChanged", None, operational=self._operational)
            if self._operational:
                logger.info("Circuit breaker OPERATIONAL")
            else:
                logger.warning("Circuit breaker PAUSED")

    def start_grace_period(self, capability: AdminCapability, end_timestamp: int, now: int) -> None:
        self._require_admin(capability)
        if end_timestamp <= now:
            raise ValueError(f"Grace period end {end_timestamp} must be after now ({now})")
        with self._lock:
            self._grace_period_end = end_timestamp
            self._emit("GracePeriodStarted", now, end=end_timestamp)
            logger.warning("Grace period started: withdrawals only until %d", end_timestamp)

    def end_grace_period(self, capability: AdminCapability) -> None:
        self._require_admin(capability)
        with self._lock:
            self._grace_period_end = None
            self._emit("GracePeriodEnded", None)
            logger.info("Grace period cleared")

    def add_protected_contracts(self, capability: AdminCapability, identifiers: Iterable[str]) -> None:
        self._require_admin(capability)
        with self._lock:
            for identifier in identifiers:
                self._protected.add(identifier)
                self._limiter(identifier)
                self._emit("ProtectedContractAdded", None, identifier=identifier)
                logger.info("Protected contract added: %s", identifier)

    def remove_protected_contracts(self, capability: AdminCapability, identifiers: Iterable[str]) -> None:
        self._require_admin(capability)
        with self._lock:
            for identifier in identifiers:
                self._protected.discard(identifier)
                self._emit("ProtectedContractRemoved", None, identifier=identifier)
                logger.info("Protected contract removed: %s", identifier)

    def override_rate_limit(self, capability: AdminCapability, identifier: str) -> None:
        self._require_admin(capability)
        with self._lock:
            self._limiter(identifier).override()
            self._emit("RateLimitOverridden", None, identifier=identifier)
            logger.warning("Rate limit overridden for %s", identifier)

    def revoke_rate_limit_override(self, capability: AdminCapability, identifier: str) -> None:
        self._require_admin(capability)
        with self._lock:
            self._limiter(identifier).revoke_override()
            self._emit("RateLimitOverrideRevoked", None, identifier=identifier)
            logger.info("Rate limit override revoked for %s", identifier)

    def set_rate_limit_params(
        self,
        capability: AdminCapability,
        identifier: str,
        threshold: Optional[FixedPointAmount] = None,
        window_duration: Optional[int] = None,
        cooldown_period: Optional[int] = None,
    ) -> None:
        self._require_admin(capability)
        with self._lock:
            self._limiter(identifier).configure(threshold, window_duration, cooldown_period)
            self._emit(
                "RateLimitParamsChanged", None, identifier=identifier,
                threshold=None if threshold is None else str(threshold),
                window_duration=window_duration, cooldown_period=cooldown_period,
            )

    # -- Queries ------------------------------------------------------------

    @property
    def is_operational(self) -> bool:
        return self._operational

    @property
    def grace_period_end(self) -> Optional[int]:
        return self._grace_period_end

    @property
    def rate_limit_cooldown_period(self) -> int:
        return self.default_cooldown

    @property
    def last_rate_limit_timestamp(self) -> Optional[int]:
        return self._last_rate_limit_timestamp

    @property
    def protected_contracts(self) -> List[str]:
        return sorted(self._protected)

    @property
    def events(self) -> List[BreakerEvent]:
        return list(self._events)

    def is_protected_contract(self, identifier: str) -> bool:
        return identifier in self._protected

    def is_grace_period_active(self, now: int) -> bool:
        return self._grace_period_end is not None and now < self._grace_period_end

    def get_limiter(self, identifier: str) -> Optional[RateLimiter]:
        return self._limiters.get(identifier)

    def is_limited(self, identifier: str, now: int) -> bool:
        with self._lock:
            limiter = self._limiters.get(identifier)
            return limiter is not None and limiter.is_limited(now)

    def is_rate_limited(self, now: int) -> bool:
        """True if any protected identifier is currently limited."""
        with self._lock:
            return any(self._limiters[i].is_limited(now) for i in self._protected)

    def time_until_reset(self, identifier: str, now: int) -> int:
        with self._lock:
            limiter = self._limiters.get(identifier)
            return 0 if limiter is None else limiter.time_until_reset(now)

    def status(self, now: int) -> Dict[str, Any]:
        with self._lock:
            return {
                "operational": self._operational,
                "rate_limited": self.is_rate_limited(now),
                "grace_period_active": self.is_grace_period_active(now),
                "grace_period_end": self._grace_period_end,
                "rate_limit_cooldown_period": self.default_cooldown,
                "last_rate_limit_timestamp": self._last_rate_limit_timestamp,
                "protected_contracts": self.protected_contracts,
                "limiters": {
                    identifier: {
                        "status": limiter.status(now).value,
                        "accumulated_delta": str(limiter.accumulated_delta),
                        "threshold": str(limiter.threshold),
                        "overridden": limiter.overridden,
                        "retry_after": limiter.retry_after(now),
                    }
                    for identifier, limiter in sorted(self._limiters.items())
                },
            }

    # -- Internal -----------------------------------------------------------

    def _limiter(self, identifier: str) -> RateLimiter:
        limiter = self._limiters.get(identifier)
        if limiter is None:
            limiter = RateLimiter(
                identifier=identifier,
                threshold=self.default_threshold,
                window_duration=self.default_window,
                cooldown_period=self.default_cooldown,
            )
            self._limiters[identifier] = limiter
        return limiter

    def _emit(self, name: str, timestamp: Optional[int], **data: Any) -> None:
        self._events.append(BreakerEvent(name=name, timestamp=timestamp, data=data))

    # -- Persistence --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "operational": self._operational,
                "grace_period_end": self._grace_period_end,
                "last_rate_limit_timestamp": self._last_rate_limit_timestamp,
                "protected_contracts": self.protected_contracts,
                "default_threshold": str(self.default_threshold.raw),
                "default_window": self.default_window,
                "default_cooldown": self.default_cooldown,
                "limiters": {i: l.to_dict() for i, l in sorted(self._limiters.items())},
            }

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Replace state in place; capabilities already granted stay valid."""
        with self._lock:
            self._operational = bool(data.get("operational", True))
            self._grace_period_end = data.get("grace_period_end")
            self._last_rate_limit_timestamp = data.get("last_rate_limit_timestamp")
            self._protected = set(data.get("protected_contracts", []))
            self.default_threshold = FixedPointAmount(
                int(data.get("default_threshold", self.default_threshold.raw))
            )
            self.default_window = int(data.get("default_window", self.default_window))
            self.default_cooldown = int(data.get("default_cooldown", self.default_cooldown))
            self._limiters = {
                i: RateLimiter.from_dict(d) for i, d in data.get("limiters", {}).items()
            }
            for identifier in self._protected:
                self._limiter(identifier)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CircuitBreaker:
        breaker = cls()
        breaker.load_dict(data)
        return breaker
