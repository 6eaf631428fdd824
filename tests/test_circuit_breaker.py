"""
Test suite for the DOMEX circuit breaker.

Covers:
  - Kill switch (operational / paused)
  - Grace period (withdrawals only)
  - Protected identifiers and rate limiting through guard()
  - Admin capability checks, overrides, audit trail
  - Rollback and persistence
"""

import pytest

from domex.exceptions import (
    CircuitBreakerPaused,
    GracePeriodActive,
    RateLimited,
    Unauthorized,
)
from domex.exchange.amounts import FixedPointAmount
from domex.exchange.circuit_breaker import AdminCapability, CircuitBreaker, OperationKind

U = FixedPointAmount.from_units

POOL = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
ALL_KINDS = list(OperationKind)


@pytest.fixture
def breaker():
    return CircuitBreaker(default_threshold=U(1000), default_window=60, default_cooldown=3600)


@pytest.fixture
def cap(breaker):
    return breaker.grant_admin_capability()


@pytest.fixture
def protected(breaker, cap):
    breaker.add_protected_contracts(cap, [POOL])
    return breaker


class TestOperationalStatus:

    def test_starts_operational(self, breaker):
        assert breaker.is_operational

    @pytest.mark.parametrize("kind", ALL_KINDS)
    def test_paused_rejects_every_kind(self, breaker, cap, kind):
        breaker.set_operational_status(cap, False)
        with pytest.raises(CircuitBreakerPaused):
            breaker.guard(kind, OTHER, U(1), now=0)

    def test_paused_checked_before_grace(self, breaker, cap):
        breaker.start_grace_period(cap, 1000, now=0)
        breaker.set_operational_status(cap, False)
        with pytest.raises(CircuitBreakerPaused):
            breaker.guard(OperationKind.SWAP, OTHER, U(1), now=1)

    def test_precheck_records_nothing(self, protected, cap):
        protected.precheck(OperationKind.SWAP, now=0)
        assert protected.get_limiter(POOL).accumulated_delta == FixedPointAmount.zero()
        protected.set_operational_status(cap, False)
        with pytest.raises(CircuitBreakerPaused):
            protected.precheck(OperationKind.WITHDRAW, now=0)

    def test_precheck_grace_period(self, breaker, cap):
        breaker.start_grace_period(cap, 1000, now=0)
        breaker.precheck(OperationKind.WITHDRAW, now=1)
        with pytest.raises(GracePeriodActive):
            breaker.precheck(OperationKind.DEPOSIT, now=1)

    def test_resume(self, breaker, cap):
        breaker.set_operational_status(cap, False)
        breaker.set_operational_status(cap, True)
        breaker.guard(OperationKind.SWAP, OTHER, U(1), now=0)


class TestGracePeriod:

    def test_swap_and_deposit_blocked_withdraw_allowed(self, breaker, cap):
        now = 1_000
        breaker.start_grace_period(cap, now + 172800, now=now)
        with pytest.raises(GracePeriodActive) as exc:
            breaker.guard(OperationKind.SWAP, OTHER, U(1), now=now)
        assert exc.value.retry_after == now + 172800
        assert exc.value.recoverable
        with pytest.raises(GracePeriodActive):
            breaker.guard(OperationKind.DEPOSIT, OTHER, U(1), now=now)
        breaker.guard(OperationKind.WITHDRAW, OTHER, U(1), now=now)

    def test_expires_at_end(self, breaker, cap):
        breaker.start_grace_period(cap, 100, now=0)
        assert breaker.is_grace_period_active(99)
        assert not breaker.is_grace_period_active(100)
        breaker.guard(OperationKind.SWAP, OTHER, U(1), now=100)

    def test_end_must_be_in_future(self, breaker, cap):
        with pytest.raises(ValueError):
            breaker.start_grace_period(cap, 10, now=10)

    def test_end_grace_period(self, breaker, cap):
        breaker.start_grace_period(cap, 100, now=0)
        breaker.end_grace_period(cap)
        assert breaker.grace_period_end is None
        breaker.guard(OperationKind.DEPOSIT, OTHER, U(1), now=1)


class TestRateLimiting:

    def test_unprotected_skips_limiter(self, breaker):
        receipt = breaker.guard(OperationKind.SWAP, OTHER, U(1_000_000), now=0)
        assert receipt.record is None
        assert breaker.get_limiter(OTHER) is None

    def test_add_creates_default_limiter(self, protected):
        limiter = protected.get_limiter(POOL)
        assert limiter.threshold == U(1000)
        assert limiter.cooldown_period == 3600
        assert protected.is_protected_contract(POOL)
        assert protected.protected_contracts == [POOL]

    def test_trip_then_reject(self, protected):
        receipts = [protected.guard(OperationKind.SWAP, POOL, U(200), now=t) for t in range(6)]
        assert receipts[-1].tripped
        assert not any(r.tripped for r in receipts[:-1])
        assert protected.is_rate_limited(6)
        assert protected.last_rate_limit_timestamp == 5

        with pytest.raises(RateLimited) as exc:
            protected.guard(OperationKind.DEPOSIT, POOL, U(1), now=6)
        assert exc.value.retry_after == 5 + 3600
        assert exc.value.identifier == POOL
        assert protected.time_until_reset(POOL, 6) == 3599

    def test_withdraw_also_rate_limited(self, protected):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        with pytest.raises(RateLimited):
            protected.guard(OperationKind.WITHDRAW, POOL, U(1), now=1)

    def test_recovers_after_cooldown(self, protected):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        protected.guard(OperationKind.SWAP, POOL, U(1), now=3600)
        assert not protected.is_rate_limited(3600)

    def test_removed_contract_bypasses_limiter(self, protected, cap):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        protected.remove_protected_contracts(cap, [POOL])
        receipt = protected.guard(OperationKind.SWAP, POOL, U(1), now=1)
        assert receipt.record is None

    def test_override(self, protected, cap):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        protected.override_rate_limit(cap, POOL)
        protected.guard(OperationKind.SWAP, POOL, U(5000), now=1)
        assert protected.is_operational
        assert protected.grace_period_end is None

    def test_revoke_override(self, protected, cap):
        protected.override_rate_limit(cap, POOL)
        protected.revoke_rate_limit_override(cap, POOL)
        assert not protected.get_limiter(POOL).overridden

    def test_set_rate_limit_params(self, protected, cap):
        protected.set_rate_limit_params(cap, POOL, threshold=U(10))
        receipt = protected.guard(OperationKind.SWAP, POOL, U(11), now=0)
        assert receipt.tripped

    def test_rollback(self, protected):
        receipt = protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        assert receipt.tripped
        protected.rollback(receipt)
        assert not protected.is_rate_limited(0)
        assert protected.last_rate_limit_timestamp is None
        assert protected.get_limiter(POOL).accumulated_delta.is_zero()

    def test_rollback_unprotected_is_noop(self, breaker):
        receipt = breaker.guard(OperationKind.SWAP, OTHER, U(1), now=0)
        breaker.rollback(receipt)


class TestAuthorization:

    def test_forged_capability(self, breaker):
        forged = AdminCapability(breaker_id=breaker.breaker_id, token="00" * 32)
        with pytest.raises(Unauthorized):
            breaker.set_operational_status(forged, False)
        assert breaker.is_operational

    def test_missing_capability(self, breaker):
        with pytest.raises(Unauthorized):
            breaker.add_protected_contracts(None, [POOL])

    def test_capability_from_other_breaker(self, breaker):
        other = CircuitBreaker().grant_admin_capability()
        with pytest.raises(Unauthorized):
            breaker.override_rate_limit(other, POOL)

    def test_token_not_in_repr(self, cap):
        assert cap.token not in repr(cap)


class TestStatusAndEvents:

    def test_events_recorded(self, protected, cap):
        protected.set_operational_status(cap, False)
        protected.set_operational_status(cap, True)
        protected.start_grace_period(cap, 50, now=10)
        names = [e.name for e in protected.events]
        assert names == [
            "ProtectedContractAdded",
            "OperationalStatusChanged",
            "OperationalStatusChanged",
            "GracePeriodStarted",
        ]
        assert protected.events[-1].timestamp == 10

    def test_trip_event(self, protected):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=3)
        event = protected.events[-1]
        assert event.name == "RateLimitTriggered"
        assert event.data["identifier"] == POOL

    def test_status_snapshot(self, protected):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        status = protected.status(1)
        assert status["operational"] is True
        assert status["rate_limited"] is True
        assert status["rate_limit_cooldown_period"] == 3600
        assert status["limiters"][POOL]["status"] == "triggered"
        assert status["limiters"][POOL]["retry_after"] == 3600


class TestPersistence:

    def test_dict_round_trip(self, protected, cap):
        protected.guard(OperationKind.SWAP, POOL, U(1500), now=0)
        protected.start_grace_period(cap, 500, now=1)
        restored = CircuitBreaker.from_dict(protected.to_dict())
        assert restored.to_dict() == protected.to_dict()
        assert restored.is_rate_limited(2)
        assert restored.is_grace_period_active(2)

    def test_load_keeps_capability(self, protected, cap):
        state = protected.to_dict()
        protected.load_dict(state)
        protected.set_operational_status(cap, False)
        assert not protected.is_operational
