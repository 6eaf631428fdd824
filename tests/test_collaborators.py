"""
Test suite for the clock and identifier collaborators.
"""

import pytest

from domex.exchange.amm import PoolState
from domex.exchange.circuit_breaker import OperationKind
from domex.exchange.clock import ManualClock, SystemClock
from domex.exchange.identifiers import (
    CallerIdentifierResolver,
    PoolIdentifierResolver,
    derive_identifier,
    normalize_address,
)

POOL = PoolState(id="0x" + "ab" * 20, token_a="0x01", token_b="0x02")


class TestClocks:

    def test_manual_clock(self):
        clock = ManualClock(100)
        assert clock.now() == 100
        assert clock.advance(5) == 105
        assert clock.set(200) == 200

    def test_manual_clock_monotonic(self):
        clock = ManualClock(100)
        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(99)

    def test_system_clock_non_decreasing(self):
        clock = SystemClock()
        first = clock.now()
        assert isinstance(first, int)
        assert clock.now() >= first


class TestIdentifiers:

    def test_normalize(self):
        assert normalize_address("  0xABcd ") == "0xabcd"
        assert normalize_address("0XAB") == "0xab"
        assert normalize_address("alice") == "alice"

    def test_normalize_rejects_empty(self):
        with pytest.raises(ValueError):
            normalize_address("  ")

    def test_derive_is_stable_and_case_insensitive(self):
        first = derive_identifier("DEX_SWAP", "0xABCD")
        assert first == derive_identifier("DEX_SWAP", "0xabcd")
        assert first != derive_identifier("DEX_DEPOSIT", "0xabcd")
        assert len(first) == 66

    def test_pool_resolver(self):
        assert PoolIdentifierResolver().resolve(OperationKind.SWAP, POOL, "0xabc") == POOL.id

    def test_caller_resolver(self):
        resolver = CallerIdentifierResolver()
        assert resolver.resolve(OperationKind.WITHDRAW, POOL, "0xabc") == derive_identifier(
            "DEX_WITHDRAW", "0xabc"
        )
