"""
DOMEX Exchange Core

Constant-product AMM gated by a rate-limiting circuit breaker.

Components:
  - Fixed-point amounts (18 decimals, uint256-bounded, fail closed)
  - AMM Engine (x * y = k pools, proportional liquidity shares)
  - Rate Limiter (per-identifier window accumulator with cooldown)
  - Circuit Breaker (kill switch, grace period, protected contracts)
  - State Manager (guard + mutate critical section, dispatch, state root)
  - State Stores (in-memory, SQLite)
"""

from .amounts import (
    FixedPointAmount,
    WAD,
    MAX_UINT256,
    checked_add,
    checked_sub,
    checked_mul,
    mul_div,
    isqrt,
)
from .amm import (
    get_amount_out,
    PoolState,
    LiquidityPool,
    SwapQuote,
    SwapResult,
    PoolManager,
)
from .rate_limiter import (
    DeltaRecord,
    LimiterStatus,
    RateLimiter,
)
from .circuit_breaker import (
    AdminCapability,
    BreakerEvent,
    CircuitBreaker,
    GuardReceipt,
    OperationKind,
)
from .clock import (
    Clock,
    ManualClock,
    SystemClock,
)
from .identifiers import (
    CallerIdentifierResolver,
    IdentifierResolver,
    PoolIdentifierResolver,
    derive_identifier,
    normalize_address,
)
from .store import (
    InMemoryStateStore,
    SQLiteStateStore,
    StateStore,
)
from .state_manager import (
    ExchangeExecResult,
    ExchangeOperation,
    ExchangeOpType,
    ExchangeStateManager,
)

__all__ = [
    # Amounts
    "FixedPointAmount", "WAD", "MAX_UINT256",
    "checked_add", "checked_sub", "checked_mul", "mul_div", "isqrt",
    # AMM
    "get_amount_out", "PoolState", "LiquidityPool", "SwapQuote", "SwapResult", "PoolManager",
    # Rate limiter
    "DeltaRecord", "LimiterStatus", "RateLimiter",
    # Circuit breaker
    "AdminCapability", "BreakerEvent", "CircuitBreaker", "GuardReceipt", "OperationKind",
    # Collaborators
    "Clock", "ManualClock", "SystemClock",
    "CallerIdentifierResolver", "IdentifierResolver", "PoolIdentifierResolver",
    "derive_identifier", "normalize_address",
    "InMemoryStateStore", "SQLiteStateStore", "StateStore",
    # State manager
    "ExchangeExecResult", "ExchangeOperation", "ExchangeOpType", "ExchangeStateManager",
]
