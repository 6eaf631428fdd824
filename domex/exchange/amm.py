"""
DOMEX Constant-Product AMM

Two-token liquidity pool priced by x * y = k:
  - Exact-in swaps with a single fee in basis points, floor-rounded
  - Proportional liquidity shares (isqrt on first deposit)
  - Per-provider share ledger
  - Spot price / execution price / price impact quotes

Security features:
  - Output is always strictly below the opposite reserve
  - Reserve product checked to be non-decreasing after every swap
  - Slippage protection (min_amount_out on every swap)
  - Deposit ratio tolerance against imbalanced deposits
  - Reentrancy lock on swap + liquidity mutations
  - Deterministic pool IDs (blake2b)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Optional, Tuple

from ..constants import (
    BPS_DENOMINATOR,
    DEFAULT_FEE_BPS,
    DEFAULT_IMBALANCE_TOLERANCE_BPS,
    WAD,
)
from ..exceptions import (
    ImbalancedDeposit,
    InsufficientLiquidity,
    InsufficientShares,
    PoolInvariantError,
    ReentrancyError,
    SlippageExceeded,
)
from .amounts import FixedPointAmount, checked_add, checked_mul, isqrt, mul_div

logger = logging.getLogger(__name__)

ZERO = FixedPointAmount.zero()


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def _validate_fee(fee_bps: int) -> None:
    if not 0 <= fee_bps < BPS_DENOMINATOR:
        raise ValueError(f"fee_bps must be in [0, {BPS_DENOMINATOR}): {fee_bps}")


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """
    Exact-in output on raw integers:

        amount_out = floor(amount_in * (10000 - fee) * reserve_out
                           / (reserve_in * 10000 + amount_in * (10000 - fee)))

    Raises:
        ValueError: non-positive input or fee outside [0, 10000)
        InsufficientLiquidity: empty reserve, zero output, or output that
            would drain the opposite reserve
    """
    _validate_fee(fee_bps)
    if amount_in <= 0:
        raise ValueError("Swap amount must be positive")
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidity("No liquidity in pool")

    amount_in_with_fee = checked_mul(amount_in, BPS_DENOMINATOR - fee_bps)
    numerator = checked_mul(amount_in_with_fee, reserve_out)
    denominator = checked_add(checked_mul(reserve_in, BPS_DENOMINATOR), amount_in_with_fee)
    amount_out = numerator // denominator

    if amount_out >= reserve_out:
        raise InsufficientLiquidity("Swap would drain pool")
    if amount_out == 0:
        raise InsufficientLiquidity("Swap output rounds to zero")
    return amount_out


def _ratio(numerator: int, denominator: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(numerator) / Decimal(denominator)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SwapQuote:
    """Observational pricing of a prospective swap; never mutates the pool."""
    amount_in: FixedPointAmount
    amount_out: FixedPointAmount
    fee: FixedPointAmount
    spot_price: Decimal
    execution_price: Decimal
    price_impact_bps: int

    @property
    def price_impact(self) -> Decimal:
        return Decimal(self.price_impact_bps) / Decimal(BPS_DENOMINATOR)


@dataclass(frozen=True)
class SwapResult:
    amount_in: FixedPointAmount
    amount_out: FixedPointAmount
    fee: FixedPointAmount
    a_to_b: bool
    reserve_a: FixedPointAmount
    reserve_b: FixedPointAmount


@dataclass
class PoolState:
    """
    State of a two-token constant-product pool.

    token_a < token_b (canonical ordering when created via PoolManager).
    """
    id: str
    token_a: str
    token_b: str
    fee_bps: int = DEFAULT_FEE_BPS
    imbalance_tolerance_bps: int = DEFAULT_IMBALANCE_TOLERANCE_BPS

    reserve_a: FixedPointAmount = ZERO
    reserve_b: FixedPointAmount = ZERO
    total_shares: FixedPointAmount = ZERO
    shares: Dict[str, FixedPointAmount] = field(default_factory=dict)

    # Stats
    total_volume_a: FixedPointAmount = ZERO
    total_volume_b: FixedPointAmount = ZERO
    swap_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.total_shares.is_zero()

    @property
    def k(self) -> int:
        return self.reserve_a.raw * self.reserve_b.raw

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "token_a": self.token_a,
            "token_b": self.token_b,
            "fee_bps": self.fee_bps,
            "imbalance_tolerance_bps": self.imbalance_tolerance_bps,
            "reserve_a": str(self.reserve_a.raw),
            "reserve_b": str(self.reserve_b.raw),
            "total_shares": str(self.total_shares.raw),
            "shares": {p: str(s.raw) for p, s in sorted(self.shares.items())},
            "total_volume_a": str(self.total_volume_a.raw),
            "total_volume_b": str(self.total_volume_b.raw),
            "swap_count": self.swap_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PoolState:
        def amount(key: str) -> FixedPointAmount:
            return FixedPointAmount(int(data.get(key, 0)))

        return cls(
            id=data["id"],
            token_a=data["token_a"],
            token_b=data["token_b"],
            fee_bps=int(data.get("fee_bps", DEFAULT_FEE_BPS)),
            imbalance_tolerance_bps=int(
                data.get("imbalance_tolerance_bps", DEFAULT_IMBALANCE_TOLERANCE_BPS)
            ),
            reserve_a=amount("reserve_a"),
            reserve_b=amount("reserve_b"),
            total_shares=amount("total_shares"),
            shares={p: FixedPointAmount(int(s)) for p, s in data.get("shares", {}).items()},
            total_volume_a=amount("total_volume_a"),
            total_volume_b=amount("total_volume_b"),
            swap_count=int(data.get("swap_count", 0)),
        )


# ---------------------------------------------------------------------------
# Liquidity Pool
# ---------------------------------------------------------------------------

class LiquidityPool:
    """
    Single constant-product pool engine.

    Implements:
      - Swap (exact-in) with slippage protection
      - Add / remove proportional liquidity
      - Reentrancy protection
      - Price impact calculation
    """

    def __init__(self, state: PoolState):
        _validate_fee(state.fee_bps)
        self.state = state
        self._locked: bool = False

    # -- Reentrancy guard ---------------------------------------------------

    def _acquire_lock(self) -> None:
        if self._locked:
            raise ReentrancyError("Reentrancy detected: pool is locked")
        self._locked = True

    def _release_lock(self) -> None:
        self._locked = False

    # -- Snapshot / restore -------------------------------------------------

    def snapshot(self) -> PoolState:
        return replace(self.state, shares=dict(self.state.shares))

    def restore(self, snapshot: PoolState) -> None:
        self.state = replace(snapshot, shares=dict(snapshot.shares))

    # -- Queries ------------------------------------------------------------

    def _reserves(self, a_to_b: bool) -> Tuple[FixedPointAmount, FixedPointAmount]:
        s = self.state
        return (s.reserve_a, s.reserve_b) if a_to_b else (s.reserve_b, s.reserve_a)

    def spot_price(self, a_to_b: bool = True) -> Decimal:
        """Units of the output token per unit of the input token."""
        reserve_in, reserve_out = self._reserves(a_to_b)
        if reserve_in.is_zero():
            raise InsufficientLiquidity("No liquidity in pool")
        return _ratio(reserve_out.raw, reserve_in.raw)

    def shares_of(self, provider: str) -> FixedPointAmount:
        return self.state.shares.get(provider, ZERO)

    def quote_swap(self, amount_in: FixedPointAmount, a_to_b: bool = True) -> SwapQuote:
        reserve_in, reserve_out = self._reserves(a_to_b)
        out = get_amount_out(amount_in.raw, reserve_in.raw, reserve_out.raw, self.state.fee_bps)

        # Same integer pipeline as the simulator: prices scaled by WAD, impact in bps
        spot_wad = mul_div(reserve_out.raw, WAD, reserve_in.raw)
        exec_wad = mul_div(out, WAD, amount_in.raw)
        impact_bps = 0
        if spot_wad > 0 and spot_wad > exec_wad:
            impact_bps = mul_div(spot_wad - exec_wad, BPS_DENOMINATOR, spot_wad)

        return SwapQuote(
            amount_in=amount_in,
            amount_out=FixedPointAmount(out),
            fee=amount_in.mul_div(self.state.fee_bps, BPS_DENOMINATOR),
            spot_price=_ratio(reserve_out.raw, reserve_in.raw),
            execution_price=_ratio(out, amount_in.raw),
            price_impact_bps=impact_bps,
        )

    def preview_remove_liquidity(
        self, shares: FixedPointAmount,
    ) -> Tuple[FixedPointAmount, FixedPointAmount]:
        s = self.state
        if shares.is_zero():
            raise ValueError("Share amount must be positive")
        if shares > s.total_shares:
            raise InsufficientShares(f"Only {s.total_shares} shares outstanding")
        amount_a = FixedPointAmount(mul_div(s.reserve_a.raw, shares.raw, s.total_shares.raw))
        amount_b = FixedPointAmount(mul_div(s.reserve_b.raw, shares.raw, s.total_shares.raw))
        return amount_a, amount_b

    # -- Swap ---------------------------------------------------------------

    def swap(
        self,
        amount_in: FixedPointAmount,
        a_to_b: bool = True,
        min_amount_out: FixedPointAmount = ZERO,
    ) -> SwapResult:
        """
        Execute a swap on this pool.

        Args:
            amount_in: exact input amount (fee included)
            a_to_b: True if swapping token_a → token_b
            min_amount_out: minimum acceptable output (slippage protection)

        Raises:
            InsufficientLiquidity, SlippageExceeded, ReentrancyError, ValueError
        """
        self._acquire_lock()
        try:
            return self._execute_swap(amount_in, a_to_b, min_amount_out)
        finally:
            self._release_lock()

    def _execute_swap(
        self,
        amount_in: FixedPointAmount,
        a_to_b: bool,
        min_amount_out: FixedPointAmount,
    ) -> SwapResult:
        s = self.state
        reserve_in, reserve_out = self._reserves(a_to_b)
        amount_out = FixedPointAmount(
            get_amount_out(amount_in.raw, reserve_in.raw, reserve_out.raw, s.fee_bps)
        )

        if amount_out < min_amount_out:
            raise SlippageExceeded(
                f"Slippage exceeded: got {amount_out}, minimum {min_amount_out}"
            )

        k_before = s.k
        new_in = reserve_in + amount_in
        new_out = reserve_out - amount_out
        if new_in.raw * new_out.raw < k_before:
            raise PoolInvariantError(f"Reserve product decreased on pool {s.id}")

        if a_to_b:
            s.reserve_a, s.reserve_b = new_in, new_out
            s.total_volume_a = s.total_volume_a + amount_in
        else:
            s.reserve_b, s.reserve_a = new_in, new_out
            s.total_volume_b = s.total_volume_b + amount_in
        s.swap_count += 1

        return SwapResult(
            amount_in=amount_in,
            amount_out=amount_out,
            fee=amount_in.mul_div(s.fee_bps, BPS_DENOMINATOR),
            a_to_b=a_to_b,
            reserve_a=s.reserve_a,
            reserve_b=s.reserve_b,
        )

    # -- Liquidity ----------------------------------------------------------

    def add_liquidity(
        self,
        provider: str,
        amount_a: FixedPointAmount,
        amount_b: FixedPointAmount,
    ) -> FixedPointAmount:
        """
        Deposit both tokens and mint shares to ``provider``.

        Returns:
            The shares minted
        """
        if amount_a.is_zero() or amount_b.is_zero():
            raise ValueError("Deposit amounts must be positive")

        self._acquire_lock()
        try:
            s = self.state
            if s.is_empty:
                minted = FixedPointAmount(isqrt(checked_mul(amount_a.raw, amount_b.raw)))
            else:
                self._check_deposit_ratio(amount_a, amount_b)
                minted = min(
                    FixedPointAmount(mul_div(amount_a.raw, s.total_shares.raw, s.reserve_a.raw)),
                    FixedPointAmount(mul_div(amount_b.raw, s.total_shares.raw, s.reserve_b.raw)),
                )
            if minted.is_zero():
                raise InsufficientLiquidity("Deposit too small to mint shares")

            reserve_a = s.reserve_a + amount_a
            reserve_b = s.reserve_b + amount_b
            total = s.total_shares + minted
            held = self.shares_of(provider) + minted

            s.reserve_a, s.reserve_b, s.total_shares = reserve_a, reserve_b, total
            s.shares[provider] = held
            return minted
        finally:
            self._release_lock()

    def remove_liquidity(
        self,
        provider: str,
        shares: FixedPointAmount,
    ) -> Tuple[FixedPointAmount, FixedPointAmount]:
        """
        Burn ``shares`` from ``provider`` for a proportional cut of both reserves.

        Returns:
            (amount_a, amount_b)
        """
        if shares.is_zero():
            raise ValueError("Share amount must be positive")
        held = self.shares_of(provider)
        if shares > held:
            raise InsufficientShares(f"{provider} holds {held} shares, requested {shares}")

        self._acquire_lock()
        try:
            s = self.state
            amount_a, amount_b = self.preview_remove_liquidity(shares)

            s.reserve_a = s.reserve_a - amount_a
            s.reserve_b = s.reserve_b - amount_b
            s.total_shares = s.total_shares - shares
            remaining = held - shares
            if remaining.is_zero():
                del s.shares[provider]
            else:
                s.shares[provider] = remaining

            if s.total_shares.is_zero():
                s.reserve_a, s.reserve_b = ZERO, ZERO
            return amount_a, amount_b
        finally:
            self._release_lock()

    # -- Internal -----------------------------------------------------------

    def _check_deposit_ratio(self, amount_a: FixedPointAmount, amount_b: FixedPointAmount) -> None:
        s = self.state
        # |a/b - rA/rB| / (rA/rB) <= tolerance, cross-multiplied to stay in integers
        lhs = checked_mul(amount_a.raw, s.reserve_b.raw)
        rhs = checked_mul(amount_b.raw, s.reserve_a.raw)
        deviation = abs(lhs - rhs)
        if checked_mul(deviation, BPS_DENOMINATOR) > checked_mul(rhs, s.imbalance_tolerance_bps):
            raise ImbalancedDeposit(
                f"Deposit ratio {amount_a}:{amount_b} deviates from reserves "
                f"{s.reserve_a}:{s.reserve_b} by more than {s.imbalance_tolerance_bps} bps"
            )


# ---------------------------------------------------------------------------
# Pool Manager
# ---------------------------------------------------------------------------

class PoolManager:
    """
    Manages all AMM pools.

    Handles:
      - Pool creation with canonical token ordering
      - Pool lookup by pair / id
      - Deterministic pool IDs
    """

    def __init__(self) -> None:
        self._pools: Dict[str, LiquidityPool] = {}
        self._pair_index: Dict[str, str] = {}  # "token_a:token_b" → pool_id
        self._pool_sequence: int = 0

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    def create_pool(
        self,
        token_a: str,
        token_b: str,
        fee_bps: int = DEFAULT_FEE_BPS,
        imbalance_tolerance_bps: int = DEFAULT_IMBALANCE_TOLERANCE_BPS,
    ) -> LiquidityPool:
        if not token_a or not token_b or token_a == token_b:
            raise ValueError("A pool needs two distinct tokens")
        if token_a > token_b:
            token_a, token_b = token_b, token_a

        pair_key = f"{token_a}:{token_b}"
        if pair_key in self._pair_index:
            raise ValueError(f"Pool already exists for {pair_key}")

        self._pool_sequence += 1
        pool_id = self._deterministic_pool_id(token_a, token_b, fee_bps, self._pool_sequence)
        pool = LiquidityPool(PoolState(
            id=pool_id,
            token_a=token_a,
            token_b=token_b,
            fee_bps=fee_bps,
            imbalance_tolerance_bps=imbalance_tolerance_bps,
        ))
        self.register(pool)
        logger.info("Pool %s created: %s/%s fee=%dbps", pool_id, token_a, token_b, fee_bps)
        return pool

    def register(self, pool: LiquidityPool) -> None:
        pair_key = f"{pool.state.token_a}:{pool.state.token_b}"
        if pair_key in self._pair_index and self._pair_index[pair_key] != pool.state.id:
            raise ValueError(f"Pool already exists for {pair_key}")
        self._pools[pool.state.id] = pool
        self._pair_index[pair_key] = pool.state.id
        self._pool_sequence = max(self._pool_sequence, len(self._pools))

    def unregister(self, pool_id: str) -> None:
        pool = self._pools.pop(pool_id, None)
        if pool is not None:
            self._pair_index.pop(f"{pool.state.token_a}:{pool.state.token_b}", None)

    def get_pool(self, pool_id: str) -> Optional[LiquidityPool]:
        return self._pools.get(pool_id)

    def get_pool_for_pair(self, token_a: str, token_b: str) -> Optional[LiquidityPool]:
        if token_a > token_b:
            token_a, token_b = token_b, token_a
        pool_id = self._pair_index.get(f"{token_a}:{token_b}")
        return self._pools.get(pool_id) if pool_id else None

    def get_all_pools(self) -> List[LiquidityPool]:
        return list(self._pools.values())

    @staticmethod
    def _deterministic_pool_id(token_a: str, token_b: str, fee_bps: int, seq: int) -> str:
        """Deterministic, address-shaped pool ID."""
        raw = f"{token_a}:{token_b}:{fee_bps}:{seq}".encode()
        return "0x" + hashlib.blake2b(raw, digest_size=20).hexdigest()
