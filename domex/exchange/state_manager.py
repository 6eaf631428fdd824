"""
DOMEX Exchange State Manager

Central entry point that pairs every pool mutation with its circuit-breaker
check. The surrounding service (UI backend, simulator, test harness) talks
to this class rather than to pools or the breaker directly.

Responsibilities:
  - Owns the PoolManager and the single CircuitBreaker
  - Runs quote -> guard -> mutate as one critical section per pool
  - Dispatches serialized operations (``process_operation``)
  - Computes a deterministic state root
  - Exports / imports state for persistence backends
  - Hands out admin capabilities to configured admin addresses

Security:
  - A failed mutation rolls back the guard's recorded delta and the pool
  - Timestamps come from the injected Clock only
  - Admin operations require a capability minted by the breaker
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, TypeVar

from ..constants import (
    DEFAULT_FEE_BPS,
    DEFAULT_GRACE_PERIOD,
    DEFAULT_IMBALANCE_TOLERANCE_BPS,
    parse_bool,
)
from ..exceptions import DomexError, PoolNotFound, Unauthorized
from ..logger import configure_logging
from .amm import LiquidityPool, PoolManager, PoolState, SwapQuote, SwapResult
from .amounts import FixedPointAmount
from .circuit_breaker import AdminCapability, CircuitBreaker, OperationKind
from .clock import Clock, SystemClock
from .identifiers import IdentifierResolver, PoolIdentifierResolver, normalize_address
from .rate_limiter import Delta
from .store import SQLiteStateStore, StateStore

logger = logging.getLogger(__name__)

ZERO = FixedPointAmount.zero()

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Operations and results
# ---------------------------------------------------------------------------

class ExchangeOpType(str, Enum):
    CREATE_POOL = "create_pool"
    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    QUOTE = "quote"
    SET_OPERATIONAL_STATUS = "set_operational_status"
    START_GRACE_PERIOD = "start_grace_period"
    END_GRACE_PERIOD = "end_grace_period"
    ADD_PROTECTED_CONTRACTS = "add_protected_contracts"
    REMOVE_PROTECTED_CONTRACTS = "remove_protected_contracts"
    OVERRIDE_RATE_LIMIT = "override_rate_limit"
    REVOKE_RATE_LIMIT_OVERRIDE = "revoke_rate_limit_override"


@dataclass
class ExchangeOperation:
    """
    A serialized request. Amounts in ``params`` are decimal strings in
    token units (``"1.5"``), exactly as a UI form would submit them.
    """
    op_type: ExchangeOpType
    caller: str
    params: Dict[str, Any] = field(default_factory=dict)


class ExchangeExecResult:
    """Result of executing a single exchange operation."""

    __slots__ = ("success", "data", "error", "error_type", "recoverable", "retry_after")

    def __init__(
        self,
        success: bool = True,
        data: Optional[Dict[str, Any]] = None,
        error: str = "",
        error_type: str = "",
        recoverable: bool = False,
        retry_after: Optional[int] = None,
    ):
        self.success = success
        self.data = data or {}
        self.error = error
        self.error_type = error_type
        self.recoverable = recoverable
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__slots__}


def _amount(params: Dict[str, Any], key: str, default: Optional[str] = None) -> FixedPointAmount:
    value = params.get(key, default)
    if value is None:
        raise KeyError(key)
    text = str(value).strip()
    if text.startswith("-"):
        raise ValueError(f"{key} must not be negative: {value!r}")
    return FixedPointAmount.from_units(text)


def _flag(params: Dict[str, Any], key: str, default: Optional[bool] = None) -> bool:
    value = parse_bool(params.get(key, default))
    if value is None:
        raise KeyError(key)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false: {value!r}")
    return value


# ---------------------------------------------------------------------------
# Exchange State Manager
# ---------------------------------------------------------------------------

class ExchangeStateManager:
    """
    Singleton-capable coordinator of pools and the circuit breaker.

    Usage:

        mgr = ExchangeStateManager.from_config(load_config())
        pool = mgr.create_pool("0xaaa...", "0xbbb...")
        mgr.add_liquidity(pool.state.id, provider, amount_a, amount_b)
        mgr.swap(pool.state.id, trader, amount_in)
    """

    instance: Optional[ExchangeStateManager] = None

    def __init__(
        self,
        clock: Optional[Clock] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        resolver: Optional[IdentifierResolver] = None,
        admins: Iterable[str] = (),
        default_fee_bps: int = DEFAULT_FEE_BPS,
        default_imbalance_tolerance_bps: int = DEFAULT_IMBALANCE_TOLERANCE_BPS,
    ) -> None:
        self.clock: Clock = clock or SystemClock()
        self.pool_manager = PoolManager()
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.resolver: IdentifierResolver = resolver or PoolIdentifierResolver()
        self.default_fee_bps = default_fee_bps
        self.default_imbalance_tolerance_bps = default_imbalance_tolerance_bps

        self._admins = {normalize_address(a) for a in admins}
        self._pool_locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.RLock()
        self._stats_lock = threading.Lock()

        # --- Counters ---
        self._total_swaps: int = 0
        self._total_deposits: int = 0
        self._total_withdrawals: int = 0
        self._total_rejections: int = 0

    @classmethod
    def get_instance(cls) -> ExchangeStateManager:
        """Get or create the singleton instance."""
        if cls.instance is None:
            cls.instance = cls()
            logger.info("Exchange state manager initialized")
        return cls.instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton (for testing)."""
        cls.instance = None

    @classmethod
    def from_config(cls, config, clock: Optional[Clock] = None) -> ExchangeStateManager:
        """Build a manager from a validated ``DomexConfig`` and apply its [logging] section."""
        config.validate()
        configure_logging(
            config.logging.level.upper(),
            Path(config.logging.file) if config.logging.file else None,
        )
        breaker = CircuitBreaker(
            default_threshold=config.rate_limiter.threshold_amount,
            default_window=config.rate_limiter.window_duration,
            default_cooldown=config.rate_limiter.cooldown_period,
            operational=config.circuit_breaker.start_operational,
        )
        manager = cls(
            clock=clock,
            circuit_breaker=breaker,
            admins=config.circuit_breaker.admins,
            default_fee_bps=config.pool.fee_bps,
            default_imbalance_tolerance_bps=config.pool.imbalance_tolerance_bps,
        )
        if config.circuit_breaker.protected_contracts:
            breaker.add_protected_contracts(
                breaker.grant_admin_capability(),
                [normalize_address(c) for c in config.circuit_breaker.protected_contracts],
            )
        return manager

    # =====================================================================
    #  Authorization
    # =====================================================================

    def authorize_admin(self, caller: str) -> AdminCapability:
        """Capability for ``caller`` if it is a configured admin."""
        if normalize_address(caller) not in self._admins:
            logger.warning("Unauthorized admin attempt by %s", caller)
            raise Unauthorized(f"{caller} is not an admin")
        return self.circuit_breaker.grant_admin_capability()

    def is_admin(self, caller: str) -> bool:
        return normalize_address(caller) in self._admins

    # =====================================================================
    #  Pools
    # =====================================================================

    def create_pool(
        self,
        token_a: str,
        token_b: str,
        fee_bps: Optional[int] = None,
        imbalance_tolerance_bps: Optional[int] = None,
    ) -> LiquidityPool:
        with self._registry_lock:
            pool = self.pool_manager.create_pool(
                normalize_address(token_a),
                normalize_address(token_b),
                self.default_fee_bps if fee_bps is None else fee_bps,
                self.default_imbalance_tolerance_bps
                if imbalance_tolerance_bps is None else imbalance_tolerance_bps,
            )
            self._pool_locks[pool.state.id] = threading.RLock()
            return pool

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def get_pool(self, pool_id: str) -> Optional[LiquidityPool]:
        return self.pool_manager.get_pool(pool_id)

    def _require_pool(self, pool_id: str) -> Tuple[LiquidityPool, threading.RLock]:
        with self._registry_lock:
            pool = self.pool_manager.get_pool(pool_id)
            if pool is None:
                raise PoolNotFound(f"Pool not found: {pool_id}")
            lock = self._pool_locks.setdefault(pool_id, threading.RLock())
            return pool, lock

    # =====================================================================
    #  Guarded mutations
    # =====================================================================

    def _guarded(
        self,
        pool: LiquidityPool,
        kind: OperationKind,
        caller: str,
        delta: Delta,
        now: int,
        mutate: Callable[[], T],
    ) -> T:
        """guard -> mutate; both take effect or neither does. Caller holds the pool lock."""
        identifier = self.resolver.resolve(kind, pool.state, caller)
        receipt = self.circuit_breaker.guard(kind, identifier, delta, now)
        snapshot = pool.snapshot()
        try:
            return mutate()
        except Exception:
            pool.restore(snapshot)
            self.circuit_breaker.rollback(receipt)
            raise

    def quote_swap(self, pool_id: str, amount_in: FixedPointAmount, a_to_b: bool = True) -> SwapQuote:
        pool, lock = self._require_pool(pool_id)
        with lock:
            return pool.quote_swap(amount_in, a_to_b)

    def swap(
        self,
        pool_id: str,
        caller: str,
        amount_in: FixedPointAmount,
        a_to_b: bool = True,
        min_amount_out: FixedPointAmount = ZERO,
    ) -> SwapResult:
        pool, lock = self._require_pool(pool_id)
        with lock:
            now = self.clock.now()
            # Paused or grace-period rejections take precedence over pricing errors
            self.circuit_breaker.precheck(OperationKind.SWAP, now)
            quote = pool.quote_swap(amount_in, a_to_b)
            # Tracked delta is always measured in token A
            delta = amount_in if a_to_b else quote.amount_out
            result = self._guarded(
                pool, OperationKind.SWAP, caller, delta, now,
                lambda: pool.swap(amount_in, a_to_b, min_amount_out),
            )
        self._count("_total_swaps")
        logger.debug("Swap on %s by %s: %s in, %s out", pool_id, caller,
                     result.amount_in, result.amount_out)
        return result

    def add_liquidity(
        self,
        pool_id: str,
        provider: str,
        amount_a: FixedPointAmount,
        amount_b: FixedPointAmount,
    ) -> FixedPointAmount:
        pool, lock = self._require_pool(pool_id)
        with lock:
            minted = self._guarded(
                pool, OperationKind.DEPOSIT, provider, amount_a, self.clock.now(),
                lambda: pool.add_liquidity(provider, amount_a, amount_b),
            )
        self._count("_total_deposits")
        logger.debug("Deposit on %s by %s minted %s shares", pool_id, provider, minted)
        return minted

    def remove_liquidity(
        self,
        pool_id: str,
        provider: str,
        shares: FixedPointAmount,
    ) -> Tuple[FixedPointAmount, FixedPointAmount]:
        pool, lock = self._require_pool(pool_id)
        with lock:
            now = self.clock.now()
            self.circuit_breaker.precheck(OperationKind.WITHDRAW, now)
            amount_a, _ = pool.preview_remove_liquidity(shares)
            amounts = self._guarded(
                pool, OperationKind.WITHDRAW, provider, amount_a, now,
                lambda: pool.remove_liquidity(provider, shares),
            )
        self._count("_total_withdrawals")
        logger.debug("Withdrawal on %s by %s: %s / %s", pool_id, provider, *amounts)
        return amounts

    # =====================================================================
    #  Operation dispatch
    # =====================================================================

    def process_operation(self, op: ExchangeOperation) -> ExchangeExecResult:
        """
        Execute one serialized operation and capture its outcome.

        Recoverable rejections (rate limit, grace period) are logged at
        WARNING, every other error at ERROR. Nothing is retried here.
        """
        handlers: Dict[ExchangeOpType, Callable[[ExchangeOperation], Dict[str, Any]]] = {
            ExchangeOpType.CREATE_POOL: self._op_create_pool,
            ExchangeOpType.SWAP: self._op_swap,
            ExchangeOpType.ADD_LIQUIDITY: self._op_add_liquidity,
            ExchangeOpType.REMOVE_LIQUIDITY: self._op_remove_liquidity,
            ExchangeOpType.QUOTE: self._op_quote,
            ExchangeOpType.SET_OPERATIONAL_STATUS: self._op_set_operational_status,
            ExchangeOpType.START_GRACE_PERIOD: self._op_start_grace_period,
            ExchangeOpType.END_GRACE_PERIOD: self._op_end_grace_period,
            ExchangeOpType.ADD_PROTECTED_CONTRACTS: self._op_add_protected,
            ExchangeOpType.REMOVE_PROTECTED_CONTRACTS: self._op_remove_protected,
            ExchangeOpType.OVERRIDE_RATE_LIMIT: self._op_override_rate_limit,
            ExchangeOpType.REVOKE_RATE_LIMIT_OVERRIDE: self._op_revoke_override,
        }
        try:
            op_type = ExchangeOpType(op.op_type)
        except ValueError:
            return ExchangeExecResult(
                success=False, error=f"Unknown op type: {op.op_type}", error_type="ValueError",
            )
        handler = handlers[op_type]

        try:
            data = handler(op)
        except DomexError as e:
            self._count("_total_rejections")
            if e.recoverable:
                logger.warning("%s by %s rejected: %s", op_type.value, op.caller, e)
            else:
                logger.error("%s by %s failed: %s", op_type.value, op.caller, e)
            return ExchangeExecResult(
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                recoverable=e.recoverable,
                retry_after=e.retry_after,
            )
        except (KeyError, ValueError, TypeError) as e:
            self._count("_total_rejections")
            logger.error("Invalid %s request from %s: %r", op_type.value, op.caller, e)
            return ExchangeExecResult(success=False, error=str(e), error_type=type(e).__name__)

        return ExchangeExecResult(success=True, data=data)

    # =====================================================================
    #  Operation handlers
    # =====================================================================

    def _op_create_pool(self, op: ExchangeOperation) -> Dict[str, Any]:
        p = op.params
        fee = p.get("fee_bps")
        tolerance = p.get("imbalance_tolerance_bps")
        pool = self.create_pool(
            p["token_a"], p["token_b"],
            None if fee is None else int(fee),
            None if tolerance is None else int(tolerance),
        )
        return {"pool_id": pool.state.id, "token_a": pool.state.token_a, "token_b": pool.state.token_b}

    def _op_swap(self, op: ExchangeOperation) -> Dict[str, Any]:
        p = op.params
        result = self.swap(
            p["pool_id"], op.caller,
            _amount(p, "amount_in"),
            a_to_b=_flag(p, "a_to_b", True),
            min_amount_out=_amount(p, "min_amount_out", "0"),
        )
        return {
            "amount_in": str(result.amount_in),
            "amount_out": str(result.amount_out),
            "fee": str(result.fee),
            "reserve_a": str(result.reserve_a),
            "reserve_b": str(result.reserve_b),
        }

    def _op_add_liquidity(self, op: ExchangeOperation) -> Dict[str, Any]:
        p = op.params
        minted = self.add_liquidity(
            p["pool_id"], op.caller, _amount(p, "amount_a"), _amount(p, "amount_b"),
        )
        return {"shares": str(minted)}

    def _op_remove_liquidity(self, op: ExchangeOperation) -> Dict[str, Any]:
        p = op.params
        amount_a, amount_b = self.remove_liquidity(p["pool_id"], op.caller, _amount(p, "shares"))
        return {"amount_a": str(amount_a), "amount_b": str(amount_b)}

    def _op_quote(self, op: ExchangeOperation) -> Dict[str, Any]:
        p = op.params
        quote = self.quote_swap(p["pool_id"], _amount(p, "amount_in"), _flag(p, "a_to_b", True))
        return {
            "amount_out": str(quote.amount_out),
            "fee": str(quote.fee),
            "spot_price": str(quote.spot_price),
            "execution_price": str(quote.execution_price),
            "price_impact_bps": quote.price_impact_bps,
        }

    def _op_set_operational_status(self, op: ExchangeOperation) -> Dict[str, Any]:
        operational = _flag(op.params, "operational")
        self.circuit_breaker.set_operational_status(self.authorize_admin(op.caller), operational)
        return {"operational": operational}

    def _op_start_grace_period(self, op: ExchangeOperation) -> Dict[str, Any]:
        now = self.clock.now()
        end = int(op.params.get("end_timestamp", now + DEFAULT_GRACE_PERIOD))
        self.circuit_breaker.start_grace_period(self.authorize_admin(op.caller), end, now)
        return {"grace_period_end": end}

    def _op_end_grace_period(self, op: ExchangeOperation) -> Dict[str, Any]:
        self.circuit_breaker.end_grace_period(self.authorize_admin(op.caller))
        return {"grace_period_end": None}

    def _op_add_protected(self, op: ExchangeOperation) -> Dict[str, Any]:
        identifiers = [normalize_address(i) for i in op.params["identifiers"]]
        self.circuit_breaker.add_protected_contracts(self.authorize_admin(op.caller), identifiers)
        return {"protected_contracts": self.circuit_breaker.protected_contracts}

    def _op_remove_protected(self, op: ExchangeOperation) -> Dict[str, Any]:
        identifiers = [normalize_address(i) for i in op.params["identifiers"]]
        self.circuit_breaker.remove_protected_contracts(self.authorize_admin(op.caller), identifiers)
        return {"protected_contracts": self.circuit_breaker.protected_contracts}

    def _op_override_rate_limit(self, op: ExchangeOperation) -> Dict[str, Any]:
        identifier = normalize_address(op.params["identifier"])
        self.circuit_breaker.override_rate_limit(self.authorize_admin(op.caller), identifier)
        return {"identifier": identifier, "overridden": True}

    def _op_revoke_override(self, op: ExchangeOperation) -> Dict[str, Any]:
        identifier = normalize_address(op.params["identifier"])
        self.circuit_breaker.revoke_rate_limit_override(self.authorize_admin(op.caller), identifier)
        return {"identifier": identifier, "overridden": False}

    # =====================================================================
    #  State root computation
    # =====================================================================

    def compute_state_root(self) -> str:
        """
        Deterministic hash of all pools and the breaker.

        Returns:
            64-char hex string (blake2b-256)
        """
        hasher = hashlib.blake2b(digest_size=32)

        with self._registry_lock:
            pools = sorted(self.pool_manager.get_all_pools(), key=lambda p: p.state.id)
        for pool in pools:
            pool_hash = hashlib.blake2b(
                json.dumps(pool.state.to_dict(), sort_keys=True).encode(),
                digest_size=16,
            ).digest()
            hasher.update(pool_hash)

        breaker_hash = hashlib.blake2b(
            json.dumps(self.circuit_breaker.to_dict(), sort_keys=True).encode(),
            digest_size=16,
        ).digest()
        hasher.update(breaker_hash)

        return hasher.hexdigest()

    # =====================================================================
    #  Export / import (persistence)
    # =====================================================================

    def export_state(self) -> Dict[str, Any]:
        with self._registry_lock:
            pools = {p.state.id: p.state.to_dict() for p in self.pool_manager.get_all_pools()}
        return {
            "pools": pools,
            "breaker": self.circuit_breaker.to_dict(),
            "stats": {
                "total_swaps": self._total_swaps,
                "total_deposits": self._total_deposits,
                "total_withdrawals": self._total_withdrawals,
                "total_rejections": self._total_rejections,
            },
        }

    def import_state(self, state: Dict[str, Any]) -> None:
        """Replace pools, breaker state and counters with ``state``."""
        manager = PoolManager()
        for data in state.get("pools", {}).values():
            manager.register(LiquidityPool(PoolState.from_dict(data)))

        with self._registry_lock:
            self.pool_manager = manager
            self._pool_locks = {p.state.id: threading.RLock() for p in manager.get_all_pools()}
            if "breaker" in state:
                self.circuit_breaker.load_dict(state["breaker"])
            stats = state.get("stats", {})
            self._total_swaps = int(stats.get("total_swaps", 0))
            self._total_deposits = int(stats.get("total_deposits", 0))
            self._total_withdrawals = int(stats.get("total_withdrawals", 0))
            self._total_rejections = int(stats.get("total_rejections", 0))
        logger.info("Exchange state imported: %d pools", manager.pool_count)

    def save(self, store: StateStore) -> bool:
        return store.save_state(self.export_state())

    def load(self, store: StateStore) -> bool:
        state = store.load_state()
        if state is None:
            return False
        self.import_state(state)
        return True

    async def async_save(self, store: SQLiteStateStore) -> bool:
        return await store.async_save(self.export_state())

    async def async_load(self, store: SQLiteStateStore) -> bool:
        state = await store.async_load()
        if state is None:
            return False
        self.import_state(state)
        return True

    # =====================================================================
    #  Query interface
    # =====================================================================

    @property
    def pool_count(self) -> int:
        return self.pool_manager.pool_count

    def get_stats(self) -> Dict[str, Any]:
        """Exchange-wide statistics."""
        now = self.clock.now()
        return {
            "pools": self.pool_count,
            "total_swaps": self._total_swaps,
            "total_deposits": self._total_deposits,
            "total_withdrawals": self._total_withdrawals,
            "total_rejections": self._total_rejections,
            "operational": self.circuit_breaker.is_operational,
            "rate_limited": self.circuit_breaker.is_rate_limited(now),
            "grace_period_active": self.circuit_breaker.is_grace_period_active(now),
            "protected_contracts": len(self.circuit_breaker.protected_contracts),
        }
