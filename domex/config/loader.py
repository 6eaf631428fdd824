"""
DOMEX TOML Configuration Loader

Loads every section of config.toml with environment variable overrides
(dataclass + from_dict + from_file).

Environment variable mapping:
    [pool] fee_bps                      → DOMEX_POOL_FEE_BPS
    [pool] imbalance_tolerance_bps      → DOMEX_POOL_IMBALANCE_TOLERANCE_BPS
    [rate_limiter] threshold            → DOMEX_RATE_LIMIT_THRESHOLD
    [rate_limiter] window_duration      → DOMEX_RATE_LIMIT_WINDOW
    [rate_limiter] cooldown_period      → DOMEX_RATE_LIMIT_COOLDOWN
    [circuit_breaker] admins            → DOMEX_ADMINS (comma separated)
    [circuit_breaker] protected_contracts → DOMEX_PROTECTED_CONTRACTS
    [circuit_breaker] start_operational → DOMEX_START_OPERATIONAL
    [logging] level / file              → DOMEX_LOG_LEVEL / DOMEX_LOG_FILE
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    try:
        import tomli  # type: ignore[no-redef]
    except ImportError:
        tomli = None  # type: ignore[assignment]

from ..constants import (
    BPS_DENOMINATOR,
    DEFAULT_FEE_BPS,
    DEFAULT_IMBALANCE_TOLERANCE_BPS,
    DEFAULT_RATE_LIMIT_COOLDOWN,
    DEFAULT_RATE_LIMIT_THRESHOLD,
    DEFAULT_RATE_LIMIT_WINDOW,
    WAD,
    parse_bool,
)
from ..exceptions import ConfigurationError
from ..exchange.amounts import FixedPointAmount

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of config.example.toml
# ---------------------------------------------------------------------------

@dataclass
class PoolSectionConfig:
    """[pool] section."""
    fee_bps: int = DEFAULT_FEE_BPS
    imbalance_tolerance_bps: int = DEFAULT_IMBALANCE_TOLERANCE_BPS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolSectionConfig":
        return cls(
            fee_bps=data.get("fee_bps", DEFAULT_FEE_BPS),
            imbalance_tolerance_bps=data.get(
                "imbalance_tolerance_bps", DEFAULT_IMBALANCE_TOLERANCE_BPS
            ),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DOMEX_POOL_FEE_BPS"):
            self.fee_bps = int(v)
        if v := os.environ.get("DOMEX_POOL_IMBALANCE_TOLERANCE_BPS"):
            self.imbalance_tolerance_bps = int(v)


@dataclass
class RateLimiterConfig:
    """[rate_limiter] section. ``threshold`` is in whole token units."""
    threshold: str = str(DEFAULT_RATE_LIMIT_THRESHOLD // WAD)
    window_duration: int = DEFAULT_RATE_LIMIT_WINDOW
    cooldown_period: int = DEFAULT_RATE_LIMIT_COOLDOWN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimiterConfig":
        return cls(
            threshold=str(data.get("threshold", DEFAULT_RATE_LIMIT_THRESHOLD // WAD)),
            window_duration=data.get("window_duration", DEFAULT_RATE_LIMIT_WINDOW),
            cooldown_period=data.get("cooldown_period", DEFAULT_RATE_LIMIT_COOLDOWN),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DOMEX_RATE_LIMIT_THRESHOLD"):
            self.threshold = v
        if v := os.environ.get("DOMEX_RATE_LIMIT_WINDOW"):
            self.window_duration = int(v)
        if v := os.environ.get("DOMEX_RATE_LIMIT_COOLDOWN"):
            self.cooldown_period = int(v)

    @property
    def threshold_amount(self) -> FixedPointAmount:
        return FixedPointAmount.from_units(Decimal(self.threshold))


@dataclass
class CircuitBreakerConfig:
    """[circuit_breaker] section."""
    admins: List[str] = field(default_factory=list)
    protected_contracts: List[str] = field(default_factory=list)
    start_operational: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CircuitBreakerConfig":
        return cls(
            admins=list(data.get("admins", [])),
            protected_contracts=list(data.get("protected_contracts", [])),
            start_operational=data.get("start_operational", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DOMEX_ADMINS"):
            self.admins = _split_list(v)
        if v := os.environ.get("DOMEX_PROTECTED_CONTRACTS"):
            self.protected_contracts = _split_list(v)
        if v := os.environ.get("DOMEX_START_OPERATIONAL"):
            self.start_operational = parse_bool(v) is True


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"
    file: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=data.get("level", "INFO"),
            file=data.get("file", ""),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("DOMEX_LOG_LEVEL"):
            self.level = v
        if v := os.environ.get("DOMEX_LOG_FILE"):
            self.file = v


# -----------------------------------------------------------------------
# Top-level config
# -----------------------------------------------------------------------

@dataclass
class DomexConfig:
    """
    Exchange core configuration.

    Loads every section of config.toml and applies environment variable
    overrides.
    """
    pool: PoolSectionConfig = field(default_factory=PoolSectionConfig)
    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomexConfig":
        """Create DomexConfig from a parsed TOML dict."""
        return cls(
            pool=PoolSectionConfig.from_dict(data.get("pool", {})),
            rate_limiter=RateLimiterConfig.from_dict(data.get("rate_limiter", {})),
            circuit_breaker=CircuitBreakerConfig.from_dict(data.get("circuit_breaker", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "DomexConfig":
        """
        Load configuration from a TOML file.

        A missing file yields defaults (with env overrides).
        """
        if tomli is None:
            raise ImportError(
                "tomli is required for TOML config loading on Python < 3.11. "
                "Install it: pip install tomli"
            )

        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        try:
            self.pool.apply_env()
            self.rate_limiter.apply_env()
            self.circuit_breaker.apply_env()
            self.logging.apply_env()
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment override: {e}") from e

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if not 0 <= self.pool.fee_bps < BPS_DENOMINATOR:
            raise ConfigurationError(f"fee_bps must be in [0, {BPS_DENOMINATOR}): {self.pool.fee_bps}")
        if not 0 <= self.pool.imbalance_tolerance_bps <= BPS_DENOMINATOR:
            raise ConfigurationError(
                f"imbalance_tolerance_bps must be in [0, {BPS_DENOMINATOR}]: "
                f"{self.pool.imbalance_tolerance_bps}"
            )
        try:
            threshold = self.rate_limiter.threshold_amount
        except (ArithmeticError, ValueError) as e:
            raise ConfigurationError(f"Invalid rate limit threshold: {self.rate_limiter.threshold}") from e
        if threshold.is_zero():
            raise ConfigurationError("Rate limit threshold must be positive")
        if self.rate_limiter.window_duration <= 0:
            raise ConfigurationError("window_duration must be positive")
        if self.rate_limiter.cooldown_period < 0:
            raise ConfigurationError("cooldown_period must be non-negative")
        if self.logging.level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics)."""
        return {
            "pool": {
                "fee_bps": self.pool.fee_bps,
                "imbalance_tolerance_bps": self.pool.imbalance_tolerance_bps,
            },
            "rate_limiter": {
                "threshold": self.rate_limiter.threshold,
                "window_duration": self.rate_limiter.window_duration,
                "cooldown_period": self.rate_limiter.cooldown_period,
            },
            "circuit_breaker": {
                "admins": list(self.circuit_breaker.admins),
                "protected_contracts": list(self.circuit_breaker.protected_contracts),
                "start_operational": self.circuit_breaker.start_operational,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> DomexConfig:
    """
    Load exchange configuration.

    Resolution order:
        1. Explicit *path* argument
        2. DOMEX_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("DOMEX_CONFIG", "config.toml")

    return DomexConfig.from_file(path)
