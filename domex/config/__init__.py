"""
DOMEX Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    DomexConfig,
    PoolSectionConfig,
    RateLimiterConfig,
    CircuitBreakerConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "DomexConfig",
    "PoolSectionConfig",
    "RateLimiterConfig",
    "CircuitBreakerConfig",
    "LoggingConfig",
    "load_config",
]
