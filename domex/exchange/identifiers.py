"""
Identifier resolution

Maps a logical actor and the pool it touches to the string a RateLimiter
is keyed by. Two strategies ship with the core:
  - PoolIdentifierResolver: the pool address itself is the protected
    contract, so all callers share one limiter per pool
  - CallerIdentifierResolver: one limiter per (operation, caller), derived
    the way the DEX contracts hash ``("DEX_SWAP", address)``
"""

from __future__ import annotations

import hashlib
from typing import Protocol

from .amm import PoolState
from .circuit_breaker import OperationKind


def normalize_address(address: str) -> str:
    """Strip whitespace and lower-case hex addresses."""
    if not isinstance(address, str) or not address.strip():
        raise ValueError("Address must be a non-empty string")
    address = address.strip()
    if address[:2] in ("0x", "0X"):
        return "0x" + address[2:].lower()
    return address


def derive_identifier(label: str, address: str) -> str:
    """Deterministic 32-byte identifier for ``label`` scoped to ``address``."""
    raw = f"{label}:{normalize_address(address)}".encode()
    return "0x" + hashlib.blake2b(raw, digest_size=32).hexdigest()


class IdentifierResolver(Protocol):

    def resolve(self, kind: OperationKind, pool: PoolState, caller: str) -> str:
        ...


class PoolIdentifierResolver:

    def resolve(self, kind: OperationKind, pool: PoolState, caller: str) -> str:
        return pool.id


class CallerIdentifierResolver:

    def __init__(self, prefix: str = "DEX"):
        self.prefix = prefix

    def resolve(self, kind: OperationKind, pool: PoolState, caller: str) -> str:
        return derive_identifier(f"{self.prefix}_{kind.name}", caller)
