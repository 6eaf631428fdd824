"""
DOMEX Fixed-Point Amounts

Exact token quantities as integers scaled by 10**18, mirroring the uint256
arithmetic of the on-chain contracts:
  - Every intermediate is bounded by MAX_UINT256
  - Overflow and underflow raise ArithmeticOverflow, never wrap
  - Division always floors (rounds toward the pool)
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, localcontext
from functools import total_ordering
from typing import Union

from ..constants import DECIMALS, MAX_UINT256, WAD
from ..exceptions import ArithmeticOverflow

__all__ = [
    "FixedPointAmount",
    "WAD",
    "MAX_UINT256",
    "checked_add",
    "checked_sub",
    "checked_mul",
    "mul_div",
    "isqrt",
]


# ---------------------------------------------------------------------------
# Checked integer helpers
# ---------------------------------------------------------------------------

def _bounded(value: int) -> int:
    if value < 0:
        raise ArithmeticOverflow(f"Arithmetic underflow: {value} < 0")
    if value > MAX_UINT256:
        raise ArithmeticOverflow("Arithmetic overflow: result exceeds 2**256 - 1")
    return value


def checked_add(a: int, b: int) -> int:
    return _bounded(a + b)


def checked_sub(a: int, b: int) -> int:
    return _bounded(a - b)


def checked_mul(a: int, b: int) -> int:
    return _bounded(a * b)


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with the product bounded like uint256."""
    if denominator == 0:
        raise ArithmeticOverflow("Division by zero")
    return _bounded(checked_mul(a, b) // denominator)


def isqrt(value: int) -> int:
    return math.isqrt(_bounded(value))


# ---------------------------------------------------------------------------
# FixedPointAmount
# ---------------------------------------------------------------------------

@total_ordering
class FixedPointAmount:
    """
    Non-negative token quantity with 18 decimal places.

    ``raw`` is the scaled integer; ``FixedPointAmount.from_units("1.5")``
    gives ``raw == 1_500_000_000_000_000_000``.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: int = 0):
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise TypeError(f"raw amount must be int, got {type(raw).__name__}")
        self._raw = _bounded(raw)

    # -- constructors -------------------------------------------------------

    @classmethod
    def zero(cls) -> FixedPointAmount:
        return cls(0)

    @classmethod
    def from_units(cls, value: Union[str, int, Decimal]) -> FixedPointAmount:
        """Exact conversion from a human-readable token amount."""
        if isinstance(value, FixedPointAmount):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(checked_mul(value, WAD))
        try:
            dec = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a decimal amount: {value!r}") from None
        if not dec.is_finite():
            raise ValueError(f"Not a finite amount: {value!r}")
        with localcontext() as ctx:
            ctx.prec = 100
            scaled = dec.scaleb(DECIMALS)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"More than {DECIMALS} fractional digits: {value!r}")
        return cls(int(scaled))

    # -- accessors ----------------------------------------------------------

    @property
    def raw(self) -> int:
        return self._raw

    def to_decimal(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = 100
            return Decimal(self._raw).scaleb(-DECIMALS).normalize()

    def is_zero(self) -> bool:
        return self._raw == 0

    # -- arithmetic ---------------------------------------------------------

    def __add__(self, other: FixedPointAmount) -> FixedPointAmount:
        if not isinstance(other, FixedPointAmount):
            return NotImplemented
        return FixedPointAmount(checked_add(self._raw, other._raw))

    def __sub__(self, other: FixedPointAmount) -> FixedPointAmount:
        if not isinstance(other, FixedPointAmount):
            return NotImplemented
        return FixedPointAmount(checked_sub(self._raw, other._raw))

    def abs_diff(self, other: FixedPointAmount) -> FixedPointAmount:
        return FixedPointAmount(abs(self._raw - other._raw))

    def mul_div(self, numerator: int, denominator: int) -> FixedPointAmount:
        """floor(self * numerator / denominator)."""
        return FixedPointAmount(mul_div(self._raw, numerator, denominator))

    # -- comparison / hashing -----------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FixedPointAmount):
            return NotImplemented
        return self._raw == other._raw

    def __lt__(self, other: FixedPointAmount) -> bool:
        if not isinstance(other, FixedPointAmount):
            return NotImplemented
        return self._raw < other._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __bool__(self) -> bool:
        return self._raw != 0

    def __str__(self) -> str:
        return format(self.to_decimal(), "f")

    def __repr__(self) -> str:
        return f"FixedPointAmount({self})"
