"""
Test suite for DOMEX fixed-point amounts.

Covers:
  - Exact unit conversion (18 decimals)
  - Checked arithmetic failing closed at 0 and 2**256 - 1
  - Floor division helpers
"""

from decimal import Decimal

import pytest

from domex.exceptions import ArithmeticOverflow
from domex.exchange.amounts import (
    FixedPointAmount,
    MAX_UINT256,
    WAD,
    checked_add,
    checked_mul,
    checked_sub,
    isqrt,
    mul_div,
)

U = FixedPointAmount.from_units


class TestConversion:

    def test_from_units_string(self):
        assert U("1.5").raw == 1_500_000_000_000_000_000

    def test_from_units_int(self):
        assert U(2).raw == 2 * WAD

    def test_from_units_smallest_unit(self):
        assert U(Decimal("1e-18")).raw == 1

    def test_too_many_fraction_digits(self):
        with pytest.raises(ValueError, match="fractional"):
            U("0.0000000000000000001")

    def test_not_a_number(self):
        with pytest.raises(ValueError):
            U("abc")

    def test_infinite_rejected(self):
        with pytest.raises(ValueError):
            U("Infinity")

    def test_str_is_plain_decimal(self):
        assert str(U("1.5")) == "1.5"
        assert str(U(100)) == "100"
        assert str(FixedPointAmount.zero()) == "0"

    def test_to_decimal(self):
        assert U("123.456").to_decimal() == Decimal("123.456")

    def test_raw_must_be_int(self):
        with pytest.raises(TypeError):
            FixedPointAmount(1.5)
        with pytest.raises(TypeError):
            FixedPointAmount(True)


class TestCheckedArithmetic:

    def test_negative_raw_rejected(self):
        with pytest.raises(ArithmeticOverflow):
            FixedPointAmount(-1)

    def test_max_uint256_allowed(self):
        assert FixedPointAmount(MAX_UINT256).raw == MAX_UINT256

    def test_addition_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            FixedPointAmount(MAX_UINT256) + FixedPointAmount(1)

    def test_subtraction_underflow(self):
        with pytest.raises(ArithmeticOverflow):
            U(1) - U(2)

    def test_add_sub(self):
        assert U("1.25") + U("0.75") == U(2)
        assert U(5) - U("0.5") == U("4.5")

    def test_abs_diff(self):
        assert U(3).abs_diff(U(5)) == U(2)
        assert U(5).abs_diff(U(3)) == U(2)

    def test_checked_helpers(self):
        assert checked_add(1, 2) == 3
        assert checked_sub(5, 2) == 3
        with pytest.raises(ArithmeticOverflow):
            checked_sub(2, 5)
        with pytest.raises(ArithmeticOverflow):
            checked_mul(MAX_UINT256, 2)

    def test_mul_div_floors(self):
        assert mul_div(10, 3, 4) == 7
        assert U(10).mul_div(1, 3).raw == 10 * WAD // 3

    def test_mul_div_by_zero(self):
        with pytest.raises(ArithmeticOverflow):
            mul_div(1, 1, 0)

    def test_mul_div_intermediate_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            mul_div(MAX_UINT256, 2, 2)

    def test_isqrt(self):
        assert isqrt(16) == 4
        assert isqrt(17) == 4


class TestOrdering:

    def test_comparisons(self):
        assert U(1) < U(2)
        assert U(2) >= U(2)
        assert min(U(3), U(1), U(2)) == U(1)

    def test_hash_and_bool(self):
        assert len({U(1), U("1.0"), U(2)}) == 2
        assert not FixedPointAmount.zero()
        assert U("0.1")

    def test_not_equal_to_int(self):
        assert U(1) != WAD
