"""Tests for Bfp fixed-point arithmetic.

Verifies rounding direction of every operation and the safety guards on
complement(), sub() and from_decimal().
"""

from decimal import Decimal

import pytest

from stablepool.math.fixed_point import ONE_18, Bfp, pow_raw


class TestBfpRounding:
    """Each operation rounds in the documented direction."""

    def test_mul_down_truncates(self):
        """1/3 * 1/3 rounds down."""
        third = Bfp(ONE_18 // 3)
        assert third.mul_down(third).value == (third.value * third.value) // ONE_18

    def test_mul_up_rounds_up(self):
        """mul_up exceeds mul_down by one on inexact products."""
        third = Bfp(ONE_18 // 3)
        assert third.mul_up(third).value == third.mul_down(third).value + 1

    def test_mul_up_exact(self):
        """Exact products are not bumped."""
        assert Bfp.from_int(2).mul_up(Bfp.from_int(3)) == Bfp.from_int(6)

    def test_mul_up_zero(self):
        """Zero product stays zero."""
        assert Bfp(0).mul_up(Bfp.from_int(5)).value == 0

    def test_div_down_and_up(self):
        """1 / 3 rounds down and up by one unit."""
        one = Bfp.one()
        three = Bfp.from_int(3)
        assert one.div_down(three).value == ONE_18 // 3
        assert one.div_up(three).value == ONE_18 // 3 + 1

    def test_div_by_zero_raises(self):
        """Division by zero raises ZeroDivisionError in both directions."""
        with pytest.raises(ZeroDivisionError):
            Bfp.one().div_down(Bfp(0))
        with pytest.raises(ZeroDivisionError):
            Bfp.one().div_up(Bfp(0))


class TestBfpComplement:
    """complement() underflow guard."""

    def test_complement_of_zero(self):
        """complement(0) = 1."""
        assert Bfp(0).complement() == Bfp.one()

    def test_complement_of_one(self):
        """complement(1) = 0."""
        assert Bfp.one().complement() == Bfp(0)

    def test_complement_greater_than_one_clamps_to_zero(self):
        """complement(1.5) clamps to 0 instead of going negative."""
        assert Bfp(ONE_18 * 3 // 2).complement().value == 0


class TestBfpSub:
    """sub() negative guard."""

    def test_normal_subtraction(self):
        """5 - 3 = 2."""
        assert Bfp.from_int(5).sub(Bfp.from_int(3)) == Bfp.from_int(2)

    def test_subtract_larger_clamps_to_zero(self):
        """3 - 5 clamps to 0."""
        assert Bfp.from_int(3).sub(Bfp.from_int(5)).value == 0


class TestBfpFromDecimal:
    """from_decimal() conversion."""

    def test_positive_decimal(self):
        """1.5 is stored as 1.5e18."""
        assert Bfp.from_decimal(Decimal("1.5")).value == ONE_18 * 3 // 2

    def test_fee_percentage(self):
        """0.1% converts exactly."""
        assert Bfp.from_decimal(Decimal("0.001")).value == 10**15

    def test_negative_decimal_raises(self):
        """Negative input is rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            Bfp.from_decimal(Decimal("-0.5"))

    def test_round_trip_to_decimal(self):
        """to_decimal() inverts from_decimal()."""
        assert Bfp.from_decimal(Decimal("0.25")).to_decimal() == Decimal("0.25")


class TestBfpPow:
    """pow_down / pow_up bracket the exact power."""

    def test_exponent_one_is_identity(self):
        """x^1 = x exactly in both directions."""
        x = Bfp.from_decimal(Decimal("1.2"))
        assert x.pow_down(Bfp.one()) == x
        assert x.pow_up(Bfp.one()) == x

    def test_exponent_two_uses_multiplication(self):
        """x^2 equals mul_down / mul_up."""
        x = Bfp.from_decimal(Decimal("1.1"))
        two = Bfp.from_int(2)
        assert x.pow_down(two) == x.mul_down(x)
        assert x.pow_up(two) == x.mul_up(x)

    def test_fractional_exponent_brackets(self):
        """pow_down <= exact <= pow_up for a square root."""
        x = Bfp.from_int(4)
        half = Bfp.from_decimal(Decimal("0.5"))
        assert x.pow_down(half).value <= 2 * ONE_18 <= x.pow_up(half).value

    def test_fractional_exponent_error_is_tiny(self):
        """The error margin stays within 1e-13 relative."""
        x = Bfp.from_decimal(Decimal("1.2"))
        third = Bfp(ONE_18 // 3)
        spread = x.pow_up(third).value - x.pow_down(third).value
        assert spread < ONE_18 // 10**13

    def test_pow_raw_zero_exponent(self):
        """x^0 = 1."""
        assert pow_raw(5 * ONE_18, 0) == ONE_18

    def test_pow_raw_negative_raises(self):
        """Negative operands are rejected."""
        with pytest.raises(ValueError):
            pow_raw(-1, ONE_18)
