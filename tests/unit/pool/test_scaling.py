"""Tests for scaling and swap fee helpers.

This module tests:
- Scaling factors from decimals and rates
- Decimal scaling (scale_up, scale_down_down, scale_down_up)
- Fee application (subtract_swap_fee_amount, add_swap_fee_amount)
"""

import pytest

from stablepool.errors import InvalidFeeError, InvalidScalingFactorError
from stablepool.math.fixed_point import ONE_18, Bfp
from stablepool.pool.scaling import (
    add_swap_fee_amount,
    compute_scaling_factor,
    scale_down_down,
    scale_down_up,
    scale_up,
    scale_up_array,
    subtract_swap_fee_amount,
)

FEE_03 = Bfp(3 * 10**15)  # 0.3%


class TestScalingFactor:
    """Tests for compute_scaling_factor."""

    def test_18_decimals(self) -> None:
        """18-decimal tokens scale by one."""
        assert compute_scaling_factor(18).value == ONE_18

    def test_6_decimals(self) -> None:
        """6-decimal tokens scale by 10^12."""
        assert compute_scaling_factor(6).value == 10**12 * ONE_18

    def test_rate_multiplies_factor(self) -> None:
        """A 1.2 rate makes each unit worth 1.2 pool units."""
        rate = 12 * 10**17
        assert compute_scaling_factor(18, rate).value == rate
        assert compute_scaling_factor(6, rate).value == 10**12 * rate

    def test_too_many_decimals_raises(self) -> None:
        """Tokens above 18 decimals are unsupported."""
        with pytest.raises(InvalidScalingFactorError):
            compute_scaling_factor(19)

    def test_non_positive_rate_raises(self) -> None:
        """Rates must be positive."""
        with pytest.raises(InvalidScalingFactorError):
            compute_scaling_factor(18, 0)


class TestScaling:
    """Tests for decimal scaling helpers."""

    def test_scale_up_6_decimals(self) -> None:
        """1 USDC becomes 1e18 pool units."""
        result = scale_up(10**6, compute_scaling_factor(6))
        assert result.value == ONE_18

    def test_scale_up_with_rate_rounds_down(self) -> None:
        """Rate scaling truncates."""
        factor = compute_scaling_factor(18, ONE_18 // 3)
        assert scale_up(10, factor).value == 3

    def test_scale_up_array(self) -> None:
        """Each amount uses its own factor."""
        factors = [compute_scaling_factor(18), compute_scaling_factor(6)]
        result = scale_up_array([ONE_18, 10**6], factors)
        assert [b.value for b in result] == [ONE_18, ONE_18]

    def test_scale_down_directions(self) -> None:
        """scale_down_down truncates, scale_down_up rounds up."""
        factor = compute_scaling_factor(6)
        amount = Bfp(ONE_18 + 1)
        assert scale_down_down(amount, factor) == 10**6
        assert scale_down_up(amount, factor) == 10**6 + 1

    def test_scale_down_up_exact(self) -> None:
        """Exact amounts are not bumped."""
        assert scale_down_up(Bfp(ONE_18), compute_scaling_factor(6)) == 10**6

    def test_zero_scaling_factor_raises(self) -> None:
        """A zero factor is rejected everywhere."""
        with pytest.raises(InvalidScalingFactorError):
            scale_up(1000, Bfp(0))
        with pytest.raises(InvalidScalingFactorError):
            scale_down_down(Bfp(1000), Bfp(0))
        with pytest.raises(InvalidScalingFactorError):
            scale_down_up(Bfp(1000), Bfp(0))


class TestFeeApplication:
    """Tests for fee subtraction and addition."""

    def test_subtract_fee_zero(self) -> None:
        """Zero fee returns original amount."""
        amount = Bfp(ONE_18)
        assert subtract_swap_fee_amount(amount, Bfp(0)) == amount

    def test_subtract_fee_0_3_percent(self) -> None:
        """0.3% fee subtraction rounds the fee up."""
        result = subtract_swap_fee_amount(Bfp(ONE_18), FEE_03)
        assert result.value == 997 * 10**15

    def test_add_fee_0_3_percent(self) -> None:
        """Adding the fee inverts subtracting it, rounding up."""
        result = add_swap_fee_amount(Bfp(997 * 10**15), FEE_03)
        assert ONE_18 <= result.value <= ONE_18 + 2

    def test_fee_out_of_range_raises(self) -> None:
        """Fees outside [0, 1) raise InvalidFeeError."""
        for fee in (Bfp(-1), Bfp(ONE_18), Bfp(2 * ONE_18)):
            with pytest.raises(InvalidFeeError):
                subtract_swap_fee_amount(Bfp(ONE_18), fee)
            with pytest.raises(InvalidFeeError):
                add_swap_fee_amount(Bfp(ONE_18), fee)
