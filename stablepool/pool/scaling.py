"""Scaling and fee helpers.

Functions for scaling token amounts between native decimals and the pool's
18-decimal, rate-adjusted unit, and for applying swap fees.

Scaling factors are 18-decimal fixed-point values: 10^(18 - decimals)
multiplied by the token's current rate.
"""

from stablepool.errors import InvalidFeeError, InvalidScalingFactorError
from stablepool.math.fixed_point import Bfp


def compute_scaling_factor(decimals: int, rate: int = Bfp.ONE) -> Bfp:
    """Scaling factor for a token with the given decimals and rate.

    Args:
        decimals: Token decimals (0..18)
        rate: Token rate as 18-decimal fixed point (ONE for plain tokens)

    Returns:
        Scaling factor as Bfp

    Raises:
        InvalidScalingFactorError: If decimals exceed 18 or the rate is not positive
    """
    if decimals < 0 or decimals > 18:
        raise InvalidScalingFactorError(f"Token decimals must be within [0, 18], got {decimals}")
    if rate <= 0:
        raise InvalidScalingFactorError(f"Rate must be positive, got {rate}")
    return Bfp(Bfp.ONE * 10 ** (18 - decimals)).mul_down(Bfp(rate))


def _check_factor(scaling_factor: Bfp) -> None:
    if scaling_factor.value <= 0:
        raise InvalidScalingFactorError(
            f"Scaling factor must be positive, got {scaling_factor.value}"
        )


def scale_up(amount: int, scaling_factor: Bfp) -> Bfp:
    """Scale token amount to the pool's internal unit, rounding down.

    Args:
        amount: Amount in token's native decimals
        scaling_factor: 18-decimal scaling factor (see compute_scaling_factor)

    Returns:
        Amount as Bfp (18-decimal fixed-point)

    Raises:
        InvalidScalingFactorError: If scaling_factor <= 0
    """
    _check_factor(scaling_factor)
    return Bfp(amount).mul_down(scaling_factor)


def scale_up_array(amounts: list[int], scaling_factors: list[Bfp]) -> list[Bfp]:
    return [scale_up(amount, factor) for amount, factor in zip(amounts, scaling_factors)]


def scale_down_down(bfp: Bfp, scaling_factor: Bfp) -> int:
    """Scale an internal amount back to token decimals, rounding down.

    Raises:
        InvalidScalingFactorError: If scaling_factor <= 0
    """
    _check_factor(scaling_factor)
    return bfp.div_down(scaling_factor).value


def scale_down_up(bfp: Bfp, scaling_factor: Bfp) -> int:
    """Scale an internal amount back to token decimals, rounding up.

    Raises:
        InvalidScalingFactorError: If scaling_factor <= 0
    """
    _check_factor(scaling_factor)
    return bfp.div_up(scaling_factor).value


def _check_swap_fee(swap_fee: Bfp) -> None:
    if swap_fee.value < 0 or swap_fee.value >= Bfp.ONE:
        raise InvalidFeeError(f"Swap fee must be in range [0, 1), got {swap_fee}")


def subtract_swap_fee_amount(amount: Bfp, swap_fee: Bfp) -> Bfp:
    """Subtract swap fee from input amount.

    Used for exact-input swaps: fee is deducted before the swap.

    Args:
        amount: Scaled input amount before fee
        swap_fee: Fee as 18-decimal fixed point, must be in [0, 1)

    Returns:
        Amount after fee deduction

    Raises:
        InvalidFeeError: If swap_fee is not in range [0, 1)
    """
    _check_swap_fee(swap_fee)
    fee_amount = amount.mul_up(swap_fee)
    return amount.sub(fee_amount)


def add_swap_fee_amount(amount: Bfp, swap_fee: Bfp) -> Bfp:
    """Add swap fee to the calculated input amount.

    Used for exact-output swaps: after calculating the raw input needed via
    calc_in_given_out, this function adds the fee on top.

    Formula: amount_with_fee = amount / (1 - fee)

    Raises:
        InvalidFeeError: If swap_fee is not in range [0, 1)
    """
    _check_swap_fee(swap_fee)
    return amount.div_up(swap_fee.complement())
