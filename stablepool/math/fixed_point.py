"""Balancer Fixed Point (Bfp) math library.

18-decimal fixed-point arithmetic with explicit rounding direction. Every
caller picks the direction that never favors a user over the pool.

All values are stored as integers scaled by 10^18.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Context, Decimal, localcontext
from typing import ClassVar

__all__ = [
    "Bfp",
    "pow_raw",
    "ONE_18",
    "AMP_PRECISION",
]

ONE_18 = 10**18

# Amplification values are stored multiplied by this factor
AMP_PRECISION = 1000

# Enough digits for exact integer conversion of any 256-bit fixed-point result
_POW_CONTEXT = Context(prec=90)


def pow_raw(x: int, y: int) -> int:
    """Compute x^y where both are 18-decimal fixed-point (non-negative).

    The result is truncated toward zero. Callers add the error margin in
    the direction they need (see Bfp.pow_down / Bfp.pow_up).

    Args:
        x: Base (non-negative, 18-decimal fixed-point)
        y: Exponent (non-negative, 18-decimal fixed-point)

    Returns:
        x^y as 18-decimal fixed-point

    Raises:
        ValueError: If x or y is negative
    """
    if x < 0 or y < 0:
        raise ValueError(f"pow_raw requires non-negative operands, got x={x}, y={y}")
    if y == 0:
        return ONE_18
    if x == 0:
        return 0

    with localcontext(_POW_CONTEXT):
        base = Decimal(x) / ONE_18
        exponent = Decimal(y) / ONE_18
        return int(base**exponent * ONE_18)


class Bfp:
    """18-decimal fixed-point number stored as int.

    All values are stored as integers scaled by 10^18.
    Example: 1.5 is stored as 1_500_000_000_000_000_000
    """

    ONE: ClassVar[int] = ONE_18
    MAX_POW_RELATIVE_ERROR: ClassVar[int] = 10000  # 10^-14 relative error

    __slots__ = ("value",)
    __hash__ = None  # type: ignore[assignment]  # Unhashable since we define __eq__

    def __init__(self, value: int) -> None:
        """Create Bfp from raw scaled value."""
        self.value = value

    @classmethod
    def from_decimal(cls, d: Decimal) -> Bfp:
        """Create from decimal (will be scaled by 10^18).

        Uses ROUND_HALF_UP for consistent rounding behavior.
        Requires non-negative input.
        """
        if d < 0:
            raise ValueError(f"Bfp.from_decimal requires non-negative input, got {d}")
        scaled = (d * cls.ONE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return cls(int(scaled))

    @classmethod
    def from_int(cls, i: int) -> Bfp:
        """Create from integer (will be scaled by 10^18)."""
        return cls(i * cls.ONE)

    @classmethod
    def one(cls) -> Bfp:
        return cls(cls.ONE)

    def to_decimal(self) -> Decimal:
        """Convert to Decimal for display."""
        return Decimal(self.value) / Decimal(self.ONE)

    def mul_down(self, other: Bfp) -> Bfp:
        """Multiply with floor rounding: (a * b) // 10^18"""
        return Bfp((self.value * other.value) // self.ONE)

    def mul_up(self, other: Bfp) -> Bfp:
        """Multiply with ceiling rounding."""
        product = self.value * other.value
        if product == 0:
            return Bfp(0)
        return Bfp((product - 1) // self.ONE + 1)

    def div_down(self, other: Bfp) -> Bfp:
        """Divide with floor rounding: (a * 10^18) // b"""
        if other.value == 0:
            raise ZeroDivisionError("Bfp division by zero")
        return Bfp((self.value * self.ONE) // other.value)

    def div_up(self, other: Bfp) -> Bfp:
        """Divide with ceiling rounding."""
        if other.value == 0:
            raise ZeroDivisionError("Bfp division by zero")
        numerator = self.value * self.ONE
        if numerator == 0:
            return Bfp(0)
        return Bfp((numerator - 1) // other.value + 1)

    def complement(self) -> Bfp:
        """Return 1 - self. Clamps to 0 if self > 1."""
        return Bfp(max(0, self.ONE - self.value))

    def add(self, other: Bfp) -> Bfp:
        return Bfp(self.value + other.value)

    def sub(self, other: Bfp) -> Bfp:
        """Subtract other from self. Clamps to 0 if result would be negative."""
        result = self.value - other.value
        if result < 0:
            return Bfp(0)
        return Bfp(result)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bfp):
            return NotImplemented
        return self.value == other.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Bfp):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Bfp):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Bfp):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Bfp):
            return NotImplemented
        return self.value >= other.value

    def __repr__(self) -> str:
        return f"Bfp({self.value})"

    def __str__(self) -> str:
        return str(self.to_decimal())

    def _max_pow_error(self, raw: int) -> int:
        # mul_up(raw, MAX_POW_RELATIVE_ERROR) + 1
        product = raw * self.MAX_POW_RELATIVE_ERROR
        mul_up_result = ((product - 1) // self.ONE + 1) if product > 0 else 0
        return mul_up_result + 1

    def pow_down(self, exp: Bfp) -> Bfp:
        """Compute self^exp with downward rounding.

        Exponents 1, 2 and 4 are computed with plain multiplications to
        avoid precision loss in the general power computation.
        """
        if exp.value == self.ONE:
            return self
        if exp.value == 2 * self.ONE:
            return self.mul_down(self)
        if exp.value == 4 * self.ONE:
            square = self.mul_down(self)
            return square.mul_down(square)

        raw = pow_raw(self.value, exp.value)
        max_error = self._max_pow_error(raw)
        if raw < max_error:
            return Bfp(0)
        return Bfp(raw - max_error)

    def pow_up(self, exp: Bfp) -> Bfp:
        """Compute self^exp with upward rounding."""
        if exp.value == self.ONE:
            return self
        if exp.value == 2 * self.ONE:
            return self.mul_up(self)
        if exp.value == 4 * self.ONE:
            square = self.mul_up(self)
            return square.mul_up(square)

        raw = pow_raw(self.value, exp.value)
        return Bfp(raw + self._max_pow_error(raw))
