"""Tests for SafeInt checked arithmetic."""

import pytest

from stablepool.safe_int import DivisionByZero, S, SafeInt, SafeIntError, Underflow


class TestSafeIntConstruction:
    """Tests for SafeInt construction."""

    def test_from_int(self):
        """SafeInt can be constructed from int."""
        assert SafeInt(42).value == 42

    def test_from_safeint(self):
        """SafeInt can be constructed from another SafeInt."""
        assert SafeInt(SafeInt(42)).value == 42

    def test_from_invalid_type_raises(self):
        """Non-integer input is rejected."""
        with pytest.raises(TypeError, match="SafeInt requires int"):
            SafeInt(1.5)  # type: ignore[arg-type]

    def test_alias_s(self):
        """S is an alias for SafeInt."""
        assert S is SafeInt


class TestSafeIntArithmetic:
    """Tests for checked operators."""

    def test_add(self):
        """Addition works with SafeInt and int operands."""
        assert (S(10) + S(5)).value == 15
        assert (S(10) + 5).value == 15
        assert (5 + S(10)).value == 15

    def test_sub_positive_result(self):
        """Subtraction with a non-negative result."""
        assert (S(10) - S(3)).value == 7

    def test_sub_zero_result(self):
        """Subtracting an equal value gives zero."""
        assert (S(10) - 10).value == 0

    def test_sub_underflow_raises(self):
        """Subtraction below zero raises Underflow."""
        with pytest.raises(Underflow):
            S(3) - S(5)

    def test_mul(self):
        """Multiplication works both ways."""
        assert (S(6) * S(7)).value == 42
        assert (6 * S(7)).value == 42

    def test_mul_large(self):
        """Python ints do not overflow on 256-bit products."""
        big = 2**200
        assert (S(big) * S(big)).value == big * big

    def test_floordiv(self):
        """Floor division rounds down."""
        assert (S(17) // S(5)).value == 3

    def test_floordiv_by_zero_raises(self):
        """Division by zero raises DivisionByZero."""
        with pytest.raises(DivisionByZero):
            S(17) // 0


class TestSafeIntCeilingDiv:
    """Tests for ceiling_div."""

    def test_rounds_up(self):
        """Inexact division rounds up."""
        assert S(17).ceiling_div(5).value == 4

    def test_exact(self):
        """Exact division is unchanged."""
        assert S(15).ceiling_div(5).value == 3

    def test_zero_numerator(self):
        """Zero divided by anything non-zero is zero."""
        assert S(0).ceiling_div(7).value == 0

    def test_by_zero_raises(self):
        """Ceiling division by zero raises DivisionByZero."""
        with pytest.raises(DivisionByZero):
            S(1).ceiling_div(S(0))


class TestSafeIntComparison:
    """Tests for comparisons against SafeInt and int."""

    def test_eq(self):
        """Equality with SafeInt and int."""
        assert S(5) == S(5)
        assert S(5) == 5
        assert S(5) != S(6)

    def test_ordering(self):
        """Ordering operators compare values."""
        assert S(3) < S(5)
        assert S(5) <= 5
        assert S(6) > 5
        assert S(6) >= S(6)


class TestSafeIntConversion:
    """Tests for conversion helpers."""

    def test_int(self):
        """int() returns the value."""
        assert int(S(42)) == 42

    def test_bool(self):
        """Zero is falsy, non-zero truthy."""
        assert not S(0)
        assert S(1)

    def test_hash(self):
        """Equal values hash equally."""
        assert hash(S(42)) == hash(S(42))

    def test_repr(self):
        """repr shows the value."""
        assert repr(S(42)) == "SafeInt(42)"


class TestSafeIntExceptionHierarchy:
    """Tests for the exception hierarchy."""

    def test_errors_are_arithmetic_errors(self):
        """Both errors can be caught as SafeIntError or ArithmeticError."""
        assert issubclass(DivisionByZero, SafeIntError)
        assert issubclass(Underflow, SafeIntError)
        assert issubclass(SafeIntError, ArithmeticError)

    def test_chained_expression_fails_loudly(self):
        """An underflow deep in an expression propagates."""
        with pytest.raises(SafeIntError):
            ((S(10) * 2) - 25) // 3
