"""Tests for SafeInt safe arithmetic wrapper."""

import pytest

from dexengine.safe_int import (
    UINT112_MAX,
    UINT256_MAX,
    DivisionByZero,
    S,
    SafeInt,
    SafeIntError,
    Uint112Overflow,
    Uint256Overflow,
    Underflow,
    isqrt,
)


class TestSafeIntConstruction:
    """Tests for SafeInt construction."""

    def test_from_int(self):
        """SafeInt can be constructed from int."""
        assert SafeInt(42).value == 42

    def test_from_safeint(self):
        """SafeInt can be constructed from another SafeInt."""
        assert SafeInt(SafeInt(42)).value == 42

    def test_rejects_non_int(self):
        """Strings, floats and bools are rejected."""
        with pytest.raises(TypeError):
            SafeInt("42")  # type: ignore
        with pytest.raises(TypeError):
            SafeInt(3.14)  # type: ignore
        with pytest.raises(TypeError):
            SafeInt(True)

    def test_alias_s(self):
        """S is an alias for SafeInt."""
        assert S is SafeInt


class TestSafeIntArithmetic:
    """Tests for checked arithmetic."""

    def test_add_and_mul(self):
        assert (S(10) + 5).value == 15
        assert (5 + S(10)).value == 15
        assert (S(6) * 7).value == 42
        assert (6 * S(7)).value == 42

    def test_mul_beyond_uint256_is_exact(self):
        """Intermediate products are not truncated."""
        big = 2**200
        assert (S(big) * S(big)).value == big * big

    def test_sub_to_zero(self):
        assert (S(5) - S(5)).value == 0

    def test_sub_underflow_raises(self):
        """Subtraction below zero raises Underflow."""
        with pytest.raises(Underflow) as exc_info:
            S(5) - S(10)
        assert "5 - 10" in str(exc_info.value)

    def test_rsub_underflow_raises(self):
        with pytest.raises(Underflow):
            5 - S(10)

    def test_floordiv_truncates(self):
        assert (S(10) // 3).value == 3
        assert (S(2) // 3).value == 0

    def test_division_by_zero_raises(self):
        with pytest.raises(DivisionByZero):
            S(10) // 0
        with pytest.raises(DivisionByZero):
            S(10) % 0
        with pytest.raises(DivisionByZero):
            S(10).ceiling_div(0)

    def test_ceiling_div(self):
        """Ceiling division rounds up only when there is a remainder."""
        assert S(10).ceiling_div(3).value == 4
        assert S(9).ceiling_div(3).value == 3
        assert S(0).ceiling_div(7).value == 0

    def test_min(self):
        assert S(3).min(7).value == 3
        assert S(9).min(S(7)).value == 7

    def test_errors_share_base_class(self):
        """Every arithmetic failure is a SafeIntError (and an ArithmeticError)."""
        for exc in (DivisionByZero, Underflow, Uint256Overflow, Uint112Overflow):
            assert issubclass(exc, SafeIntError)
            assert issubclass(exc, ArithmeticError)


class TestSafeIntComparison:
    def test_compares_with_ints_and_safeints(self):
        assert S(5) == 5
        assert S(5) == S(5)
        assert S(3) < 5
        assert S(5) >= S(5)
        assert not S(0)
        assert S(1)

    def test_hashable(self):
        assert len({S(1), S(1), S(2)}) == 2


class TestBounds:
    """Tests for uint256 and uint112 conversion."""

    def test_uint256_max_accepted(self):
        assert S(UINT256_MAX).to_uint256() == UINT256_MAX

    def test_uint256_overflow(self):
        with pytest.raises(Uint256Overflow):
            S(UINT256_MAX + 1).to_uint256()

    def test_uint112_max_accepted(self):
        assert S(UINT112_MAX).to_uint112() == UINT112_MAX

    def test_uint112_overflow(self):
        """Reserves must fit a 112-bit slot."""
        with pytest.raises(Uint112Overflow):
            S(UINT112_MAX + 1).to_uint112()

    def test_negative_rejected_on_conversion(self):
        with pytest.raises(Uint256Overflow):
            S(-1).to_uint256()


class TestIsqrt:
    """Tests for the integer square root."""

    @pytest.mark.parametrize(
        "value,expected",
        [(0, 0), (1, 1), (2, 1), (3, 1), (4, 2), (15, 3), (16, 4), (4_000_000_000_000, 2_000_000)],
    )
    def test_small_values(self, value, expected):
        assert isqrt(value) == expected

    def test_floor_for_large_non_squares(self):
        """Result r satisfies r^2 <= n < (r+1)^2."""
        n = 10**40 + 12345
        r = isqrt(n)
        assert r * r <= n < (r + 1) * (r + 1)

    def test_negative_raises(self):
        with pytest.raises(ValueError):
            isqrt(-1)

    def test_sqrt_method(self):
        assert S(1_000_000).sqrt().value == 1000
