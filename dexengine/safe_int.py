"""Safe integer wrapper for reserve, share and fee arithmetic.

Every settlement-affecting computation in the engine goes through SafeInt so
that a bad operand fails loudly instead of producing a wrong amount:
- Division by zero raises DivisionByZero
- Subtraction below zero raises Underflow
- Reserves are bounded to 112 bits on conversion (Uint112Overflow)

Usage pattern:
    from dexengine.safe_int import S

    def amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
        numerator = S(reserve_out) * S(amount_in)
        denominator = S(reserve_in) + S(amount_in)
        return (numerator // denominator).value
"""

from __future__ import annotations

UINT256_MAX = 2**256 - 1
# Pair reserves are packed into 112-bit slots on-chain
UINT112_MAX = 2**112 - 1


class SafeIntError(ArithmeticError):
    """Base class for SafeInt arithmetic errors."""


class DivisionByZero(SafeIntError):
    """Division or modulo by zero."""


class Underflow(SafeIntError):
    """Subtraction would produce negative result."""


class Uint256Overflow(SafeIntError):
    """Value exceeds uint256 maximum."""


class Uint112Overflow(SafeIntError):
    """Value does not fit a 112-bit reserve slot."""


class SafeInt:
    """Non-negative integer with checked arithmetic.

    Division always floors, which for non-negative operands is truncation
    toward zero. Callers choose the operand order so that the truncated
    remainder stays with the pool.
    """

    __slots__ = ("_value",)
    _value: int

    def __init__(self, value: int | SafeInt) -> None:
        if isinstance(value, SafeInt):
            self._value = value._value
        elif isinstance(value, int) and not isinstance(value, bool):
            self._value = value
        else:
            raise TypeError(f"SafeInt requires int, got {type(value).__name__}")

    @property
    def value(self) -> int:
        """The underlying integer value."""
        return self._value

    def __repr__(self) -> str:
        return f"SafeInt({self._value})"

    def __hash__(self) -> int:
        return hash(self._value)

    def __add__(self, other: SafeInt | int) -> SafeInt:
        return SafeInt(self._value + _extract_value(other))

    __radd__ = __add__

    def __sub__(self, other: SafeInt | int) -> SafeInt:
        """Subtract other from self.

        Raises:
            Underflow: If result would be negative
        """
        other_val = _extract_value(other)
        result = self._value - other_val
        if result < 0:
            raise Underflow(f"Underflow: {self._value} - {other_val} = {result}")
        return SafeInt(result)

    def __rsub__(self, other: int) -> SafeInt:
        return SafeInt(other) - self

    def __mul__(self, other: SafeInt | int) -> SafeInt:
        return SafeInt(self._value * _extract_value(other))

    __rmul__ = __mul__

    def __floordiv__(self, other: SafeInt | int) -> SafeInt:
        """Integer division (floor).

        Raises:
            DivisionByZero: If other is zero
        """
        other_val = _extract_value(other)
        if other_val == 0:
            raise DivisionByZero(f"Division by zero: {self._value} // 0")
        return SafeInt(self._value // other_val)

    def __mod__(self, other: SafeInt | int) -> SafeInt:
        other_val = _extract_value(other)
        if other_val == 0:
            raise DivisionByZero(f"Modulo by zero: {self._value} % 0")
        return SafeInt(self._value % other_val)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SafeInt):
            return self._value == other._value
        if isinstance(other, int):
            return self._value == other
        return NotImplemented

    def __lt__(self, other: SafeInt | int) -> bool:
        return self._value < _extract_value(other)

    def __le__(self, other: SafeInt | int) -> bool:
        return self._value <= _extract_value(other)

    def __gt__(self, other: SafeInt | int) -> bool:
        return self._value > _extract_value(other)

    def __ge__(self, other: SafeInt | int) -> bool:
        return self._value >= _extract_value(other)

    def __int__(self) -> int:
        return self._value

    def __bool__(self) -> bool:
        return self._value != 0

    def ceiling_div(self, other: SafeInt | int) -> SafeInt:
        """Ceiling division (rounds up).

        Raises:
            DivisionByZero: If other is zero
        """
        other_val = _extract_value(other)
        if other_val == 0:
            raise DivisionByZero(f"Ceiling division by zero: {self._value}")
        return SafeInt(-(-self._value // other_val))

    def min(self, other: SafeInt | int) -> SafeInt:
        return SafeInt(min(self._value, _extract_value(other)))

    def sqrt(self) -> SafeInt:
        """Integer square root (floor)."""
        return SafeInt(isqrt(self._value))

    def to_uint256(self) -> int:
        """Convert to int, validating uint256 bounds.

        Raises:
            Uint256Overflow: If value is negative or exceeds 2^256-1
        """
        if self._value < 0 or self._value > UINT256_MAX:
            raise Uint256Overflow(f"Value out of uint256 range: {self._value}")
        return self._value

    def to_uint112(self) -> int:
        """Convert to int, validating the 112-bit reserve bound.

        Raises:
            Uint112Overflow: If value is negative or exceeds 2^112-1
        """
        if self._value < 0 or self._value > UINT112_MAX:
            raise Uint112Overflow(f"Value out of uint112 range: {self._value}")
        return self._value


def _extract_value(x: SafeInt | int) -> int:
    if isinstance(x, SafeInt):
        return x._value
    return x


def isqrt(value: int) -> int:
    """Integer square root by Newton's method.

    Iterates until the approximation stops decreasing. Exact for perfect
    squares, floor of the real root otherwise.

    Raises:
        ValueError: If value is negative
    """
    if value < 0:
        raise ValueError(f"Square root of negative number: {value}")
    if value < 2:
        return value

    z = value
    x = value // 2 + 1
    while x < z:
        z = x
        x = (value // x + x) // 2
    return z


# Convenience alias for concise code
S = SafeInt
