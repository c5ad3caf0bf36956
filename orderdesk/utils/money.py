"""
Exact-decimal money helpers.

Every function treats a missing operand (None) as zero so that rows with
incomplete monetary columns never raise. Division and percentages always
round to two places with ROUND_HALF_UP.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_DOWN
from typing import Iterable, Optional, Union

Number = Union[Decimal, int, float, str, None]

ZERO = Decimal('0')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def to_decimal(value: Number) -> Decimal:
    """Convert a possibly-absent value to Decimal (None -> 0); NaN and infinities are rejected."""
    if value is None:
        return ZERO
    if isinstance(value, str) and not value.strip():
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f'Invalid monetary value: {value!r}')
    if not result.is_finite():
        raise ValueError(f'Invalid monetary value: {value!r}')
    return result


def quantize(value: Number, places: int = 2) -> Decimal:
    """Round to a fixed number of places, half-up."""
    exp = CENT if places == 2 else Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exp, rounding=ROUND_HALF_UP)


def add(*values: Number) -> Decimal:
    return sum((to_decimal(v) for v in values), ZERO)


def subtract(a: Number, b: Number) -> Decimal:
    return to_decimal(a) - to_decimal(b)


def multiply(a: Number, b: Number) -> Decimal:
    return to_decimal(a) * to_decimal(b)


def total(values: Iterable[Number]) -> Decimal:
    """Sum an iterable of possibly-absent amounts."""
    return sum((to_decimal(v) for v in values), ZERO)


def divide(a: Number, b: Number, places: int = 2) -> Decimal:
    """Divide with fixed scale and ROUND_HALF_UP; a zero divisor yields zero."""
    divisor = to_decimal(b)
    if is_zero(divisor):
        return quantize(ZERO, places)
    return quantize(to_decimal(a) / divisor, places)


def floor_divide(a: Number, b: Number) -> int:
    """Integer quotient rounded toward zero (used for loyalty points)."""
    divisor = to_decimal(b)
    if is_zero(divisor):
        return 0
    return int((to_decimal(a) / divisor).quantize(Decimal('1'), rounding=ROUND_DOWN))


def percentage_of(amount: Number, percent: Number) -> Decimal:
    """amount * percent / 100, rounded to cents."""
    return quantize(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def percent_change(current: Number, previous: Number) -> Decimal:
    """
    Growth of current over previous in percent (2 places).

    A zero previous period yields 100 when there is current activity and 0
    otherwise.
    """
    previous = to_decimal(previous)
    current = to_decimal(current)
    if is_zero(previous):
        return quantize(HUNDRED if is_positive(current) else ZERO)
    return quantize((current - previous) / previous * HUNDRED)


def is_zero(value: Number) -> bool:
    """Numeric comparison: Decimal('0') and Decimal('0.00') are both zero."""
    return to_decimal(value).compare(ZERO) == 0


def is_positive(value: Number) -> bool:
    return to_decimal(value).compare(ZERO) > 0


def is_negative(value: Number) -> bool:
    return to_decimal(value).compare(ZERO) < 0


def min_amount(a: Number, b: Number) -> Decimal:
    a, b = to_decimal(a), to_decimal(b)
    return a if a.compare(b) <= 0 else b


def max_amount(a: Number, b: Number) -> Decimal:
    a, b = to_decimal(a), to_decimal(b)
    return a if a.compare(b) >= 0 else b


def clamp_non_negative(value: Number) -> Decimal:
    return max_amount(value, ZERO)


def optional_at_least(value: Number, threshold: Optional[Number]) -> bool:
    """
    True when value >= threshold, or when no threshold is configured.

    An absent threshold means "no requirement", never "threshold of zero that
    can fail".
    """
    if threshold is None:
        return True
    return to_decimal(value).compare(to_decimal(threshold)) >= 0
