"""Conversion between major-unit amounts and integer minor units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, DecimalException

from betchat.core.errors import InvalidAmount

MINOR_PER_MAJOR = 100
# Pool totals are BIGINT sums of individual amounts; this bound leaves room for them.
MAX_AMOUNT_MINOR = 10**15
_CENT = Decimal("0.01")


def to_minor(value: Decimal | int | str) -> int:
    """Convert a major-unit amount (e.g. ``Decimal("250.50")``) to minor units.

    Floats are rejected; amounts with sub-minor precision raise ``InvalidAmount``
    instead of being rounded silently. Magnitudes above ``MAX_AMOUNT_MINOR``
    are rejected too.
    """

    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount("Amounts must be given as decimal values")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if not amount.is_finite():
            raise InvalidAmount(f"Invalid amount: {value!r}")
        if abs(amount) * MINOR_PER_MAJOR > MAX_AMOUNT_MINOR:
            raise InvalidAmount(f"Amounts cannot exceed {from_minor(MAX_AMOUNT_MINOR):,}")
        if amount != amount.quantize(_CENT):
            raise InvalidAmount("Amounts support at most two decimal places")
    except (DecimalException, ValueError) as exc:
        raise InvalidAmount(f"Invalid amount: {value!r}") from exc
    return int(amount * MINOR_PER_MAJOR)


def from_minor(value: int) -> Decimal:
    return (Decimal(value) / MINOR_PER_MAJOR).quantize(_CENT, rounding=ROUND_HALF_UP)


def format_amount(value: int, symbol: str) -> str:
    major = from_minor(value)
    if major == major.to_integral_value():
        return f"{symbol}{int(major):,}"
    return f"{symbol}{major:,}"


__all__ = ["MAX_AMOUNT_MINOR", "format_amount", "from_minor", "to_minor"]
