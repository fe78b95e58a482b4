"""Fixed-point conversion between major currency units and minor units.

1 major unit = 10**18 minor units.  Conversion is exact: amounts are
handled as Decimal and anything that would need rounding is rejected.
"""

from decimal import Decimal, InvalidOperation, localcontext

from factorchain.middleware.exceptions import ValidationError

DECIMALS = 18
SCALE = 10**DECIMALS

# uint256 has at most 78 decimal digits
_PRECISION = 80


def _as_decimal(value) -> Decimal:
    if isinstance(value, float):
        # repr() of a float is its shortest round-tripping form
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Not a valid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Not a valid amount: {value!r}")
    return amount


def to_minor_units(value) -> int:
    """Convert a major-unit amount (e.g. "1.5") to integer minor units."""
    amount = _as_decimal(value)
    if amount < 0:
        raise ValidationError("Amount cannot be negative")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = amount.scaleb(DECIMALS)
        if scaled != scaled.to_integral_value():
            raise ValidationError(
                f"Amount {value} has more than {DECIMALS} decimal places"
            )
        return int(scaled)


def from_minor_units(value: int) -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Minor units must be an integer, got {value!r}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        amount = Decimal(value).scaleb(-DECIMALS)
        if amount == amount.to_integral_value():
            return amount.quantize(Decimal(1))
        return amount.normalize()
