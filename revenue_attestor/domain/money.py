"""Minor-unit money conversion shared by all provider adapters"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# ISO 4217 currencies whose minor unit is not 1/100
MINOR_UNIT_EXPONENTS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get((currency or "").upper(), 2)


def to_decimal(value: Any) -> Decimal:
    """
    Parse a provider amount into an exact Decimal.

    Floats go through repr() so 12.34 becomes Decimal("12.34") rather than
    its binary expansion. None and empty strings are zero.

    Raises:
        ValueError: On non-numeric or non-finite input
    """
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not an amount: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a decimal amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Non-finite amount: {value!r}")
    return amount


def to_minor_units(value: Any, currency: str) -> int:
    """
    Convert a major-unit amount ("12.50", 12.5) to integer minor units.

    Amounts with more precision than the currency allows are rounded half-up.

    Raises:
        ValueError: On non-numeric, non-finite or out-of-range input
    """
    exponent = minor_unit_exponent(currency)
    try:
        scaled = to_decimal(value).scaleb(exponent)
        return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise ValueError(f"Amount out of range: {value!r}") from e


def minor_units(value: Any) -> int:
    """Accept an amount the provider already reports in minor units"""
    amount = to_decimal(value)
    try:
        fractional = amount != amount.to_integral_value()
    except InvalidOperation as e:
        raise ValueError(f"Amount out of range: {value!r}") from e
    if fractional:
        raise ValueError(f"Minor-unit amount has a fractional part: {value!r}")
    return int(amount)


def from_minor_units(amount_cents: int, currency: str) -> Decimal:
    """Exact major-unit Decimal for an integer minor-unit amount"""
    return Decimal(amount_cents).scaleb(-minor_unit_exponent(currency))
