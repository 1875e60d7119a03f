"""Native token unit conversions."""

from decimal import Decimal, InvalidOperation

WEI_PER_TOKEN = Decimal(10) ** 18


def parse_price(value) -> Decimal:
    """Parse a price given as str/int/Decimal. Raises ValueError on bad input."""
    if isinstance(value, float):
        value = repr(value)
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid price: {value!r}") from e
    if not price.is_finite():
        raise ValueError(f"Invalid price: {value!r}")
    return price


def to_wei(amount: Decimal) -> int:
    """Convert token units to wei. Raises ValueError below wei precision."""
    wei = amount * WEI_PER_TOKEN
    if wei != wei.to_integral_value():
        raise ValueError(f"Price {amount} has more than 18 decimal places")
    return int(wei)


def from_wei(wei: int) -> Decimal:
    return Decimal(int(wei)) / WEI_PER_TOKEN


def format_price(amount) -> str:
    """Canonical string form: no exponent, no trailing zeros."""
    if amount is None:
        return None
    normalized = Decimal(amount).normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")
