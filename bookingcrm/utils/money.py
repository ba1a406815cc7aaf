"""
Money helpers for the whole project.

Amounts are stored as integer cents; the API speaks decimal strings.

Usage:
    from bookingcrm.utils.money import to_cents, from_cents, format_money

    to_cents("600")          -> 60000
    from_cents(45000)        -> Decimal("450.00")
    format_money(45000)      -> "$450"
"""
from decimal import Decimal, ROUND_HALF_UP

_CENT = Decimal("0.01")

_CURRENCY_SYMBOL = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "EUR": "€",
    "GBP": "£",
}


def to_cents(amount) -> int:
    """
    Convert int / str / Decimal major units to integer cents.

    Floats are routed through str() so 0.1 stays 10 cents.
    """
    if isinstance(amount, float):
        amount = str(amount)
    value = Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def cents_to_str(cents: int) -> str:
    """Wire format for amounts: "450.00"."""
    return str(from_cents(cents))


def format_money(cents: int, currency: str = "USD", decimals: int = 0) -> str:
    """
    Format an amount with thousands separators and the currency symbol.

    Args:
        cents: amount in cents
        currency: ISO code (USD, EUR ...)
        decimals: digits after the separator (0 - whole units, 2 - cents)

    Returns:
        "$1,200" / "1,200 CHF"
    """
    amount = from_cents(cents)
    formatted = f"{{:,.{decimals}f}}".format(amount)
    symbol = _CURRENCY_SYMBOL.get(currency)
    if symbol:
        if formatted.startswith("-"):
            return f"-{symbol}{formatted[1:]}"
        return f"{symbol}{formatted}"
    return f"{formatted} {currency}"
