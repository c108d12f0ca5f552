"""Display formatting for ranked volume entries."""

from decimal import ROUND_HALF_UP, Decimal

_BILLION = Decimal("1000000000")
_MILLION = Decimal("1000000")
_THOUSAND = Decimal("1000")


def _fixed(value: Decimal, places: int) -> str:
    """Round half-up to a fixed number of decimal places."""
    return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def format_volume(volume: Decimal) -> str:
    """Compact quote volume: $1.23B, $45.60M, $7.89K, $12.00."""
    if volume >= _BILLION:
        return f"${_fixed(volume / _BILLION, 2)}B"
    if volume >= _MILLION:
        return f"${_fixed(volume / _MILLION, 2)}M"
    if volume >= _THOUSAND:
        return f"${_fixed(volume / _THOUSAND, 2)}K"
    return f"${_fixed(volume, 2)}"


def format_price(price: Decimal) -> str:
    """Price with precision scaled to magnitude.

    >= 1000 gets thousands separators and 2 places, >= 1 gets 3 places,
    >= 0.01 gets 4 places; anything smaller gets up to 6 places with
    trailing zeros removed.
    """
    if price >= _THOUSAND:
        return f"${price.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,.2f}"
    if price >= 1:
        return f"${_fixed(price, 3)}"
    if price >= Decimal("0.01"):
        return f"${_fixed(price, 4)}"
    text = _fixed(price, 6).rstrip("0").rstrip(".")
    return f"${text or '0'}"


def format_change(change_pct: Decimal) -> str:
    """Signed percent change with 2 places: +1.25%, -0.40%."""
    sign = "+" if change_pct > 0 else ""
    return f"{sign}{_fixed(change_pct, 2)}%"


def display_symbol(symbol: str, quote_suffix: str = "USDT") -> str:
    """Drop the quote suffix for display: BTCUSDT -> BTC."""
    if quote_suffix and symbol.endswith(quote_suffix):
        return symbol[: -len(quote_suffix)]
    return symbol
