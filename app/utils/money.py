"""
Fixed-point money helpers for the whole project.

Amounts are always Decimal with two places (the currency's minor unit);
floats never enter ledger arithmetic. Percentages shown in reports are
floats, computed from Decimals at the very end.

Usage:
    from app.utils.money import to_money, percent_of, format_money

    to_money("100.5")                          -> Decimal("100.50")
    percent_of(Decimal("100.01"), Decimal("50")) -> Decimal("50.01")
    format_money(Decimal("1200.5"), "USD")     -> "1,200.50 USD"
"""
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """
    Convert int / str / Decimal to a 2-place Decimal (round-half-up).

    Floats go through str() so 0.1 stays 0.10 instead of a binary artifact.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    if not isinstance(value, Decimal):
        value = Decimal(value)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """amount * percentage / 100, rounded half-up to cents."""
    return (Decimal(amount) * Decimal(percentage) / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def share_pct(part: Decimal, whole: Decimal) -> float:
    """part / whole * 100 as float; 0.0 when whole is zero."""
    if not whole:
        return 0.0
    return float(Decimal(part) / Decimal(whole) * HUNDRED)


def money_sum(values) -> Decimal:
    return sum((to_money(v) for v in values), ZERO)


def format_money(amount, currency: str = "USD", decimals: int = 2) -> str:
    """
    Format with thousands separators and the currency code.

    Args:
        amount: number (int / Decimal / str)
        currency: ISO currency code
        decimals: digits after the point

    Returns:
        "1,200.50 USD"
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    return f"{fmt.format(amount)} {currency}"


def money_str(amount) -> str | None:
    """Decimal -> "123.45" for JSON payloads (None stays None)."""
    if amount is None:
        return None
    return str(to_money(amount))
