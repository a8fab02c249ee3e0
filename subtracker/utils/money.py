"""
Price / date formatting for pages.

Usage:
    from subtracker.utils.money import format_price, format_date

    format_price(80, "MAD")          -> "80.00 MAD"
    format_price(1234.5, "MAD")      -> "1,234.50 MAD"
    format_date(1767225600000)       -> "01/01/2026"
"""
from datetime import datetime, timezone
from decimal import Decimal


def format_price(amount, currency: str = "MAD", decimals: int = 2) -> str:
    """
    Отформатировать сумму: разделители тысяч, 2 знака, суффикс валюты.
    """
    if amount is None:
        amount = 0
    if isinstance(amount, str):
        amount = Decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    return f"{fmt.format(amount)} {currency}"


def format_date(epoch_ms, fmt: str = "%m/%d/%Y") -> str:
    """epoch ms -> display date (UTC), 'N/A' when unset"""
    if not epoch_ms:
        return "N/A"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime(fmt)


def to_date_input(epoch_ms) -> str:
    """epoch ms -> YYYY-MM-DD for <input type="date">"""
    return format_date(epoch_ms, "%Y-%m-%d") if epoch_ms else ""
