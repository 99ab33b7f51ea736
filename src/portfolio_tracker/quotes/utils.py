"""Helpers shared by the quote sources."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


NON_DIGIT = re.compile(r"[^0-9.\-]")

# Large caps commonly entered without an exchange suffix.
INDIAN_SYMBOLS = frozenset(
    {
        "RELIANCE",
        "TCS",
        "INFY",
        "HDFCBANK",
        "ICICIBANK",
        "BHARTIARTL",
        "ITC",
        "KOTAKBANK",
        "LT",
        "ASIANPAINT",
    }
)

INDIAN_EXCHANGES = frozenset({"NSE", "BSE"})


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse a human readable price such as ``"1,234.50"`` or ``2500``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = str(value).strip().replace(",", "").replace("%", "")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        cleaned = NON_DIGIT.sub("", text)
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None


def yahoo_symbol(symbol: str) -> str:
    """Return the Yahoo Finance ticker, appending ``.NS`` for known NSE names."""

    upper = symbol.strip().upper()
    if upper in INDIAN_SYMBOLS and "." not in upper:
        return f"{upper}.NS"
    return upper


def exchange_from_symbol(symbol: str) -> str:
    upper = symbol.strip().upper()
    if upper.endswith(".NS"):
        return "NSE"
    if upper.endswith(".BO"):
        return "BSE"
    if upper in INDIAN_SYMBOLS:
        return "NSE"
    return "NASDAQ"


def currency_for_exchange(exchange: str | None) -> str:
    return "INR" if (exchange or "").upper() in INDIAN_EXCHANGES else "USD"


__all__ = [
    "INDIAN_SYMBOLS",
    "parse_price",
    "yahoo_symbol",
    "exchange_from_symbol",
    "currency_for_exchange",
]
