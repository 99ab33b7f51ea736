"""Financial Modeling Prep quote source."""
from __future__ import annotations

import logging

import requests

from ..models import QuoteResult
from .base import QuoteSource
from .utils import currency_for_exchange, exchange_from_symbol, parse_price

LOGGER = logging.getLogger(__name__)

MIN_KEY_LENGTH = 10


class FMPSource(QuoteSource):
    name = "fmp"
    BASE_URL = "https://financialmodelingprep.com/api/v3/quote"

    def __init__(self, api_key: str | None, session: requests.Session | None = None, timeout: float = 30) -> None:
        super().__init__(session, timeout)
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) and self.api_key != "demo" and len(self.api_key) >= MIN_KEY_LENGTH

    def fetch_quote(self, symbol: str) -> QuoteResult:
        if not self.enabled:
            return QuoteResult.failed(symbol, "FMP API key not configured", source=self.name)

        LOGGER.debug("Requesting FMP quote for %s", symbol)
        response = self.session.get(
            f"{self.BASE_URL}/{symbol}",
            params={"apikey": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        rows = response.json() or []
        quote = rows[0] if isinstance(rows, list) and rows else None
        price = parse_price(quote.get("price")) if quote else None
        if not price:
            return QuoteResult.failed(symbol, f"no FMP quote for {symbol}", source=self.name)

        exchange = quote.get("exchange") or exchange_from_symbol(symbol)
        return QuoteResult.ok(
            symbol,
            price,
            name=quote.get("name") or f"{symbol} Company",
            exchange=exchange,
            currency=currency_for_exchange(exchange),
            source=self.name,
        )


__all__ = ["FMPSource"]
