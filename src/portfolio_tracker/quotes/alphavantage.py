"""Alpha Vantage GLOBAL_QUOTE source."""
from __future__ import annotations

import logging

import requests

from ..models import QuoteResult
from .base import QuoteSource
from .utils import currency_for_exchange, exchange_from_symbol, parse_price, yahoo_symbol

LOGGER = logging.getLogger(__name__)


class AlphaVantageSource(QuoteSource):
    name = "alphavantage"
    BASE_URL = "https://www.alphavantage.co/query"

    def __init__(self, api_key: str = "demo", session: requests.Session | None = None, timeout: float = 30) -> None:
        super().__init__(session, timeout)
        self.api_key = api_key

    def fetch_quote(self, symbol: str) -> QuoteResult:
        ticker = yahoo_symbol(symbol)
        LOGGER.debug("Requesting Alpha Vantage quote for %s", ticker)
        response = self.session.get(
            self.BASE_URL,
            params={"function": "GLOBAL_QUOTE", "symbol": ticker, "apikey": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        quote = response.json().get("Global Quote") or {}
        price = parse_price(quote.get("05. price"))
        if not price:
            return QuoteResult.failed(symbol, f"no price in Alpha Vantage response for {ticker}", source=self.name)

        exchange = exchange_from_symbol(ticker)
        return QuoteResult.ok(
            symbol,
            price,
            name=f"{symbol} Corp",
            exchange=exchange,
            currency=currency_for_exchange(exchange),
            source=self.name,
        )


__all__ = ["AlphaVantageSource"]
