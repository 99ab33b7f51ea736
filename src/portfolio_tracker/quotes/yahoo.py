"""Yahoo Finance quote sources: the chart API and the public quote page."""
from __future__ import annotations

import logging

import requests
from bs4 import BeautifulSoup

from ..models import QuoteResult
from .base import QuoteSource
from .utils import currency_for_exchange, exchange_from_symbol, parse_price, yahoo_symbol

LOGGER = logging.getLogger(__name__)

CHART_HOSTS = (
    "https://query1.finance.yahoo.com",
    "https://query2.finance.yahoo.com",
)


class YahooChartSource(QuoteSource):
    """Reads ``chart.result[0].meta`` from the v8 chart endpoint, trying each host."""

    name = "yahoo"

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 30,
        hosts: tuple[str, ...] = CHART_HOSTS,
    ) -> None:
        super().__init__(session, timeout)
        self.hosts = hosts

    def fetch_quote(self, symbol: str) -> QuoteResult:
        ticker = yahoo_symbol(symbol)
        last_error = "no response"
        for host in self.hosts:
            url = f"{host}/v8/finance/chart/{ticker}"
            LOGGER.debug("Requesting Yahoo chart %s", url)
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                payload = response.json()
            except (requests.RequestException, ValueError) as exc:
                last_error = str(exc)
                LOGGER.debug("Yahoo chart host %s failed for %s: %s", host, ticker, exc)
                continue

            results = (payload.get("chart") or {}).get("result") or []
            meta = results[0].get("meta") if results else None
            price = parse_price(meta.get("regularMarketPrice")) if meta else None
            if not price:
                last_error = f"no regularMarketPrice for {ticker}"
                continue

            exchange = meta.get("fullExchangeName") or meta.get("exchangeName") or exchange_from_symbol(ticker)
            return QuoteResult.ok(
                symbol,
                price,
                name=meta.get("longName") or meta.get("shortName") or f"{symbol} Corp",
                exchange=exchange,
                currency=meta.get("currency") or currency_for_exchange(exchange),
                sector=meta.get("sector"),
                source=self.name,
            )
        return QuoteResult.failed(symbol, last_error, source=self.name)


class YahooPageSource(QuoteSource):
    """Scrapes the price streamer element from ``finance.yahoo.com/quote``."""

    name = "yahoo_page"
    BASE_URL = "https://finance.yahoo.com/quote"

    def _get_soup(self, ticker: str) -> BeautifulSoup:
        LOGGER.debug("Requesting Yahoo quote page for %s", ticker)
        response = self.session.get(f"{self.BASE_URL}/{ticker}", timeout=self.timeout)
        response.raise_for_status()
        return BeautifulSoup(response.text, "html.parser")

    def fetch_quote(self, symbol: str) -> QuoteResult:
        ticker = yahoo_symbol(symbol)
        soup = self._get_soup(ticker)

        streamer = soup.find("fin-streamer", attrs={"data-field": "regularMarketPrice", "data-symbol": ticker})
        if streamer is None:
            streamer = soup.find("fin-streamer", attrs={"data-field": "regularMarketPrice"})
        if streamer is None:
            return QuoteResult.failed(symbol, f"price element missing for {ticker}", source=self.name)

        price = parse_price(streamer.get("data-value") or streamer.get("value") or streamer.get_text(strip=True))
        if not price:
            return QuoteResult.failed(symbol, f"unparseable price for {ticker}", source=self.name)

        heading = soup.find("h1")
        name = heading.get_text(strip=True) if heading else f"{symbol} Corp"
        exchange = exchange_from_symbol(ticker)
        return QuoteResult.ok(
            symbol,
            price,
            name=name,
            exchange=exchange,
            currency=currency_for_exchange(exchange),
            source=self.name,
        )


__all__ = ["YahooChartSource", "YahooPageSource"]
