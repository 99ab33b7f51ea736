"""Base classes for quote sources."""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Sequence

import requests

from ..models import QuoteResult

LOGGER = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "accept": "application/json,text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}


class QuoteSource(ABC):
    """Abstract source able to quote a single ticker symbol.

    Without an injected ``session`` every calling thread gets its own
    :class:`requests.Session`, since refreshes fan lookups out over worker
    threads. An injected session is used as-is from all threads.
    """

    name = "base"

    def __init__(self, session: requests.Session | None = None, timeout: float = 30) -> None:
        self._session = session
        if session is not None:
            session.headers.update(DEFAULT_HEADERS)
        self._local = threading.local()
        self.timeout = timeout

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update(DEFAULT_HEADERS)
            self._local.session = session
        return session

    @abstractmethod
    def fetch_quote(self, symbol: str) -> QuoteResult:
        """Return a quote for ``symbol``; may raise on transport errors."""


class ChainedQuoteProvider:
    """Tries each source in order and returns the first positive price."""

    def __init__(self, sources: Sequence[QuoteSource]) -> None:
        self.sources = list(sources)

    def lookup(self, symbol: str) -> QuoteResult:
        symbol = (symbol or "").strip().upper()
        if not symbol:
            return QuoteResult.failed(symbol, "Symbol is required")

        for source in self.sources:
            LOGGER.debug("Looking up %s via %s", symbol, source.name)
            try:
                result = source.fetch_quote(symbol)
            except Exception as exc:
                LOGGER.warning("Quote source %s failed for %s: %s", source.name, symbol, exc)
                continue
            if result.usable_price is not None:
                LOGGER.info("Quoted %s at %s via %s", symbol, result.price, source.name)
                return result
            LOGGER.debug("Quote source %s had no price for %s: %s", source.name, symbol, result.error)

        return QuoteResult.failed(
            symbol,
            f'Unable to fetch stock data for "{symbol}". Verify the symbol and try again later.',
        )

    __call__ = lookup


__all__ = ["QuoteSource", "ChainedQuoteProvider", "DEFAULT_HEADERS"]
