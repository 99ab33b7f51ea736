"""Quote source factory."""
from __future__ import annotations

import logging
from typing import Iterable

import requests

from .alphavantage import AlphaVantageSource
from .base import ChainedQuoteProvider, QuoteSource
from .fmp import FMPSource
from .yahoo import YahooChartSource, YahooPageSource

LOGGER = logging.getLogger(__name__)


def create_source(
    name: str,
    *,
    session: requests.Session | None = None,
    timeout: float = 30,
    fmp_api_key: str | None = None,
    alpha_vantage_api_key: str = "demo",
) -> QuoteSource:
    """Instantiate the quote source registered under ``name``."""

    key = name.strip().lower()
    LOGGER.debug("Creating quote source %s", key)
    if key == "yahoo":
        return YahooChartSource(session=session, timeout=timeout)
    if key == "yahoo_page":
        return YahooPageSource(session=session, timeout=timeout)
    if key == "alphavantage":
        return AlphaVantageSource(alpha_vantage_api_key, session=session, timeout=timeout)
    if key == "fmp":
        return FMPSource(fmp_api_key, session=session, timeout=timeout)
    raise ValueError(f"Unsupported quote source: {name}")


def create_provider(
    names: Iterable[str],
    *,
    session: requests.Session | None = None,
    timeout: float = 30,
    fmp_api_key: str | None = None,
    alpha_vantage_api_key: str = "demo",
) -> ChainedQuoteProvider:
    """Build a provider that tries the named sources in order."""

    sources = [
        create_source(
            name,
            session=session,
            timeout=timeout,
            fmp_api_key=fmp_api_key,
            alpha_vantage_api_key=alpha_vantage_api_key,
        )
        for name in names
    ]
    return ChainedQuoteProvider(sources)


__all__ = [
    "create_source",
    "create_provider",
    "ChainedQuoteProvider",
    "QuoteSource",
    "YahooChartSource",
    "YahooPageSource",
    "AlphaVantageSource",
    "FMPSource",
]
