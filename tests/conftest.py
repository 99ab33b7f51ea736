"""Shared test fixtures for the portfolio tracker."""

from decimal import Decimal

import pytest

from portfolio_tracker.engine import PortfolioEngine
from portfolio_tracker.models import PortfolioState, QuoteResult


class MemoryStore:
    """State store that keeps every saved state in memory."""

    def __init__(self, initial=None):
        self.initial = initial or PortfolioState()
        self.saved = []

    def load(self):
        return self.initial

    def save(self, state):
        self.saved.append(state)

    @property
    def last(self):
        return self.saved[-1] if self.saved else None


class FakeQuotes:
    """Quote lookup returning canned prices; symbols mapped to exceptions raise."""

    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.calls = []

    def __call__(self, symbol):
        self.calls.append(symbol)
        outcome = self.prices.get(symbol)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, QuoteResult):
            return outcome
        if outcome is None:
            return QuoteResult.failed(symbol, f"unknown symbol {symbol}")
        return QuoteResult.ok(
            symbol,
            Decimal(str(outcome)),
            name=f"{symbol} Inc.",
            exchange="NASDAQ",
            currency="USD",
            sector="Technology",
        )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def quotes():
    return FakeQuotes()


@pytest.fixture
def engine(store, quotes):
    return PortfolioEngine(store, quotes)


def buy(engine, symbol="AAPL", quantity=10, price=150, brokerage=None, **kwargs):
    """Record a USD NASDAQ purchase with sensible defaults."""
    kwargs.setdefault("purchase_date", "2024-01-15")
    return engine.record_purchase(
        symbol=symbol,
        name=kwargs.pop("name", f"{symbol.upper()} Inc."),
        exchange=kwargs.pop("exchange", "NASDAQ"),
        currency=kwargs.pop("currency", "USD"),
        quantity=quantity,
        buy_price=price,
        brokerage=brokerage,
        **kwargs,
    )
