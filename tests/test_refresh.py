"""Tests for the concurrent best-effort price refresh."""

import asyncio
from decimal import Decimal

import pytest

from conftest import FakeQuotes, MemoryStore, buy
from portfolio_tracker.engine import PortfolioEngine
from portfolio_tracker.models import QuoteResult


@pytest.fixture
def seeded(store, quotes):
    engine = PortfolioEngine(store, quotes)
    for symbol in ("A", "B", "C"):
        buy(engine, symbol=symbol, quantity=1, price=10, current_price=11)
    return engine


def prices(engine):
    return {h.symbol: h.current_price for h in engine.holdings}


@pytest.mark.asyncio
async def test_failure_for_one_symbol_keeps_its_price(seeded, quotes):
    quotes.prices.update({"A": "20", "B": RuntimeError("boom"), "C": "30"})
    await seeded.refresh_prices()
    assert prices(seeded) == {"A": Decimal("20"), "B": Decimal("11"), "C": Decimal("30")}


@pytest.mark.asyncio
async def test_failed_result_and_bad_prices_are_ignored(seeded, quotes):
    quotes.prices.update(
        {
            "A": QuoteResult.failed("A", "not found"),
            "B": QuoteResult.ok("B", Decimal("0")),
            "C": QuoteResult.ok("C", Decimal("-5")),
        }
    )
    await seeded.refresh_prices()
    assert prices(seeded) == {"A": Decimal("11"), "B": Decimal("11"), "C": Decimal("11")}


@pytest.mark.asyncio
async def test_malformed_response_is_ignored(seeded):
    def lookup(symbol):
        return {"success": True, "price": 99} if symbol == "A" else QuoteResult.ok(symbol, Decimal("12"))

    engine = PortfolioEngine(MemoryStore(seeded.state), lookup)
    await engine.refresh_prices()
    assert prices(engine) == {"A": Decimal("11"), "B": Decimal("12"), "C": Decimal("12")}


@pytest.mark.asyncio
async def test_refresh_is_idempotent(seeded, quotes):
    quotes.prices.update({"A": "20", "B": "21", "C": "22"})
    await seeded.refresh_prices()
    first = seeded.state
    await seeded.refresh_prices()
    assert seeded.state == first


@pytest.mark.asyncio
async def test_refresh_saves_once_and_touches_only_prices(seeded, store, quotes):
    quotes.prices.update({"A": "20"})
    before = {h.id: h for h in seeded.holdings}
    saves = len(store.saved)

    await seeded.refresh_prices()

    assert len(store.saved) == saves + 1
    for holding in seeded.holdings:
        old = before[holding.id]
        assert holding.quantity == old.quantity
        assert holding.average_buy_price == old.average_buy_price
        assert holding.transactions == old.transactions


@pytest.mark.asyncio
async def test_lookups_run_concurrently_and_apply_atomically(store):
    started = []
    release = asyncio.Event()
    observed = []

    async def lookup(symbol):
        started.append(symbol)
        if len(started) == 3:
            release.set()
        await release.wait()
        observed.append(prices(engine))
        return QuoteResult.ok(symbol, Decimal("50"))

    engine = PortfolioEngine(store, lookup)
    for symbol in ("A", "B", "C"):
        buy(engine, symbol=symbol, quantity=1, price=10)

    await asyncio.wait_for(engine.refresh_prices(), timeout=5)

    assert sorted(started) == ["A", "B", "C"]
    assert all(snapshot == {"A": None, "B": None, "C": None} for snapshot in observed)
    assert prices(engine) == {"A": Decimal("50"), "B": Decimal("50"), "C": Decimal("50")}


@pytest.mark.asyncio
async def test_refresh_without_provider_changes_nothing(store):
    engine = PortfolioEngine(store)
    buy(engine, quantity=1, price=10, current_price=11)
    await engine.refresh_prices()
    assert engine.holdings[0].current_price == Decimal("11")


@pytest.mark.asyncio
async def test_refresh_with_no_holdings(engine, quotes, store):
    await engine.refresh_prices()
    assert quotes.calls == []
    assert store.saved == []


@pytest.mark.asyncio
async def test_provider_queried_by_symbol():
    quotes = FakeQuotes({"AAPL": "190"})
    engine = PortfolioEngine(None, quotes)
    buy(engine, symbol="aapl", quantity=1, price=100)
    await engine.refresh_prices()
    assert quotes.calls == ["AAPL"]
    assert engine.holdings[0].current_price == Decimal("190")


@pytest.mark.asyncio
async def test_async_callable_object_is_awaited(store):
    class AsyncQuotes:
        def __init__(self):
            self.calls = []

        async def __call__(self, symbol):
            self.calls.append(symbol)
            return QuoteResult.ok(symbol, Decimal("9"))

    quotes = AsyncQuotes()
    engine = PortfolioEngine(store, quotes)
    buy(engine, symbol="A", quantity=1, price=10)
    buy(engine, symbol="B", quantity=1, price=10)

    await engine.refresh_prices()

    assert sorted(quotes.calls) == ["A", "B"]
    assert prices(engine) == {"A": Decimal("9"), "B": Decimal("9")}


@pytest.mark.asyncio
async def test_sync_callable_returning_awaitable(store):
    async def fetch(symbol):
        return QuoteResult.ok(symbol, Decimal("7"))

    engine = PortfolioEngine(store, lambda symbol: fetch(symbol))
    buy(engine, symbol="A", quantity=1, price=10)
    await engine.refresh_prices()
    assert prices(engine) == {"A": Decimal("7")}
