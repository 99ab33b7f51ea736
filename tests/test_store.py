"""Tests for the SQL and JSON file state stores and the refresh schedule."""

import json
from decimal import Decimal

import pytest

from conftest import buy
from portfolio_tracker.engine import PortfolioEngine
from portfolio_tracker.models import PortfolioState
from portfolio_tracker.store import (
    DEFAULT_SCHEDULE,
    JsonFileStore,
    SqlStateStore,
    create_db_engine,
    ensure_schema,
    get_or_create_schedule,
    update_schedule,
)


@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'portfolio.db'}")
    ensure_schema(engine)
    yield engine
    engine.dispose()


def populate(engine):
    buy(engine, symbol="AAPL", quantity=10, price=150, brokerage="4.5", current_price=170, sector="Technology")
    buy(engine, symbol="AAPL", quantity=5, price=160)
    buy(engine, symbol="INFY", quantity=3, price=1500, currency="INR", exchange="NSE", notes="long term")
    engine.add_goal("Retirement", "10000000", "2045-04-01", progress="12.5")


class TestSqlStateStore:
    def test_empty_database_loads_empty_state(self, db_engine):
        assert SqlStateStore(db_engine).load() == PortfolioState()

    def test_state_survives_reload(self, db_engine):
        engine = PortfolioEngine(SqlStateStore(db_engine))
        populate(engine)

        reloaded = PortfolioEngine(SqlStateStore(db_engine))

        assert reloaded.state == engine.state
        aapl = reloaded.find_holding("AAPL")
        assert aapl.quantity == Decimal("15")
        assert aapl.transactions[0].brokerage == Decimal("4.5")
        assert reloaded.portfolio_value() == engine.portfolio_value()

    def test_save_overwrites_single_row(self, db_engine):
        store = SqlStateStore(db_engine)
        engine = PortfolioEngine(store)
        buy(engine)
        engine.delete_holding(engine.holdings[0].id)
        assert store.load() == PortfolioState()


class TestJsonFileStore:
    def test_missing_file_loads_empty_state(self, tmp_path):
        assert JsonFileStore(tmp_path / "state.json").load() == PortfolioState()

    def test_state_survives_reload(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        engine = PortfolioEngine(JsonFileStore(path))
        populate(engine)

        reloaded = PortfolioEngine(JsonFileStore(path))

        assert reloaded.state == engine.state
        assert [p.name for p in path.parent.iterdir()] == ["state.json"]

    def test_decimals_are_written_as_strings(self, tmp_path):
        path = tmp_path / "state.json"
        engine = PortfolioEngine(JsonFileStore(path))
        buy(engine, quantity="0.5", price="100.10")

        document = json.loads(path.read_text(encoding="utf-8"))
        holding = document["holdings"][0]
        assert holding["quantity"] == "0.5"
        assert holding["transactions"][0]["price"] == "100.10"
        assert holding["current_price"] is None
        assert document["goals"] == []


class TestSchedule:
    def test_default_schedule_is_seeded_disabled(self, db_engine):
        schedule = get_or_create_schedule(db_engine)
        assert schedule == DEFAULT_SCHEDULE
        assert schedule["enabled"] is False
        assert get_or_create_schedule(db_engine) == DEFAULT_SCHEDULE

    def test_update_schedule_persists(self, db_engine):
        get_or_create_schedule(db_engine)
        result = update_schedule(db_engine, 9, 45, enabled=True, timezone="Asia/Kolkata")
        assert result == {"enabled": True, "hour": 9, "minute": 45, "timezone": "Asia/Kolkata"}
        assert get_or_create_schedule(db_engine) == result

    def test_update_without_existing_row(self, db_engine):
        update_schedule(db_engine, 7, 5, enabled=False)
        assert get_or_create_schedule(db_engine) == {
            "enabled": False,
            "hour": 7,
            "minute": 5,
            "timezone": "UTC",
        }
