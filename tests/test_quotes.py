"""Tests for the HTTP quote sources and the fallback chain."""

import threading
from decimal import Decimal

import pytest
import requests

from portfolio_tracker.models import QuoteResult
from portfolio_tracker.quotes import (
    AlphaVantageSource,
    ChainedQuoteProvider,
    FMPSource,
    YahooChartSource,
    YahooPageSource,
    create_provider,
    create_source,
)
from portfolio_tracker.quotes.base import QuoteSource
from portfolio_tracker.quotes.utils import (
    currency_for_exchange,
    exchange_from_symbol,
    parse_price,
    yahoo_symbol,
)


class FakeResponse:
    def __init__(self, payload=None, text="", status_code=200):
        self.payload = payload
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.payload is None:
            raise ValueError("no JSON")
        return self.payload


class FakeSession:
    """Returns queued responses keyed by URL prefix and records requests."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        for prefix, response in self.routes.items():
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(status_code=404)


class StaticSource(QuoteSource):
    def __init__(self, name, outcome):
        super().__init__(session=FakeSession({}))
        self.name = name
        self.outcome = outcome
        self.calls = 0

    def fetch_quote(self, symbol):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def chart_payload(**meta):
    return {"chart": {"result": [{"meta": meta}], "error": None}}


class TestUtils:
    @pytest.mark.parametrize(
        "raw, expected",
        [("1,234.50", Decimal("1234.50")), (2500, Decimal("2500")), ("₹ 99.5", Decimal("99.5")), ("", None), (None, None)],
    )
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected

    def test_symbol_helpers(self):
        assert yahoo_symbol("tcs") == "TCS.NS"
        assert yahoo_symbol("AAPL") == "AAPL"
        assert yahoo_symbol("INFY.BO") == "INFY.BO"
        assert exchange_from_symbol("INFY.BO") == "BSE"
        assert exchange_from_symbol("TCS") == "NSE"
        assert exchange_from_symbol("MSFT") == "NASDAQ"
        assert currency_for_exchange("NSE") == "INR"
        assert currency_for_exchange("NASDAQ") == "USD"


class TestYahooChartSource:
    def test_reads_meta(self):
        session = FakeSession(
            {
                "https://query1.finance.yahoo.com/v8/finance/chart/AAPL": FakeResponse(
                    chart_payload(
                        regularMarketPrice=189.84,
                        longName="Apple Inc.",
                        fullExchangeName="NasdaqGS",
                        currency="USD",
                    )
                )
            }
        )
        result = YahooChartSource(session=session).fetch_quote("AAPL")
        assert result.success
        assert result.price == Decimal("189.84")
        assert result.name == "Apple Inc."
        assert result.exchange == "NasdaqGS"
        assert result.currency == "USD"
        assert result.source == "yahoo"

    def test_falls_back_to_second_host_and_suffixes_indian_symbols(self):
        session = FakeSession(
            {
                "https://query1.finance.yahoo.com": requests.ConnectionError("refused"),
                "https://query2.finance.yahoo.com/v8/finance/chart/TCS.NS": FakeResponse(
                    chart_payload(regularMarketPrice="3,890.10")
                ),
            }
        )
        result = YahooChartSource(session=session).fetch_quote("TCS")
        assert result.price == Decimal("3890.10")
        assert result.exchange == "NSE"
        assert result.currency == "INR"
        assert result.name == "TCS Corp"
        assert [url for url, _ in session.requests][-1].endswith("/TCS.NS")

    def test_missing_price_fails(self):
        session = FakeSession({"https://query": FakeResponse({"chart": {"result": []}})})
        result = YahooChartSource(session=session).fetch_quote("NOPE")
        assert not result.success
        assert "regularMarketPrice" in result.error


class TestYahooPageSource:
    def test_scrapes_streamer(self):
        html = """
        <html><body>
          <h1>Reliance Industries Limited (RELIANCE.NS)</h1>
          <fin-streamer data-field="regularMarketPrice" data-symbol="RELIANCE.NS"
                        data-value="2,945.60">2,945.60</fin-streamer>
        </body></html>
        """
        session = FakeSession({YahooPageSource.BASE_URL: FakeResponse(text=html)})
        result = YahooPageSource(session=session).fetch_quote("RELIANCE")
        assert result.price == Decimal("2945.60")
        assert result.name.startswith("Reliance Industries")
        assert result.exchange == "NSE"
        assert result.currency == "INR"

    def test_missing_element(self):
        session = FakeSession({YahooPageSource.BASE_URL: FakeResponse(text="<html></html>")})
        result = YahooPageSource(session=session).fetch_quote("AAPL")
        assert not result.success
        assert "price element missing" in result.error

    def test_http_error_raises(self):
        session = FakeSession({YahooPageSource.BASE_URL: FakeResponse(status_code=503)})
        with pytest.raises(requests.HTTPError):
            YahooPageSource(session=session).fetch_quote("AAPL")


class TestAlphaVantageSource:
    def test_global_quote(self):
        session = FakeSession(
            {AlphaVantageSource.BASE_URL: FakeResponse({"Global Quote": {"05. price": "411.2200"}})}
        )
        result = AlphaVantageSource("key123", session=session).fetch_quote("MSFT")
        assert result.price == Decimal("411.2200")
        assert result.currency == "USD"
        _, params = session.requests[0]
        assert params == {"function": "GLOBAL_QUOTE", "symbol": "MSFT", "apikey": "key123"}

    def test_rate_limited_response(self):
        session = FakeSession({AlphaVantageSource.BASE_URL: FakeResponse({"Note": "limit"})})
        assert not AlphaVantageSource(session=session).fetch_quote("MSFT").success


class TestFMPSource:
    def test_requires_real_key(self):
        session = FakeSession({})
        for key in (None, "demo", "short"):
            result = FMPSource(key, session=session).fetch_quote("AAPL")
            assert result.error == "FMP API key not configured"
        assert session.requests == []

    def test_quote(self):
        session = FakeSession(
            {FMPSource.BASE_URL: FakeResponse([{"price": 190.5, "name": "Apple Inc.", "exchange": "NASDAQ"}])}
        )
        result = FMPSource("0123456789abcdef", session=session).fetch_quote("AAPL")
        assert result.price == Decimal("190.5")
        assert result.name == "Apple Inc."
        assert result.exchange == "NASDAQ"

    def test_empty_list(self):
        session = FakeSession({FMPSource.BASE_URL: FakeResponse([])})
        assert not FMPSource("0123456789abcdef", session=session).fetch_quote("AAPL").success


class TestChainedQuoteProvider:
    def test_returns_first_positive_price(self):
        first = StaticSource("one", RuntimeError("down"))
        second = StaticSource("two", QuoteResult.ok("AAPL", Decimal("0")))
        third = StaticSource("three", QuoteResult.ok("AAPL", Decimal("190"), source="three"))
        fourth = StaticSource("four", QuoteResult.ok("AAPL", Decimal("191")))

        result = ChainedQuoteProvider([first, second, third, fourth]).lookup(" aapl ")

        assert result.price == Decimal("190")
        assert result.source == "three"
        assert fourth.calls == 0

    def test_all_sources_fail(self):
        provider = ChainedQuoteProvider([StaticSource("one", QuoteResult.failed("X", "nope"))])
        result = provider("X")
        assert not result.success
        assert 'Unable to fetch stock data for "X"' in result.error
        assert result.to_dict() == {"success": False, "symbol": "X", "error": result.error}

    def test_blank_symbol(self):
        assert ChainedQuoteProvider([]).lookup("  ").error == "Symbol is required"


class TestFactory:
    def test_create_source(self):
        assert isinstance(create_source("Yahoo"), YahooChartSource)
        assert isinstance(create_source("yahoo_page"), YahooPageSource)
        assert create_source("alphavantage", alpha_vantage_api_key="k").api_key == "k"
        assert create_source("fmp", fmp_api_key="abc").api_key == "abc"
        with pytest.raises(ValueError):
            create_source("bloomberg")

    def test_create_provider_shares_session(self):
        session = requests.Session()
        provider = create_provider(["yahoo", "fmp"], session=session, timeout=5)
        assert [source.name for source in provider.sources] == ["yahoo", "fmp"]
        assert all(source.session is session and source.timeout == 5 for source in provider.sources)


class TestSessions:
    def test_each_thread_gets_its_own_session(self):
        source = YahooChartSource()
        seen = []
        worker = threading.Thread(target=lambda: seen.append(source.session))
        worker.start()
        worker.join()

        assert source.session is source.session
        assert seen[0] is not source.session
        assert seen[0].headers["accept-language"] == "en-US,en;q=0.9"

    def test_injected_session_is_shared(self):
        session = requests.Session()
        source = YahooChartSource(session=session)
        seen = []
        worker = threading.Thread(target=lambda: seen.append(source.session))
        worker.start()
        worker.join()
        assert seen == [session]
        assert source.session is session
