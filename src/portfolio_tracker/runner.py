"""Command line entry point for the portfolio tracker."""
from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date
from typing import Iterable

from .config import Settings
from .engine import PortfolioEngine
from .errors import PortfolioError
from .logging_utils import configure_logging
from .quotes import ChainedQuoteProvider, create_provider
from .store import JsonFileStore, SqlStateStore, StateStore, create_db_engine

LOGGER = logging.getLogger(__name__)


def build_store(settings: Settings) -> StateStore:
    """Pick the JSON file store when configured, else the database store."""

    if settings.state_file:
        LOGGER.debug("Using JSON state file %s", settings.state_file)
        return JsonFileStore(settings.state_file)
    return SqlStateStore(create_db_engine(settings.database_url))


def build_quote_provider(settings: Settings) -> ChainedQuoteProvider:
    return create_provider(
        settings.quote_sources,
        timeout=settings.http_timeout,
        fmp_api_key=settings.fmp_api_key,
        alpha_vantage_api_key=settings.alpha_vantage_api_key,
    )


def build_engine(settings: Settings) -> PortfolioEngine:
    provider = build_quote_provider(settings)
    return PortfolioEngine(
        build_store(settings),
        provider.lookup,
        base_currency=settings.base_currency,
    )


def run_refresh(engine: PortfolioEngine) -> None:
    """Refresh all prices once."""

    asyncio.run(engine.refresh_prices())


def _print_summary(engine: PortfolioEngine) -> None:
    for view in engine.holding_views():
        holding = view.holding
        print(
            f"{holding.symbol:<12} {holding.quantity:>10} @ {holding.average_buy_price:>12.2f} "
            f"now {view.effective_price:>12.2f}  value {view.market_value:>14.2f}  "
            f"P/L {view.gain_loss:>12.2f} ({view.gain_loss_percentage:.2f}%)"
        )
    summary = engine.summary()
    print(f"Total invested:  {summary.total_invested:.2f} {summary.currency}")
    print(f"Portfolio value: {summary.current_value:.2f} {summary.currency}")
    print(f"Gain/Loss:       {summary.total_gain_loss:.2f} ({summary.total_gain_loss_percentage:.2f}%)")


def _buy(engine: PortfolioEngine, options: argparse.Namespace) -> None:
    if options.name and options.exchange and options.currency:
        holding = engine.record_purchase(
            symbol=options.symbol,
            name=options.name,
            exchange=options.exchange,
            currency=options.currency,
            quantity=options.quantity,
            buy_price=options.price,
            purchase_date=options.date,
            sector=options.sector,
            brokerage=options.brokerage,
            notes=options.notes,
        )
    else:
        holding = asyncio.run(
            engine.lookup_and_record_purchase(
                options.symbol,
                options.quantity,
                options.price,
                options.date,
                brokerage=options.brokerage,
                notes=options.notes,
            )
        )
    print(f"{holding.symbol}: {holding.quantity} units, average {holding.average_buy_price:.2f}")


def parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    buy = commands.add_parser("buy", help="Record a purchase")
    buy.add_argument("symbol")
    buy.add_argument("quantity")
    buy.add_argument("price")
    buy.add_argument("--date", default=date.today().isoformat(), help="Purchase date (default: today)")
    buy.add_argument("--brokerage", default="0")
    buy.add_argument("--notes")
    buy.add_argument("--name", help="Company name; skips the quote lookup with --exchange and --currency")
    buy.add_argument("--exchange")
    buy.add_argument("--currency", choices=["INR", "USD"])
    buy.add_argument("--sector")

    commands.add_parser("refresh", help="Refresh current prices for all holdings")
    commands.add_parser("summary", help="Print holdings and portfolio totals")

    quote = commands.add_parser("quote", help="Look up a single symbol")
    quote.add_argument("symbol")
    return parser.parse_args(args=args)


def main(argv: Iterable[str] | None = None) -> int:
    options = parse_args(argv)
    configure_logging(logging.DEBUG if options.verbose else None)

    try:
        settings = Settings.load()
        if options.command == "quote":
            result = build_quote_provider(settings).lookup(options.symbol)
            if not result.success:
                print(result.error)
                return 1
            print(f"{result.symbol} {result.name} [{result.exchange}] {result.price} {result.currency}")
            return 0

        engine = build_engine(settings)
        if options.command == "buy":
            _buy(engine, options)
        elif options.command == "refresh":
            run_refresh(engine)
            _print_summary(engine)
        elif options.command == "summary":
            _print_summary(engine)
    except PortfolioError as exc:
        LOGGER.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
