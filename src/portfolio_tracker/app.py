"""FastAPI application exposing the portfolio dashboard, quote API and refresh schedule.

Run with ``uvicorn --factory portfolio_tracker.app:create_app``.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.engine import Engine

from .config import Settings
from .engine import PortfolioEngine
from .errors import NotFoundError, PortfolioError, QuoteLookupError, ValidationError
from .logging_utils import configure_logging
from .models import Allocation, HoldingView
from .quotes import ChainedQuoteProvider
from .runner import build_quote_provider, build_store
from .store import create_db_engine, ensure_schema, get_or_create_schedule, update_schedule

LOGGER = logging.getLogger(__name__)

JOB_ID = "price-refresh"
CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$"}

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def format_currency(amount: Any, currency: str = "INR") -> str:
    value = Decimal(str(amount or 0))
    sign = "-" if value < 0 else ""
    return f"{sign}{CURRENCY_SYMBOLS.get(currency, currency + ' ')}{abs(value):,.2f}"


def format_percentage(value: Any) -> str:
    return f"{Decimal(str(value or 0)):.2f}%"


templates.env.filters["currency"] = format_currency
templates.env.filters["percentage"] = format_percentage


def _format_schedule(schedule: dict[str, Any]) -> str:
    return f"{int(schedule['hour']):02d}:{int(schedule['minute']):02d}"


def _parse_time(value: str) -> Tuple[int, int]:
    value = value.strip()
    if not value or ":" not in value:
        raise ValueError("Time must be in HH:MM format")
    hour_str, minute_str = value.split(":", 1)
    hour = int(hour_str)
    minute = int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("Hours must be 0-23 and minutes 0-59")
    return hour, minute


def _holding_payload(view: HoldingView) -> dict[str, Any]:
    holding = view.holding
    return {
        "id": holding.id,
        "symbol": holding.symbol,
        "name": holding.name,
        "exchange": holding.exchange,
        "currency": holding.currency,
        "sector": holding.sector,
        "quantity": float(holding.quantity),
        "average_buy_price": float(holding.average_buy_price),
        "current_price": None if holding.current_price is None else float(holding.current_price),
        "market_value": float(view.market_value),
        "gain_loss": float(view.gain_loss),
        "gain_loss_percentage": float(view.gain_loss_percentage),
        "transactions": [transaction.to_dict() for transaction in holding.transactions],
    }


def _allocation_payload(rows: list[Allocation]) -> list[dict[str, Any]]:
    return [
        {"label": row.label, "value": float(row.value), "percentage": float(row.percentage)}
        for row in rows
    ]


def create_app(
    settings: Settings | None = None,
    *,
    portfolio: PortfolioEngine | None = None,
    quote_provider: ChainedQuoteProvider | None = None,
    schedule_engine: Engine | None = None,
) -> FastAPI:
    """Wire settings, engine, quote provider and scheduler into a FastAPI app."""

    configure_logging()
    settings = settings or Settings.load()
    provider = quote_provider or build_quote_provider(settings)
    portfolio = portfolio or PortfolioEngine(
        build_store(settings), provider.lookup, base_currency=settings.base_currency
    )
    db_engine = schedule_engine or create_db_engine(settings.database_url)
    ensure_schema(db_engine)
    scheduler = AsyncIOScheduler()

    async def _refresh_job() -> None:
        """Wrapper for running a price refresh within the scheduler."""

        LOGGER.info("Running scheduled price refresh")
        try:
            await portfolio.refresh_prices()
        except Exception:  # pragma: no cover
            LOGGER.exception("Scheduled price refresh failed")
        else:
            LOGGER.info("Scheduled price refresh completed")

    def _configure_job(schedule: dict[str, Any]) -> None:
        """Ensure the APScheduler job reflects the configured schedule."""

        if not schedule["enabled"]:
            if scheduler.get_job(JOB_ID):
                scheduler.remove_job(JOB_ID)
                LOGGER.info("Removed scheduled price refresh")
            return

        trigger = CronTrigger(
            hour=schedule["hour"],
            minute=schedule["minute"],
            timezone=ZoneInfo(schedule["timezone"]),
        )
        if scheduler.get_job(JOB_ID):
            scheduler.reschedule_job(JOB_ID, trigger=trigger)
            LOGGER.info(
                "Rescheduled price refresh for %02d:%02d %s",
                schedule["hour"],
                schedule["minute"],
                schedule["timezone"],
            )
        else:
            scheduler.add_job(_refresh_job, trigger=trigger, id=JOB_ID, replace_existing=True)
            LOGGER.info(
                "Scheduled price refresh for %02d:%02d %s",
                schedule["hour"],
                schedule["minute"],
                schedule["timezone"],
            )

    def _render_dashboard(request: Request, error: Optional[str] = None, status_code: int = 200) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "summary": portfolio.summary(),
                "holdings": portfolio.holding_views(),
                "sectors": portfolio.sector_allocation(),
                "today": date.today().isoformat(),
                "error": error,
            },
            status_code=status_code,
        )

    def _render_schedule(
        request: Request,
        schedule: dict[str, Any],
        *,
        updated: bool = False,
        error: Optional[str] = None,
        status_code: int = 200,
    ) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "schedule.html",
            {
                "schedule_time": _format_schedule(schedule),
                "schedule_timezone": schedule["timezone"],
                "schedule_enabled": schedule["enabled"],
                "updated": updated,
                "error": error,
            },
            status_code=status_code,
        )

    app = FastAPI(title="Portfolio Tracker", default_response_class=HTMLResponse)
    app.state.portfolio = portfolio
    app.state.scheduler = scheduler

    @app.on_event("startup")
    async def startup_event() -> None:
        LOGGER.info("Starting FastAPI application")
        _configure_job(get_or_create_schedule(db_engine))
        if not scheduler.running:
            scheduler.start()
            LOGGER.info("Scheduler started")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if scheduler.running:
            scheduler.shutdown()
            LOGGER.info("Scheduler shut down")

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request) -> HTMLResponse:
        LOGGER.debug("Rendering dashboard view")
        return _render_dashboard(request)

    @app.post("/holdings", response_class=HTMLResponse)
    async def add_holding(
        request: Request,
        symbol: str = Form(...),
        quantity: str = Form(...),
        price: str = Form(...),
        purchase_date: str = Form(""),
        brokerage: str = Form(""),
        notes: str = Form(""),
        name: str = Form(""),
        exchange: str = Form(""),
        currency: str = Form(""),
        sector: str = Form(""),
        current_price: str = Form(""),
    ):
        trade_date = purchase_date or date.today().isoformat()
        try:
            if name.strip() and exchange.strip() and currency.strip():
                portfolio.record_purchase(
                    symbol=symbol,
                    name=name,
                    exchange=exchange,
                    currency=currency,
                    quantity=quantity,
                    buy_price=price,
                    purchase_date=trade_date,
                    current_price=current_price or None,
                    sector=sector or None,
                    brokerage=brokerage or None,
                    notes=notes or None,
                )
            else:
                await portfolio.lookup_and_record_purchase(
                    symbol,
                    quantity,
                    price,
                    trade_date,
                    brokerage=brokerage or None,
                    notes=notes or None,
                )
        except (ValidationError, QuoteLookupError) as exc:
            LOGGER.warning("Rejected purchase of %s: %s", symbol, exc)
            return _render_dashboard(request, error=str(exc), status_code=status.HTTP_400_BAD_REQUEST)
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)

    @app.post("/holdings/{holding_id}/delete", response_class=HTMLResponse)
    async def delete_holding(request: Request, holding_id: str):
        try:
            portfolio.delete_holding(holding_id)
        except NotFoundError as exc:
            return _render_dashboard(request, error=str(exc), status_code=status.HTTP_404_NOT_FOUND)
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)

    @app.post("/refresh", response_class=HTMLResponse)
    async def refresh(request: Request):
        await portfolio.refresh_prices()
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/api/stock", response_class=JSONResponse)
    async def stock_quote(symbol: Optional[str] = None) -> JSONResponse:
        LOGGER.debug("Stock API called for symbol %s", symbol)
        if not symbol or not symbol.strip():
            return JSONResponse(
                {"success": False, "error": "Symbol parameter is required"},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        result = await asyncio.to_thread(provider.lookup, symbol)
        if not result.success:
            return JSONResponse(result.to_dict(), status_code=status.HTTP_404_NOT_FOUND)
        return JSONResponse(result.to_dict())

    @app.get("/api/holdings", response_class=JSONResponse)
    async def holdings_api() -> JSONResponse:
        return JSONResponse([_holding_payload(view) for view in portfolio.holding_views()])

    @app.get("/api/summary", response_class=JSONResponse)
    async def summary_api() -> JSONResponse:
        summary = portfolio.summary()
        return JSONResponse(
            {
                "total_invested": float(summary.total_invested),
                "current_value": float(summary.current_value),
                "total_gain_loss": float(summary.total_gain_loss),
                "total_gain_loss_percentage": float(summary.total_gain_loss_percentage),
                "currency": summary.currency,
            }
        )

    @app.get("/api/allocations", response_class=JSONResponse)
    async def allocations_api() -> JSONResponse:
        return JSONResponse(
            {
                "sectors": _allocation_payload(portfolio.sector_allocation()),
                "currencies": _allocation_payload(portfolio.currency_allocation()),
            }
        )

    @app.get("/schedule", response_class=HTMLResponse)
    async def show_schedule(request: Request) -> HTMLResponse:
        LOGGER.debug("Rendering schedule view")
        schedule = get_or_create_schedule(db_engine)
        return _render_schedule(request, schedule, updated=bool(request.query_params.get("updated")))

    @app.post("/schedule", response_class=HTMLResponse)
    async def update_schedule_view(request: Request, time: str = Form(...), enabled: str = Form("")):
        try:
            hour, minute = _parse_time(time)
        except ValueError as exc:
            LOGGER.warning("Invalid schedule submitted: %s", exc)
            return _render_schedule(
                request,
                get_or_create_schedule(db_engine),
                error=str(exc),
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        schedule = update_schedule(db_engine, hour, minute, enabled=bool(enabled))
        _configure_job(schedule)
        LOGGER.info(
            "Updated refresh schedule to %02d:%02d %s (enabled=%s)",
            hour,
            minute,
            schedule["timezone"],
            schedule["enabled"],
        )
        return RedirectResponse(url="/schedule?updated=1", status_code=status.HTTP_303_SEE_OTHER)

    @app.exception_handler(PortfolioError)
    async def portfolio_error_handler(request: Request, exc: PortfolioError) -> JSONResponse:
        code = status.HTTP_404_NOT_FOUND if isinstance(exc, NotFoundError) else status.HTTP_400_BAD_REQUEST
        return JSONResponse({"success": False, "error": str(exc)}, status_code=code)

    return app


__all__ = ["create_app", "format_currency", "format_percentage"]
