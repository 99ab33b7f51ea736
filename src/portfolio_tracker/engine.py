"""Portfolio engine: consolidation of purchases, ledger CRUD, refresh and valuation."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

from . import valuation
from .errors import (
    GoalNotFoundError,
    HoldingNotFoundError,
    QuoteLookupError,
    TransactionNotFoundError,
    ValidationError,
)
from .models import (
    Allocation,
    Goal,
    Holding,
    HoldingView,
    PortfolioState,
    PortfolioSummary,
    QuoteResult,
    RefreshOutcome,
    Transaction,
    TransactionType,
    iso_date,
    new_id,
    normalize_currency,
    normalize_symbol,
    optional_decimal,
    require_text,
    to_decimal,
)
from .store import StateStore

LOGGER = logging.getLogger(__name__)

QuoteLookup = Callable[[str], Union[QuoteResult, Awaitable[QuoteResult]]]
DateLike = Union[date, str]

ZERO = Decimal("0")

HOLDING_FIELDS = {
    "symbol",
    "name",
    "exchange",
    "currency",
    "sector",
    "quantity",
    "average_buy_price",
    "current_price",
}
TRANSACTION_FIELDS = {"type", "date", "quantity", "price", "brokerage", "notes"}
GOAL_FIELDS = {"name", "target_amount", "target_date", "notes", "progress"}


def _positive(value: Any, field_name: str) -> Decimal:
    result = to_decimal(value, field_name)
    if result <= 0:
        raise ValidationError(f"{field_name} must be positive")
    return result


def _price(value: Any, field_name: str) -> Decimal:
    result = _positive(value, field_name)
    if result < valuation.AVERAGE_PRICE_QUANTUM:
        raise ValidationError(f"{field_name} must be at least {valuation.AVERAGE_PRICE_QUANTUM}")
    return result


def _optional_positive(value: Any, field_name: str) -> Optional[Decimal]:
    result = optional_decimal(value, field_name)
    if result is not None and result <= 0:
        raise ValidationError(f"{field_name} must be positive")
    return result


def _non_negative(value: Any, field_name: str) -> Decimal:
    result = optional_decimal(value, field_name)
    if result is None:
        return ZERO
    if result < 0:
        raise ValidationError(f"{field_name} must not be negative")
    return result


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _transaction_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unsupported transaction type: {value!r}") from exc


def _check_fields(updates: dict[str, Any], allowed: set[str], kind: str) -> None:
    unknown = sorted(set(updates) - allowed)
    if unknown:
        raise ValidationError(f"Cannot update {kind} field(s): {', '.join(unknown)}")


class PortfolioEngine:
    """State container owning holdings and goals.

    Every mutation validates its input first, builds a new immutable
    :class:`PortfolioState` and swaps it in as one step before handing it to the
    store. Readers therefore never observe a half-applied change.

    Ledger operations (:meth:`add_transaction`, :meth:`update_transaction`,
    :meth:`delete_transaction`) edit a holding's transactions without touching
    its ``quantity`` or ``average_buy_price``. Only :meth:`record_purchase` and
    :meth:`recompute_holding` derive those from the ledger; callers editing the
    ledger directly are responsible for calling :meth:`recompute_holding`.
    """

    def __init__(
        self,
        store: StateStore | None = None,
        quote_provider: QuoteLookup | None = None,
        *,
        base_currency: str = "INR",
    ) -> None:
        self._store = store
        self._quote_provider = quote_provider
        self.base_currency = normalize_currency(base_currency)
        self._state = store.load() if store is not None else PortfolioState()
        LOGGER.debug("Loaded %d holdings and %d goals", len(self._state.holdings), len(self._state.goals))

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> PortfolioState:
        return self._state

    @property
    def holdings(self) -> tuple[Holding, ...]:
        return self._state.holdings

    @property
    def goals(self) -> tuple[Goal, ...]:
        return self._state.goals

    def _commit(self, state: PortfolioState) -> None:
        self._state = state
        if self._store is not None:
            self._store.save(state)

    def _replace_holding(self, updated: Holding) -> None:
        holdings = tuple(updated if h.id == updated.id else h for h in self._state.holdings)
        self._commit(replace(self._state, holdings=holdings))

    def find_holding(self, symbol: str) -> Optional[Holding]:
        """Return the holding for ``symbol`` (case-insensitive) if any."""

        wanted = normalize_symbol(symbol)
        for holding in self._state.holdings:
            if holding.symbol.upper() == wanted:
                return holding
        return None

    def get_holding(self, holding_id: str) -> Holding:
        for holding in self._state.holdings:
            if holding.id == holding_id:
                return holding
        raise HoldingNotFoundError(f"Holding {holding_id} not found")

    def get_transaction(self, transaction_id: str) -> Transaction:
        for holding in self._state.holdings:
            for transaction in holding.transactions:
                if transaction.id == transaction_id:
                    return transaction
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

    def get_goal(self, goal_id: str) -> Goal:
        for goal in self._state.goals:
            if goal.id == goal_id:
                return goal
        raise GoalNotFoundError(f"Goal {goal_id} not found")

    # ---------------------------------------------------------- consolidation

    def record_purchase(
        self,
        symbol: str,
        name: str,
        exchange: str,
        currency: str,
        quantity: Any,
        buy_price: Any,
        purchase_date: DateLike,
        current_price: Any = None,
        sector: Optional[str] = None,
        brokerage: Any = None,
        notes: Optional[str] = None,
    ) -> Holding:
        """Record a BUY, consolidating into an existing holding of the same symbol."""

        symbol = normalize_symbol(symbol)
        name = require_text(name, "name")
        exchange = require_text(exchange, "exchange")
        currency = normalize_currency(currency)
        quantity = _positive(quantity, "quantity")
        buy_price = _price(buy_price, "buy_price")
        current_price = _optional_positive(current_price, "current_price")
        brokerage = _non_negative(brokerage, "brokerage")
        trade_date = iso_date(purchase_date, "purchase_date")

        existing = self.find_holding(symbol)
        holding_id = existing.id if existing is not None else new_id()
        transaction = Transaction(
            id=new_id(),
            holding_id=holding_id,
            type=TransactionType.BUY,
            date=trade_date,
            quantity=quantity,
            price=buy_price,
            brokerage=brokerage,
            notes=_optional_text(notes),
        )

        if existing is not None:
            ledger = existing.transactions + (transaction,)
            total_quantity, average = valuation.weighted_average_cost(ledger)
            updated = replace(
                existing,
                transactions=ledger,
                quantity=total_quantity,
                average_buy_price=average,
                current_price=current_price if current_price is not None else existing.current_price,
            )
            self._replace_holding(updated)
            LOGGER.info(
                "Consolidated purchase of %s %s @ %s into holding %s (quantity now %s)",
                quantity,
                symbol,
                buy_price,
                holding_id,
                total_quantity,
            )
            return updated

        # A single-entry ledger reduces to buy_price + brokerage / quantity.
        total_quantity, average = valuation.weighted_average_cost((transaction,))
        holding = Holding(
            id=holding_id,
            symbol=symbol,
            name=name,
            exchange=exchange,
            currency=currency,
            sector=_optional_text(sector),
            quantity=total_quantity,
            average_buy_price=average,
            current_price=current_price,
            transactions=(transaction,),
        )
        self._commit(replace(self._state, holdings=self._state.holdings + (holding,)))
        LOGGER.info("Created holding %s for %s with %s units @ %s", holding_id, symbol, quantity, buy_price)
        return holding

    async def lookup_and_record_purchase(
        self,
        symbol: str,
        quantity: Any,
        buy_price: Any,
        purchase_date: DateLike,
        *,
        brokerage: Any = None,
        notes: Optional[str] = None,
    ) -> Holding:
        """Fill name, exchange, currency and sector from a quote, then record the purchase."""

        symbol = normalize_symbol(symbol)
        _positive(quantity, "quantity")
        _price(buy_price, "buy_price")
        result = await self._lookup(symbol)
        if not isinstance(result, QuoteResult):
            raise QuoteLookupError(f"malformed quote response for {symbol}: {result!r}")
        if result.usable_price is None:
            raise QuoteLookupError(result.error or f"No quote available for {symbol}")
        currency = result.currency if result.currency in ("INR", "USD") else "USD"
        return self.record_purchase(
            symbol=symbol,
            name=result.name or symbol,
            exchange=result.exchange or "Unknown",
            currency=currency,
            quantity=quantity,
            buy_price=buy_price,
            purchase_date=purchase_date,
            current_price=result.usable_price,
            sector=result.sector,
            brokerage=brokerage,
            notes=notes,
        )

    def recompute_holding(self, holding_id: str) -> Holding:
        """Re-derive quantity and average cost from the holding's BUY entries."""

        holding = self.get_holding(holding_id)
        quantity, average = valuation.weighted_average_cost(holding.transactions)
        updated = replace(holding, quantity=quantity, average_buy_price=average)
        self._replace_holding(updated)
        LOGGER.info("Recomputed holding %s: quantity=%s average=%s", holding_id, quantity, average)
        return updated

    # -------------------------------------------------------- holding CRUD

    def update_holding(self, holding_id: str, **updates: Any) -> Holding:
        _check_fields(updates, HOLDING_FIELDS, "holding")
        holding = self.get_holding(holding_id)
        changes: dict[str, Any] = {}
        for key, value in updates.items():
            if key == "symbol":
                symbol = normalize_symbol(value)
                clash = self.find_holding(symbol)
                if clash is not None and clash.id != holding_id:
                    raise ValidationError(f"A holding for {symbol} already exists")
                changes[key] = symbol
            elif key in ("name", "exchange"):
                changes[key] = require_text(value, key)
            elif key == "currency":
                changes[key] = normalize_currency(value)
            elif key == "sector":
                changes[key] = _optional_text(value)
            elif key == "quantity":
                changes[key] = _positive(value, key)
            elif key == "average_buy_price":
                changes[key] = _price(value, key)
            elif key == "current_price":
                changes[key] = _optional_positive(value, key)
        updated = replace(holding, **changes)
        self._replace_holding(updated)
        LOGGER.info("Updated holding %s (%s)", holding_id, ", ".join(sorted(changes)) or "no changes")
        return updated

    def delete_holding(self, holding_id: str) -> None:
        """Remove a holding together with its transactions."""

        holding = self.get_holding(holding_id)
        holdings = tuple(h for h in self._state.holdings if h.id != holding_id)
        self._commit(replace(self._state, holdings=holdings))
        LOGGER.info(
            "Deleted holding %s (%s) and %d transactions",
            holding_id,
            holding.symbol,
            len(holding.transactions),
        )

    # ---------------------------------------------------- transaction CRUD

    def add_transaction(
        self,
        holding_id: str,
        type: Any,
        date: DateLike,
        quantity: Any,
        price: Any,
        brokerage: Any = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Append a ledger entry without changing the holding's quantity or average."""

        holding = self.get_holding(holding_id)
        transaction = Transaction(
            id=new_id(),
            holding_id=holding_id,
            type=_transaction_type(type),
            date=iso_date(date),
            quantity=_positive(quantity, "quantity"),
            price=_price(price, "price"),
            brokerage=_non_negative(brokerage, "brokerage"),
            notes=_optional_text(notes),
        )
        self._replace_holding(replace(holding, transactions=holding.transactions + (transaction,)))
        LOGGER.info("Added %s transaction %s to holding %s", transaction.type.value, transaction.id, holding_id)
        return transaction

    def update_transaction(self, transaction_id: str, **updates: Any) -> Transaction:
        _check_fields(updates, TRANSACTION_FIELDS, "transaction")
        current = self.get_transaction(transaction_id)
        changes: dict[str, Any] = {}
        for key, value in updates.items():
            if key == "type":
                changes[key] = _transaction_type(value)
            elif key == "date":
                changes[key] = iso_date(value)
            elif key == "quantity":
                changes[key] = _positive(value, key)
            elif key == "price":
                changes[key] = _price(value, key)
            elif key == "brokerage":
                changes[key] = _non_negative(value, key)
            elif key == "notes":
                changes[key] = _optional_text(value)
        updated = replace(current, **changes)
        holding = self.get_holding(current.holding_id)
        ledger = tuple(updated if t.id == transaction_id else t for t in holding.transactions)
        self._replace_holding(replace(holding, transactions=ledger))
        LOGGER.info("Updated transaction %s", transaction_id)
        return updated

    def delete_transaction(self, transaction_id: str) -> None:
        """Drop a ledger entry; the holding's quantity and average are left as they were."""

        transaction = self.get_transaction(transaction_id)
        holding = self.get_holding(transaction.holding_id)
        ledger = tuple(t for t in holding.transactions if t.id != transaction_id)
        self._replace_holding(replace(holding, transactions=ledger))
        LOGGER.info("Deleted transaction %s from holding %s", transaction_id, holding.id)

    # ----------------------------------------------------------- goal CRUD

    def add_goal(
        self,
        name: str,
        target_amount: Any,
        target_date: DateLike,
        notes: Optional[str] = None,
        progress: Any = None,
    ) -> Goal:
        goal = Goal(
            id=new_id(),
            name=require_text(name, "name"),
            target_amount=_positive(target_amount, "target_amount"),
            target_date=iso_date(target_date, "target_date"),
            notes=_optional_text(notes),
            progress=self._progress(progress),
        )
        self._commit(replace(self._state, goals=self._state.goals + (goal,)))
        LOGGER.info("Added goal %s (%s)", goal.id, goal.name)
        return goal

    def update_goal(self, goal_id: str, **updates: Any) -> Goal:
        _check_fields(updates, GOAL_FIELDS, "goal")
        goal = self.get_goal(goal_id)
        changes: dict[str, Any] = {}
        for key, value in updates.items():
            if key == "name":
                changes[key] = require_text(value, key)
            elif key == "target_amount":
                changes[key] = _positive(value, key)
            elif key == "target_date":
                changes[key] = iso_date(value, key)
            elif key == "notes":
                changes[key] = _optional_text(value)
            elif key == "progress":
                changes[key] = self._progress(value)
        updated = replace(goal, **changes)
        goals = tuple(updated if g.id == goal_id else g for g in self._state.goals)
        self._commit(replace(self._state, goals=goals))
        LOGGER.info("Updated goal %s", goal_id)
        return updated

    def delete_goal(self, goal_id: str) -> None:
        self.get_goal(goal_id)
        self._commit(replace(self._state, goals=tuple(g for g in self._state.goals if g.id != goal_id)))
        LOGGER.info("Deleted goal %s", goal_id)

    @staticmethod
    def _progress(value: Any) -> Optional[Decimal]:
        progress = optional_decimal(value, "progress")
        if progress is not None and not (0 <= progress <= 100):
            raise ValidationError("progress must be between 0 and 100")
        return progress

    # ------------------------------------------------------------- refresh

    async def _lookup(self, symbol: str) -> QuoteResult:
        if self._quote_provider is None:
            raise QuoteLookupError("No quote provider configured")
        provider = self._quote_provider
        if inspect.iscoroutinefunction(provider) or inspect.iscoroutinefunction(getattr(provider, "__call__", None)):
            return await provider(symbol)
        result = await asyncio.to_thread(provider, symbol)
        # A plain callable may still return an awaitable.
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _resolve(self, holding: Holding) -> RefreshOutcome:
        result = await self._lookup(holding.symbol)
        if not isinstance(result, QuoteResult):
            return RefreshOutcome(holding.id, holding.symbol, error=f"malformed quote response: {result!r}")
        if result.usable_price is None:
            return RefreshOutcome(
                holding.id,
                holding.symbol,
                error=result.error or f"non-positive price {result.price}",
            )
        return RefreshOutcome(holding.id, holding.symbol, price=result.usable_price)

    async def refresh_prices(self) -> None:
        """Query the quote provider for every holding and apply the prices in one step.

        Lookups run concurrently. A symbol whose lookup fails, raises or returns a
        non-positive price keeps its previous ``current_price``; other symbols are
        still updated. A refresh in flight cannot be cancelled.
        """

        snapshot = self._state.holdings
        if not snapshot:
            LOGGER.debug("No holdings to refresh")
            return

        results = await asyncio.gather(
            *(self._resolve(holding) for holding in snapshot),
            return_exceptions=True,
        )

        prices: dict[str, Decimal] = {}
        for holding, outcome in zip(snapshot, results):
            if isinstance(outcome, BaseException):
                LOGGER.warning("Price lookup for %s raised: %s", holding.symbol, outcome)
                continue
            if outcome.price is None:
                LOGGER.warning("Price lookup for %s failed: %s", holding.symbol, outcome.error)
                continue
            prices[outcome.holding_id] = outcome.price

        holdings = tuple(
            replace(h, current_price=prices[h.id]) if h.id in prices else h for h in self._state.holdings
        )
        self._commit(replace(self._state, holdings=holdings))
        LOGGER.info("Refreshed prices for %d of %d holdings", len(prices), len(snapshot))

    # ----------------------------------------------------------- valuation

    def portfolio_value(self) -> Decimal:
        return valuation.portfolio_value(self._state.holdings)

    def total_invested(self) -> Decimal:
        return valuation.total_invested(self._state.holdings)

    def total_gain_loss(self) -> Decimal:
        return valuation.total_gain_loss(self._state.holdings)

    def gain_loss_percentage(self) -> Decimal:
        return valuation.gain_loss_percentage(self._state.holdings)

    def holding_views(self) -> list[HoldingView]:
        return [valuation.holding_view(holding) for holding in self._state.holdings]

    def summary(self) -> PortfolioSummary:
        holdings = self._state.holdings
        return PortfolioSummary(
            total_invested=valuation.total_invested(holdings),
            current_value=valuation.portfolio_value(holdings),
            total_gain_loss=valuation.total_gain_loss(holdings),
            total_gain_loss_percentage=valuation.gain_loss_percentage(holdings),
            currency=self.base_currency,
        )

    def sector_allocation(self) -> list[Allocation]:
        return valuation.sector_allocation(self._state.holdings)

    def currency_allocation(self) -> list[Allocation]:
        return valuation.currency_allocation(self._state.holdings)


__all__ = ["PortfolioEngine", "QuoteLookup"]
