"""Domain models representing holdings, their ledgers and goals."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

from dateutil import parser

from .errors import ValidationError

SUPPORTED_CURRENCIES = ("INR", "USD")


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"


def new_id() -> str:
    """Return an opaque unique identifier."""

    return uuid4().hex


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce ``value`` into a :class:`Decimal` or raise :class:`ValidationError`."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} is required")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{field_name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def optional_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value, field_name)


def iso_date(value: date | datetime | str | None, field_name: str = "date") -> str:
    """Normalize a date-like value into an ISO ``YYYY-MM-DD`` string.

    ISO strings are taken as-is; anything else goes through dateutil with
    day-first parsing, matching how Indian brokers print contract notes.
    """

    if value is None or value == "":
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    try:
        return parser.parse(text, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"{field_name} is not a valid date: {value!r}") from exc


def normalize_symbol(symbol: str | None) -> str:
    cleaned = (symbol or "").strip().upper()
    if not cleaned:
        raise ValidationError("symbol is required")
    return cleaned


def normalize_currency(currency: str | None) -> str:
    cleaned = (currency or "").strip().upper()
    if cleaned not in SUPPORTED_CURRENCIES:
        raise ValidationError(
            f"currency must be one of {', '.join(SUPPORTED_CURRENCIES)}, got {currency!r}"
        )
    return cleaned


def require_text(value: str | None, field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field_name} is required")
    return cleaned


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True, slots=True)
class Transaction:
    """One ledger entry belonging to a holding."""

    id: str
    holding_id: str
    type: TransactionType
    date: str
    quantity: Decimal
    price: Decimal
    brokerage: Decimal = Decimal("0")
    notes: Optional[str] = None

    @property
    def cost(self) -> Decimal:
        """Cash paid for the entry including brokerage."""
        return self.quantity * self.price + self.brokerage

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "holding_id": self.holding_id,
            "type": self.type.value,
            "date": self.date,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "brokerage": str(self.brokerage),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=data["id"],
            holding_id=data["holding_id"],
            type=TransactionType(data["type"]),
            date=data["date"],
            quantity=Decimal(data["quantity"]),
            price=Decimal(data["price"]),
            brokerage=Decimal(data.get("brokerage") or "0"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True, slots=True)
class Holding:
    """Aggregated position in one ticker symbol."""

    id: str
    symbol: str
    name: str
    exchange: str
    currency: str
    quantity: Decimal
    average_buy_price: Decimal
    transactions: tuple[Transaction, ...] = ()
    sector: Optional[str] = None
    current_price: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "exchange": self.exchange,
            "currency": self.currency,
            "sector": self.sector,
            "quantity": str(self.quantity),
            "average_buy_price": str(self.average_buy_price),
            "current_price": _decimal_str(self.current_price),
            "transactions": [transaction.to_dict() for transaction in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Holding":
        current = data.get("current_price")
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            name=data["name"],
            exchange=data["exchange"],
            currency=data["currency"],
            sector=data.get("sector"),
            quantity=Decimal(data["quantity"]),
            average_buy_price=Decimal(data["average_buy_price"]),
            current_price=None if current is None else Decimal(current),
            transactions=tuple(Transaction.from_dict(item) for item in data.get("transactions", [])),
        )


@dataclass(frozen=True, slots=True)
class Goal:
    """A savings target tracked alongside the portfolio."""

    id: str
    name: str
    target_amount: Decimal
    target_date: str
    notes: Optional[str] = None
    progress: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "target_amount": str(self.target_amount),
            "target_date": self.target_date,
            "notes": self.notes,
            "progress": _decimal_str(self.progress),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Goal":
        progress = data.get("progress")
        return cls(
            id=data["id"],
            name=data["name"],
            target_amount=Decimal(data["target_amount"]),
            target_date=data["target_date"],
            notes=data.get("notes"),
            progress=None if progress is None else Decimal(progress),
        )


@dataclass(frozen=True, slots=True)
class PortfolioState:
    """Everything the application persists: holdings and goals."""

    holdings: tuple[Holding, ...] = ()
    goals: tuple[Goal, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "holdings": [holding.to_dict() for holding in self.holdings],
            "goals": [goal.to_dict() for goal in self.goals],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PortfolioState":
        if not data:
            return cls()
        return cls(
            holdings=tuple(Holding.from_dict(item) for item in data.get("holdings", [])),
            goals=tuple(Goal.from_dict(item) for item in data.get("goals", [])),
        )


@dataclass(frozen=True, slots=True)
class QuoteResult:
    """Outcome of a quote lookup: either a priced quote or an error message."""

    success: bool
    symbol: str
    price: Optional[Decimal] = None
    name: Optional[str] = None
    exchange: Optional[str] = None
    currency: Optional[str] = None
    sector: Optional[str] = None
    error: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def ok(
        cls,
        symbol: str,
        price: Decimal,
        *,
        name: str | None = None,
        exchange: str | None = None,
        currency: str | None = None,
        sector: str | None = None,
        source: str | None = None,
    ) -> "QuoteResult":
        return cls(
            success=True,
            symbol=symbol,
            price=price,
            name=name,
            exchange=exchange,
            currency=currency,
            sector=sector,
            source=source,
        )

    @classmethod
    def failed(cls, symbol: str, error: str, *, source: str | None = None) -> "QuoteResult":
        return cls(success=False, symbol=symbol, error=error, source=source)

    @property
    def usable_price(self) -> Optional[Decimal]:
        """The quoted price when the lookup succeeded with a positive value."""
        if self.success and self.price is not None and self.price > 0:
            return self.price
        return None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "symbol": self.symbol, "error": self.error}
        return {
            "success": True,
            "data": {
                "symbol": self.symbol,
                "name": self.name,
                "exchange": self.exchange,
                "currency": self.currency,
                "price": float(self.price) if self.price is not None else None,
                "sector": self.sector,
                "source": self.source,
            },
        }


@dataclass(frozen=True, slots=True)
class HoldingView:
    """Read-only valuation of one holding for display."""

    holding: Holding
    effective_price: Decimal
    market_value: Decimal
    invested: Decimal
    gain_loss: Decimal
    gain_loss_percentage: Decimal


@dataclass(frozen=True, slots=True)
class PortfolioSummary:
    total_invested: Decimal
    current_value: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percentage: Decimal
    currency: str = "INR"


@dataclass(frozen=True, slots=True)
class Allocation:
    """Share of portfolio value held in one sector or currency."""

    label: str
    value: Decimal
    percentage: Decimal


@dataclass(slots=True)
class RefreshOutcome:
    """Per-symbol result collected during a price refresh."""

    holding_id: str
    symbol: str
    price: Optional[Decimal] = None
    error: Optional[str] = None


__all__ = [
    "SUPPORTED_CURRENCIES",
    "TransactionType",
    "Transaction",
    "Holding",
    "Goal",
    "PortfolioState",
    "QuoteResult",
    "HoldingView",
    "PortfolioSummary",
    "Allocation",
    "RefreshOutcome",
    "new_id",
    "to_decimal",
    "optional_decimal",
    "iso_date",
    "normalize_symbol",
    "normalize_currency",
    "require_text",
]
