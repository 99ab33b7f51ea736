"""Pure valuation helpers over holdings.

None of these functions cache or mutate anything; callers recompute on every
read so the figures always reflect the current holdings collection.
"""
from __future__ import annotations

from collections import OrderedDict
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from typing import Callable, Iterable, Sequence

from .errors import InvariantViolationError
from .models import Allocation, Holding, HoldingView, Transaction, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")
# Scale of a stored average_buy_price.
AVERAGE_PRICE_QUANTUM = Decimal("1e-10")
UNKNOWN_SECTOR = "Unknown"


def quantize_average(value: Decimal) -> Decimal:
    """Round ``value`` half-even to ``AVERAGE_PRICE_QUANTUM``.

    The working precision grows with the magnitude of ``value`` so large
    prices keep all of their integer digits.
    """

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() - AVERAGE_PRICE_QUANTUM.adjusted() + 1)
        return value.quantize(AVERAGE_PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)


def weighted_average_cost(transactions: Iterable[Transaction]) -> tuple[Decimal, Decimal]:
    """Return ``(quantity, average_buy_price)`` derived from the BUY entries.

    The average is ``(sum of qty * price + brokerage) / sum of qty``, rounded
    with :func:`quantize_average`. SELL and DIVIDEND entries do not
    participate.
    """

    quantity = ZERO
    cost = ZERO
    for transaction in transactions:
        if transaction.type is not TransactionType.BUY:
            continue
        quantity += transaction.quantity
        cost += transaction.cost
    if quantity <= 0:
        raise InvariantViolationError("holding quantity must stay positive")
    average = quantize_average(cost / quantity)
    if average <= 0:
        raise InvariantViolationError(f"average buy price rounds to zero below {AVERAGE_PRICE_QUANTUM}")
    return quantity, average


def effective_price(holding: Holding) -> Decimal:
    """Price used for valuation: the last known quote, else the average cost."""

    if holding.current_price is not None:
        return holding.current_price
    return holding.average_buy_price


def market_value(holding: Holding) -> Decimal:
    return effective_price(holding) * holding.quantity


def invested_value(holding: Holding) -> Decimal:
    return holding.average_buy_price * holding.quantity


def gain_loss(holding: Holding) -> Decimal:
    return market_value(holding) - invested_value(holding)


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` with a zero ``whole`` yielding zero."""

    if whole == 0:
        return ZERO
    return part / whole * HUNDRED


def holding_view(holding: Holding) -> HoldingView:
    invested = invested_value(holding)
    value = market_value(holding)
    return HoldingView(
        holding=holding,
        effective_price=effective_price(holding),
        market_value=value,
        invested=invested,
        gain_loss=value - invested,
        gain_loss_percentage=percentage(value - invested, invested),
    )


def portfolio_value(holdings: Iterable[Holding]) -> Decimal:
    return sum((market_value(holding) for holding in holdings), ZERO)


def total_invested(holdings: Iterable[Holding]) -> Decimal:
    return sum((invested_value(holding) for holding in holdings), ZERO)


def total_gain_loss(holdings: Iterable[Holding]) -> Decimal:
    return sum((gain_loss(holding) for holding in holdings), ZERO)


def gain_loss_percentage(holdings: Sequence[Holding]) -> Decimal:
    return percentage(total_gain_loss(holdings), total_invested(holdings))


def allocation(holdings: Sequence[Holding], key: Callable[[Holding], str]) -> list[Allocation]:
    """Group market value by ``key`` and express each group as a share of the total.

    Groups are ordered by value, largest first.
    """

    grouped: "OrderedDict[str, Decimal]" = OrderedDict()
    for holding in holdings:
        label = key(holding)
        grouped[label] = grouped.get(label, ZERO) + market_value(holding)
    total = sum(grouped.values(), ZERO)
    rows = [
        Allocation(label=label, value=value, percentage=percentage(value, total))
        for label, value in grouped.items()
    ]
    rows.sort(key=lambda row: row.value, reverse=True)
    return rows


def sector_allocation(holdings: Sequence[Holding]) -> list[Allocation]:
    return allocation(holdings, lambda holding: holding.sector or UNKNOWN_SECTOR)


def currency_allocation(holdings: Sequence[Holding]) -> list[Allocation]:
    return allocation(holdings, lambda holding: holding.currency)


__all__ = [
    "quantize_average",
    "weighted_average_cost",
    "effective_price",
    "market_value",
    "invested_value",
    "gain_loss",
    "percentage",
    "holding_view",
    "portfolio_value",
    "total_invested",
    "total_gain_loss",
    "gain_loss_percentage",
    "allocation",
    "sector_allocation",
    "currency_allocation",
]
