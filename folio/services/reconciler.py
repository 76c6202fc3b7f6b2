"""Replay an asset's transaction history into quantity and average cost.

Accounting is moving weighted-average cost. A buy blends its cost into the
running average; a sell removes the same fraction of cost basis as the
fraction of quantity sold, which leaves the average unchanged. The result
is returned to the caller, who persists it.

Nothing here raises for odd histories. A sell larger than the running
quantity clamps the position to zero and sets ``oversold`` on the result.
Non-positive quantities or prices are replayed as given; rejecting them is
the input layer's job.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

from folio.enums import TransactionType, transaction_type_value

if TYPE_CHECKING:
    from folio.models import Transaction

QUANTITY_EPSILON = 1e-9


@dataclass(frozen=True)
class ReconciledPosition:
    quantity: float
    average_cost: float
    cost_basis: float
    oversold: bool = False
    transaction_count: int = 0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _tx_type(value: Transaction | object) -> str:
    return transaction_type_value(getattr(value, "type"))


def _tx_date(value: Transaction | object) -> datetime:
    return _as_utc(getattr(value, "date"))


def _tx_created_at(value: Transaction | object) -> datetime:
    created_at = getattr(value, "created_at", None)
    if created_at is None:
        return _tx_date(value)
    return _as_utc(created_at)


def _tx_id(value: Transaction | object) -> int:
    tx_id = getattr(value, "id", 0)
    return int(tx_id or 0)


def _tx_quantity(value: Transaction | object) -> float:
    return float(getattr(value, "quantity") or 0.0)


def _tx_price(value: Transaction | object) -> float:
    return float(getattr(value, "price_per_unit") or 0.0)


def sort_transactions(
    transactions: Iterable[Transaction | object],
) -> list[Transaction | object]:
    """Sort transactions for replay: trade date, then creation time, then ID."""
    return sorted(
        transactions,
        key=lambda tx: (_tx_date(tx), _tx_created_at(tx), _tx_id(tx)),
    )


def reconcile_position(
    transactions: Iterable[Transaction | object],
    previous_average_cost: float = 0.0,
) -> ReconciledPosition:
    """Compute quantity and weighted-average cost from one asset's transactions.

    When the position ends at zero the average cost of the last open position
    is kept. If no buy was ever replayed, ``previous_average_cost`` is
    returned instead.
    """
    ordered = sort_transactions(transactions)

    qty = 0.0
    avg_cost = 0.0
    held_average: float | None = None
    oversold = False

    for tx in ordered:
        tx_type = _tx_type(tx)
        quantity = _tx_quantity(tx)

        if tx_type == TransactionType.BUY.value:
            new_cost_total = (qty * avg_cost) + (quantity * _tx_price(tx))
            qty += quantity
            if abs(qty) > QUANTITY_EPSILON:
                avg_cost = new_cost_total / qty
                held_average = avg_cost
            else:
                qty = 0.0
        elif tx_type == TransactionType.SELL.value:
            if qty <= QUANTITY_EPSILON or quantity - qty > QUANTITY_EPSILON:
                oversold = True
                qty = 0.0
                continue
            # Proportional cost removal keeps the per-unit average as is.
            qty -= quantity
            if qty <= QUANTITY_EPSILON:
                qty = 0.0

    if qty == 0.0:
        average_cost = held_average if held_average is not None else float(previous_average_cost)
        cost_basis = 0.0
    else:
        average_cost = avg_cost
        cost_basis = qty * avg_cost

    return ReconciledPosition(
        quantity=qty,
        average_cost=average_cost,
        cost_basis=cost_basis,
        oversold=oversold,
        transaction_count=len(ordered),
    )
