from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from folio.enums import transaction_type_value
from folio.models import Asset, AssetType, Transaction, TransactionType, utc_now
from folio.services import calculator
from folio.services.calculator import AllocationSlice, PortfolioSummary
from folio.services.pricing import PricingService
from folio.services.reconciler import ReconciledPosition, reconcile_position

logger = logging.getLogger(__name__)

PERIODS = ("today", "month", "year")


class PortfolioError(Exception):
    """Base class for storage-layer errors."""


class AssetNotFound(PortfolioError):
    """Asset does not exist or belongs to another user."""


class TransactionNotFound(PortfolioError):
    """Transaction does not exist or belongs to another user."""


class DuplicateSymbol(PortfolioError):
    """The user already holds an asset with this symbol."""


class InvalidTransaction(PortfolioError):
    """A transaction would leave the history in an impossible state."""


@dataclass
class TransactionVolume:
    buy_volume: float
    sell_volume: float
    transaction_count: int


@dataclass
class PriceRefreshResult:
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class PortfolioOverview:
    summary: PortfolioSummary
    allocation: dict[str, AllocationSlice]
    top_performers: list[Asset]
    worst_performers: list[Asset]
    realized_gain_estimate: float


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def _tx_type(value: TransactionType | str) -> TransactionType:
    return TransactionType(transaction_type_value(value))


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_utc(value: datetime) -> datetime:
    # SQLite keeps the wall-clock digits only, so store every trade time in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Assets


def list_assets(
    db: Session,
    user_id: int,
    asset_type: AssetType | str | None = None,
    query: str | None = None,
) -> list[Asset]:
    """Return a user's assets sorted by symbol, optionally filtered."""
    stmt = select(Asset).where(Asset.user_id == user_id).order_by(Asset.symbol.asc())
    if query:
        pattern = f"%{_escape_like(query.strip().lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(Asset.symbol).like(pattern, escape="\\"),
                func.lower(Asset.name).like(pattern, escape="\\"),
            )
        )
    assets = list(db.scalars(stmt))
    if asset_type is not None:
        wanted = AssetType.parse(asset_type)
        assets = [asset for asset in assets if asset.kind == wanted]
    return assets


def get_asset(db: Session, user_id: int, asset_id: int) -> Asset:
    asset = db.scalar(
        select(Asset).where(Asset.id == asset_id, Asset.user_id == user_id)
    )
    if asset is None:
        raise AssetNotFound(f"Asset {asset_id} not found")
    return asset


def symbol_exists(
    db: Session,
    user_id: int,
    symbol: str,
    exclude_asset_id: int | None = None,
) -> bool:
    stmt = select(Asset.id).where(
        Asset.user_id == user_id,
        func.upper(Asset.symbol) == normalize_symbol(symbol),
    )
    if exclude_asset_id is not None:
        stmt = stmt.where(Asset.id != exclude_asset_id)
    return db.scalar(stmt) is not None


def create_asset(
    db: Session,
    user_id: int,
    symbol: str,
    name: str,
    asset_type: AssetType | str,
    current_price: float = 0.0,
    previous_close: float | None = None,
    quantity: float = 0.0,
    average_cost: float = 0.0,
    initial_purchase_date: datetime | None = None,
    notes: str | None = None,
) -> Asset:
    """Create an asset, optionally recording its quantity as an initial purchase.

    With ``initial_purchase_date`` the quantity and average cost become a buy
    transaction and the asset is reconciled from it. Without it the values
    are stored as entered until the first transaction arrives.
    """
    clean_symbol = normalize_symbol(symbol)
    if symbol_exists(db, user_id, clean_symbol):
        raise DuplicateSymbol(f"Asset with symbol '{clean_symbol}' already exists")
    if initial_purchase_date is not None and (quantity <= 0 or average_cost <= 0):
        raise InvalidTransaction(
            "An initial purchase needs a positive quantity and average cost"
        )

    asset = Asset(
        user_id=user_id,
        symbol=clean_symbol,
        name=name.strip(),
        asset_type=AssetType.parse(asset_type).value,
        current_price=current_price,
        previous_close=current_price if previous_close is None else previous_close,
        quantity=quantity,
        average_cost=average_cost,
    )
    db.add(asset)
    db.flush()

    if initial_purchase_date is not None:
        db.add(
            Transaction(
                user_id=user_id,
                asset_id=asset.id,
                type=TransactionType.BUY,
                quantity=quantity,
                price_per_unit=average_cost,
                date=_as_utc(initial_purchase_date),
                notes=notes or "Initial purchase",
            )
        )
        db.flush()
        _reconcile(db, asset)

    db.commit()
    db.refresh(asset)
    logger.info("Created asset id=%s symbol=%s", asset.id, asset.symbol)
    return asset


def update_asset(db: Session, user_id: int, asset_id: int, **fields: object) -> Asset:
    """Update editable asset fields; ``None`` values are left unchanged."""
    asset = get_asset(db, user_id, asset_id)

    symbol = fields.pop("symbol", None)
    if symbol is not None:
        clean_symbol = normalize_symbol(str(symbol))
        if symbol_exists(db, user_id, clean_symbol, exclude_asset_id=asset.id):
            raise DuplicateSymbol(f"Asset with symbol '{clean_symbol}' already exists")
        asset.symbol = clean_symbol

    asset_type = fields.pop("asset_type", None)
    if asset_type is not None:
        asset.asset_type = AssetType.parse(asset_type).value  # type: ignore[arg-type]

    for key in ("name", "current_price", "previous_close", "quantity", "average_cost"):
        value = fields.pop(key, None)
        if value is not None:
            setattr(asset, key, value.strip() if isinstance(value, str) else value)

    if fields:
        raise TypeError(f"Unsupported asset fields: {', '.join(sorted(fields))}")

    asset.updated_at = utc_now()
    db.commit()
    db.refresh(asset)
    return asset


def delete_asset(db: Session, user_id: int, asset_id: int) -> None:
    """Delete an asset together with all of its transactions."""
    asset = get_asset(db, user_id, asset_id)
    db.delete(asset)
    db.commit()
    logger.info("Deleted asset id=%s with its transactions", asset_id)


def update_asset_price(
    db: Session,
    user_id: int,
    asset_id: int,
    current_price: float,
    previous_close: float,
) -> Asset:
    asset = get_asset(db, user_id, asset_id)
    asset.current_price = current_price
    asset.previous_close = previous_close
    asset.updated_at = utc_now()
    db.commit()
    return asset


def bulk_update_prices(
    db: Session,
    user_id: int,
    prices: dict[int, tuple[float, float]],
) -> int:
    """Apply ``{asset_id: (current_price, previous_close)}`` in one commit."""
    if not prices:
        return 0
    assets = db.scalars(
        select(Asset).where(Asset.user_id == user_id, Asset.id.in_(list(prices)))
    )
    now = utc_now()
    updated = 0
    for asset in assets:
        asset.current_price, asset.previous_close = prices[asset.id]
        asset.updated_at = now
        updated += 1
    db.commit()
    return updated


def refresh_asset_prices(
    db: Session,
    pricing_service: PricingService,
    user_id: int,
) -> PriceRefreshResult:
    """Pull latest quotes for every asset of a user and store them."""
    result = PriceRefreshResult()
    prices: dict[int, tuple[float, float]] = {}
    for asset in list_assets(db, user_id):
        quote = pricing_service.get_quote(db, asset.symbol)
        if quote is None:
            result.failed.append(asset.symbol)
            continue
        previous_close = (
            quote.previous_close if quote.previous_close is not None else asset.current_price
        )
        prices[asset.id] = (quote.price, previous_close)
        result.updated.append(asset.symbol)

    bulk_update_prices(db, user_id, prices)
    if result.failed:
        logger.warning("Price refresh missing quotes for: %s", ", ".join(result.failed))
    logger.info("Refreshed prices for %d asset(s)", len(result.updated))
    return result


# Transactions


def list_transactions(
    db: Session,
    user_id: int,
    asset_id: int | None = None,
    tx_type: TransactionType | str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    """Return a user's transactions, newest trade date first."""
    stmt = select(Transaction).where(Transaction.user_id == user_id)
    if asset_id is not None:
        stmt = stmt.where(Transaction.asset_id == asset_id)
    if tx_type is not None:
        stmt = stmt.where(Transaction.type == _tx_type(tx_type))
    if start is not None:
        stmt = stmt.where(Transaction.date >= _as_utc(start))
    if end is not None:
        stmt = stmt.where(Transaction.date <= _as_utc(end))
    stmt = stmt.order_by(
        Transaction.date.desc(), Transaction.created_at.desc(), Transaction.id.desc()
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt))


def recent_transactions(db: Session, user_id: int, limit: int = 10) -> list[Transaction]:
    return list_transactions(db, user_id, limit=limit)


def period_bounds(period: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the inclusive start and end of ``today``, ``month`` or ``year``."""
    now = now or datetime.now(timezone.utc)
    if period == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
    elif period == "month":
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
    elif period == "year":
        start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        end = start.replace(year=start.year + 1)
    else:
        raise ValueError(f"Unknown period '{period}', expected one of {', '.join(PERIODS)}")
    return start, end - timedelta(microseconds=1)


def transactions_in_period(
    db: Session,
    user_id: int,
    period: str,
    now: datetime | None = None,
) -> list[Transaction]:
    start, end = period_bounds(period, now)
    return list_transactions(db, user_id, start=start, end=end)


def get_transaction(db: Session, user_id: int, tx_id: int) -> Transaction:
    tx = db.scalar(
        select(Transaction).where(Transaction.id == tx_id, Transaction.user_id == user_id)
    )
    if tx is None:
        raise TransactionNotFound(f"Transaction {tx_id} not found")
    return tx


def _asset_transactions(db: Session, asset_id: int) -> list[Transaction]:
    return list(
        db.scalars(
            select(Transaction)
            .where(Transaction.asset_id == asset_id)
            .order_by(Transaction.date.asc(), Transaction.created_at.asc(), Transaction.id.asc())
        )
    )


def validate_history(transactions: Iterable[Transaction | object]) -> ReconciledPosition:
    """Replay a candidate history and reject it if any sale exceeds holdings."""
    position = reconcile_position(transactions)
    if position.oversold:
        raise InvalidTransaction("Cannot sell more than currently held quantity")
    return position


def persist_asset_quantity_and_cost(
    db: Session,
    asset_id: int,
    quantity: float,
    average_cost: float,
) -> None:
    """Write reconciled values back onto the asset without committing."""
    asset = db.get(Asset, asset_id)
    if asset is None:
        raise AssetNotFound(f"Asset {asset_id} not found")
    asset.quantity = quantity
    asset.average_cost = average_cost
    asset.updated_at = utc_now()
    db.flush()


def _reconcile(db: Session, asset: Asset) -> ReconciledPosition:
    position = reconcile_position(
        _asset_transactions(db, asset.id), previous_average_cost=asset.average_cost or 0.0
    )
    if position.oversold:
        logger.warning(
            "Asset id=%s history sells more than it holds; position clamped to zero",
            asset.id,
        )
    persist_asset_quantity_and_cost(db, asset.id, position.quantity, position.average_cost)
    logger.debug(
        "Reconciled asset id=%s quantity=%s average_cost=%s",
        asset.id,
        position.quantity,
        position.average_cost,
    )
    return position


def recalculate_asset(db: Session, user_id: int, asset_id: int) -> Asset:
    """Overwrite an asset's quantity and average cost from its transactions."""
    asset = get_asset(db, user_id, asset_id)
    _reconcile(db, asset)
    db.commit()
    db.refresh(asset)
    return asset


def recalculate_all_assets(db: Session, user_id: int) -> int:
    assets = list_assets(db, user_id)
    for asset in assets:
        _reconcile(db, asset)
    db.commit()
    return len(assets)


def add_transaction(
    db: Session,
    user_id: int,
    asset_id: int,
    tx_type: TransactionType | str,
    quantity: float,
    price_per_unit: float,
    date: datetime,
    notes: str | None = None,
) -> Transaction:
    """Record a trade and reconcile its asset in the same commit."""
    asset = get_asset(db, user_id, asset_id)
    tx = Transaction(
        user_id=user_id,
        asset_id=asset.id,
        type=_tx_type(tx_type),
        quantity=quantity,
        price_per_unit=price_per_unit,
        date=_as_utc(date),
        notes=notes,
        created_at=utc_now(),
    )
    validate_history([*_asset_transactions(db, asset.id), tx])

    db.add(tx)
    db.flush()
    _reconcile(db, asset)
    db.commit()
    db.refresh(tx)
    return tx


def update_transaction(db: Session, user_id: int, tx_id: int, **fields: object) -> Transaction:
    """Edit a trade and reconcile every asset whose history it touched."""
    tx = get_transaction(db, user_id, tx_id)
    old_asset_id = tx.asset_id

    new_asset_id = fields.pop("asset_id", None)
    if new_asset_id is not None:
        tx.asset_id = get_asset(db, user_id, int(new_asset_id)).id  # type: ignore[arg-type]

    tx_type = fields.pop("type", None)
    if tx_type is not None:
        tx.type = _tx_type(tx_type)

    for key in ("quantity", "price_per_unit", "date", "notes"):
        if key in fields:
            value = fields.pop(key)
            if key == "date" and value is not None:
                value = _as_utc(value)
            if value is not None or key == "notes":
                setattr(tx, key, value)

    if fields:
        raise TypeError(f"Unsupported transaction fields: {', '.join(sorted(fields))}")

    db.flush()
    affected = {old_asset_id, tx.asset_id}
    try:
        for asset_id in affected:
            validate_history(_asset_transactions(db, asset_id))
    except InvalidTransaction:
        db.rollback()
        raise

    for asset_id in affected:
        _reconcile(db, get_asset(db, user_id, asset_id))
    db.commit()
    db.refresh(tx)
    return tx


def delete_transaction(db: Session, user_id: int, tx_id: int) -> None:
    """Remove a trade when the remaining history is still valid."""
    tx = get_transaction(db, user_id, tx_id)
    asset = get_asset(db, user_id, tx.asset_id)
    remaining = [row for row in _asset_transactions(db, asset.id) if row.id != tx.id]
    validate_history(remaining)

    db.delete(tx)
    db.flush()
    _reconcile(db, asset)
    db.commit()


def transaction_volume(db: Session, user_id: int) -> TransactionVolume:
    """Total traded notional per side plus the number of transactions."""
    rows = db.execute(
        select(
            Transaction.type,
            func.coalesce(func.sum(Transaction.quantity * Transaction.price_per_unit), 0.0),
            func.count(Transaction.id),
        )
        .where(Transaction.user_id == user_id)
        .group_by(Transaction.type)
    ).all()

    volume = TransactionVolume(buy_volume=0.0, sell_volume=0.0, transaction_count=0)
    for tx_type, total, count in rows:
        if tx_type == TransactionType.BUY:
            volume.buy_volume = float(total)
        elif tx_type == TransactionType.SELL:
            volume.sell_volume = float(total)
        volume.transaction_count += int(count)
    return volume


def count_transactions(db: Session, user_id: int) -> int:
    return int(
        db.scalar(select(func.count(Transaction.id)).where(Transaction.user_id == user_id))
        or 0
    )


def build_portfolio_overview(
    db: Session,
    user_id: int,
    performers_limit: int = 5,
) -> PortfolioOverview:
    """Load one user's snapshot and derive every display metric from it."""
    assets = list_assets(db, user_id)
    transactions = list_transactions(db, user_id)
    return PortfolioOverview(
        summary=calculator.calculate_summary(assets, transaction_count=len(transactions)),
        allocation=calculator.calculate_allocation(assets),
        top_performers=calculator.get_top_performers(assets, performers_limit),
        worst_performers=calculator.get_worst_performers(assets, performers_limit),
        realized_gain_estimate=calculator.estimate_realized_gain(transactions),
    )
