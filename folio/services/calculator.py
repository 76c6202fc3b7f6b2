"""Portfolio valuation metrics.

Every function here is pure and reads only its arguments. Inputs are any
objects carrying the asset attributes (ORM rows, dataclasses,
``SimpleNamespace``). Empty inputs give zero or empty results, and every
ratio returns 0 when its denominator is 0. Percentages are on the 0-100
scale.
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Sequence

from folio.enums import AssetType, TransactionType, transaction_type_value

if TYPE_CHECKING:
    from folio.models import Asset, Transaction

# Flat margin assumed on every sale by the realized-gain estimate. This is a
# placeholder, not lot-matched P&L; see estimate_realized_gain.
ASSUMED_MARGIN = 0.15


@dataclass(frozen=True)
class AssetMetrics:
    current_value: float
    cost_basis: float
    unrealized_gain: float
    unrealized_gain_percent: float
    day_change: float
    day_change_value: float
    day_change_percent: float


@dataclass(frozen=True)
class AllocationSlice:
    value: float
    percentage: float


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: float
    total_invested: float
    total_gain: float
    total_gain_percent: float
    day_gain: float
    day_gain_percent: float
    value_by_type: dict[str, float] = field(default_factory=dict)
    asset_count: int = 0
    transaction_count: int = 0

    @property
    def total_cost(self) -> float:
        return self.total_invested

    @classmethod
    def empty(cls, transaction_count: int = 0) -> PortfolioSummary:
        return cls(
            total_value=0.0,
            total_invested=0.0,
            total_gain=0.0,
            total_gain_percent=0.0,
            day_gain=0.0,
            day_gain_percent=0.0,
            value_by_type={},
            asset_count=0,
            transaction_count=transaction_count,
        )


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator


def _quantity(asset: Asset | object) -> float:
    return float(getattr(asset, "quantity") or 0.0)


def _current_price(asset: Asset | object) -> float:
    return float(getattr(asset, "current_price") or 0.0)


def _previous_close(asset: Asset | object) -> float:
    return float(getattr(asset, "previous_close") or 0.0)


def _average_cost(asset: Asset | object) -> float:
    return float(getattr(asset, "average_cost") or 0.0)


def _symbol(asset: Asset | object) -> str:
    return str(getattr(asset, "symbol", "") or "")


def asset_kind(asset: Asset | object) -> AssetType:
    return AssetType.parse(getattr(asset, "asset_type", None))


# Per-asset values


def current_value(asset: Asset | object) -> float:
    return _quantity(asset) * _current_price(asset)


def cost_basis(asset: Asset | object) -> float:
    return _quantity(asset) * _average_cost(asset)


def unrealized_gain(asset: Asset | object) -> float:
    return current_value(asset) - cost_basis(asset)


def unrealized_gain_percent(asset: Asset | object) -> float:
    return _safe_ratio(unrealized_gain(asset), cost_basis(asset)) * 100.0


def day_change(asset: Asset | object) -> float:
    """Per-unit price move since the previous close."""
    return _current_price(asset) - _previous_close(asset)


def day_change_value(asset: Asset | object) -> float:
    return _quantity(asset) * day_change(asset)


def day_change_percent(asset: Asset | object) -> float:
    return _safe_ratio(day_change(asset), _previous_close(asset)) * 100.0


def asset_metrics(asset: Asset | object) -> AssetMetrics:
    return AssetMetrics(
        current_value=current_value(asset),
        cost_basis=cost_basis(asset),
        unrealized_gain=unrealized_gain(asset),
        unrealized_gain_percent=unrealized_gain_percent(asset),
        day_change=day_change(asset),
        day_change_value=day_change_value(asset),
        day_change_percent=day_change_percent(asset),
    )


# Portfolio aggregates


def total_value(assets: Iterable[Asset | object]) -> float:
    return sum((current_value(asset) for asset in assets), 0.0)


def total_cost(assets: Iterable[Asset | object]) -> float:
    return sum((cost_basis(asset) for asset in assets), 0.0)


def total_gain(assets: Iterable[Asset | object]) -> float:
    assets = list(assets)
    return total_value(assets) - total_cost(assets)


def total_gain_percent(assets: Iterable[Asset | object]) -> float:
    assets = list(assets)
    return _safe_ratio(total_gain(assets), total_cost(assets)) * 100.0


def day_gain(assets: Iterable[Asset | object]) -> float:
    return sum((day_change_value(asset) for asset in assets), 0.0)


def day_gain_percent(assets: Iterable[Asset | object]) -> float:
    """Day gain relative to the prior-day value, i.e. sum of quantity * previous close."""
    assets = list(assets)
    gain = day_gain(assets)
    previous_total = total_value(assets) - gain
    return _safe_ratio(gain, previous_total) * 100.0


def value_by_type(assets: Iterable[Asset | object], asset_type: AssetType | str) -> float:
    wanted = AssetType.parse(asset_type)
    return sum(
        (current_value(asset) for asset in assets if asset_kind(asset) == wanted),
        0.0,
    )


def _values_by_label(assets: Iterable[Asset | object]) -> dict[str, float]:
    values: dict[str, float] = defaultdict(float)
    for asset in assets:
        values[asset_kind(asset).label] += current_value(asset)
    return dict(values)


def calculate_summary(
    assets: Iterable[Asset | object],
    transaction_count: int = 0,
) -> PortfolioSummary:
    """Aggregate every summary metric over one user's assets."""
    assets = list(assets)
    if not assets:
        return PortfolioSummary.empty(transaction_count=transaction_count)

    value = total_value(assets)
    invested = total_cost(assets)
    gain = value - invested
    dollar_day_gain = day_gain(assets)
    return PortfolioSummary(
        total_value=value,
        total_invested=invested,
        total_gain=gain,
        total_gain_percent=_safe_ratio(gain, invested) * 100.0,
        day_gain=dollar_day_gain,
        day_gain_percent=_safe_ratio(dollar_day_gain, value - dollar_day_gain) * 100.0,
        value_by_type=_values_by_label(assets),
        asset_count=len(assets),
        transaction_count=transaction_count,
    )


def _performance_sorted(
    assets: Iterable[Asset | object],
    limit: int,
    descending: bool,
) -> list[Asset | object]:
    if limit <= 0:
        return []
    # Two stable passes: symbol ascending first, then gain in the wanted direction.
    ordered = sorted(assets, key=lambda asset: _symbol(asset).lower())
    ordered.sort(key=unrealized_gain_percent, reverse=descending)
    return ordered[:limit]


def get_top_performers(
    assets: Iterable[Asset | object],
    limit: int = 5,
) -> list[Asset | object]:
    """Best unrealized gain percent first; ties go to the lower symbol."""
    return _performance_sorted(assets, limit, descending=True)


def get_worst_performers(
    assets: Iterable[Asset | object],
    limit: int = 5,
) -> list[Asset | object]:
    """Worst unrealized gain percent first; ties go to the lower symbol."""
    return _performance_sorted(assets, limit, descending=False)


def calculate_allocation(assets: Iterable[Asset | object]) -> dict[str, AllocationSlice]:
    """Value and share of total value per asset type, keyed by display label."""
    values = _values_by_label(assets)
    portfolio_value = sum(values.values(), 0.0)
    return {
        label: AllocationSlice(
            value=value,
            percentage=_safe_ratio(value, portfolio_value) * 100.0,
        )
        for label, value in values.items()
    }


def estimate_realized_gain(transactions: Iterable[Transaction | object]) -> float:
    """Rough realized gain: every sale is assumed to have earned ASSUMED_MARGIN.

    This is not lot-matched P&L. Nothing in the system tracks the cost of the
    specific units sold, so the figure is for display only and must not be
    treated as a tax or accounting number.
    """
    realized = 0.0
    for tx in transactions:
        if transaction_type_value(getattr(tx, "type")) != TransactionType.SELL.value:
            continue
        quantity = float(getattr(tx, "quantity") or 0.0)
        price = float(getattr(tx, "price_per_unit") or 0.0)
        realized += quantity * price * ASSUMED_MARGIN
    return realized


# Portfolio insights


def assets_by_value(
    assets: Iterable[Asset | object],
    descending: bool = True,
) -> list[Asset | object]:
    return sorted(assets, key=current_value, reverse=descending)


def largest_holding(assets: Sequence[Asset | object]) -> Asset | object | None:
    if not assets:
        return None
    return max(assets, key=current_value)


def smallest_holding(assets: Sequence[Asset | object]) -> Asset | object | None:
    if not assets:
        return None
    return min(assets, key=current_value)


def asset_count_by_type(assets: Iterable[Asset | object]) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for asset in assets:
        counts[asset_kind(asset).label] += 1
    return dict(counts)


def portfolio_average_cost(assets: Iterable[Asset | object]) -> float:
    """Total cost basis spread over total units held."""
    assets = list(assets)
    units = sum((_quantity(asset) for asset in assets), 0.0)
    return _safe_ratio(total_cost(assets), units)


def return_on_investment(assets: Iterable[Asset | object]) -> float:
    return total_gain_percent(assets)


def compound_annual_growth_rate(
    assets: Iterable[Asset | object],
    years: float = 1.0,
) -> float:
    """Annualised growth from cost basis to current value over ``years``."""
    if years <= 0:
        return 0.0
    assets = list(assets)
    invested = total_cost(assets)
    ratio = _safe_ratio(total_value(assets), invested)
    if ratio <= 0:
        return 0.0
    return (math.pow(ratio, 1.0 / years) - 1.0) * 100.0


def diversity_score(assets: Sequence[Asset | object]) -> float:
    """Score from 0 to 100 built from holding count, type spread and value spread."""
    if not assets:
        return 0.0
    if len(assets) == 1:
        return 20.0

    count_score = float(min(len(assets) * 3, 30))
    type_score = float(min(len({asset_kind(asset) for asset in assets}) * 10, 30))

    portfolio_value = total_value(assets)
    if portfolio_value == 0:
        return count_score + type_score

    herfindahl = sum(
        (current_value(asset) / portfolio_value) ** 2 for asset in assets
    )
    return count_score + type_score + (1.0 - herfindahl) * 40.0
