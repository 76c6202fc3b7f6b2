from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio.config import settings
from folio.db import get_db
from folio.models import Asset, User
from folio.schemas import (
    AllocationSliceOut,
    AssetOut,
    HoldingRef,
    InsightsOut,
    OverviewOut,
    PortfolioSummaryOut,
    RealizedGainOut,
    VolumeOut,
)
from folio.services import calculator, portfolio
from folio.web import asset_out, current_user

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


def _holding_ref(asset: Asset | None) -> HoldingRef | None:
    if asset is None:
        return None
    return HoldingRef(
        id=asset.id,
        symbol=asset.symbol,
        current_value=calculator.current_value(asset),
    )


@router.get("/summary", response_model=PortfolioSummaryOut)
def summary(db: Session = Depends(get_db), user: User = Depends(current_user)):
    assets = portfolio.list_assets(db, user.id)
    summary = calculator.calculate_summary(
        assets, transaction_count=portfolio.count_transactions(db, user.id)
    )
    return PortfolioSummaryOut.model_validate(summary)


@router.get("/allocation", response_model=dict[str, AllocationSliceOut])
def allocation(db: Session = Depends(get_db), user: User = Depends(current_user)):
    """Value and percentage per asset type."""
    slices = calculator.calculate_allocation(portfolio.list_assets(db, user.id))
    return {label: AllocationSliceOut.model_validate(item) for label, item in slices.items()}


@router.get("/performers", response_model=list[AssetOut])
def performers(
    limit: int = Query(default=settings.performers_limit),
    direction: Literal["top", "worst"] = "top",
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    assets = portfolio.list_assets(db, user.id)
    if direction == "top":
        ranked = calculator.get_top_performers(assets, limit)
    else:
        ranked = calculator.get_worst_performers(assets, limit)
    return [asset_out(asset) for asset in ranked]


@router.get("/realized-gain", response_model=RealizedGainOut)
def realized_gain(db: Session = Depends(get_db), user: User = Depends(current_user)):
    """Heuristic realized gain; see calculator.estimate_realized_gain."""
    transactions = portfolio.list_transactions(db, user.id, tx_type="sell")
    return RealizedGainOut(
        realized_gain_estimate=calculator.estimate_realized_gain(transactions),
        assumed_margin=calculator.ASSUMED_MARGIN,
    )


@router.get("/insights", response_model=InsightsOut)
def insights(
    years: float = Query(default=1.0),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    assets = portfolio.list_assets(db, user.id)
    return InsightsOut(
        diversity_score=calculator.diversity_score(assets),
        return_on_investment=calculator.return_on_investment(assets),
        compound_annual_growth_rate=calculator.compound_annual_growth_rate(assets, years),
        portfolio_average_cost=calculator.portfolio_average_cost(assets),
        asset_count_by_type=calculator.asset_count_by_type(assets),
        largest_holding=_holding_ref(calculator.largest_holding(assets)),
        smallest_holding=_holding_ref(calculator.smallest_holding(assets)),
    )


@router.get("/volume", response_model=VolumeOut)
def volume(db: Session = Depends(get_db), user: User = Depends(current_user)):
    return portfolio.transaction_volume(db, user.id)


@router.get("/overview", response_model=OverviewOut)
def overview(
    limit: int = Query(default=settings.performers_limit),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """Everything a dashboard needs in one call."""
    snapshot = portfolio.build_portfolio_overview(db, user.id, performers_limit=limit)
    return OverviewOut(
        summary=PortfolioSummaryOut.model_validate(snapshot.summary),
        allocation={
            label: AllocationSliceOut.model_validate(item)
            for label, item in snapshot.allocation.items()
        },
        top_performers=[asset_out(asset) for asset in snapshot.top_performers],
        worst_performers=[asset_out(asset) for asset in snapshot.worst_performers],
        realized_gain_estimate=snapshot.realized_gain_estimate,
    )
