from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from folio.db import get_db
from folio.models import User
from folio.schemas import (
    AssetCreate,
    AssetOut,
    AssetUpdate,
    PriceRefreshOut,
    TransactionOut,
)
from folio.services import portfolio
from folio.services.portfolio import AssetNotFound, DuplicateSymbol, InvalidTransaction
from folio.services.pricing import PricingService
from folio.web import asset_out, current_user, get_pricing_service

router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("", response_model=list[AssetOut])
def list_assets(
    asset_type: str | None = Query(default=None, alias="type"),
    q: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """List the user's holdings with derived metrics."""
    assets = portfolio.list_assets(db, user.id, asset_type=asset_type, query=q)
    return [asset_out(asset) for asset in assets]


@router.post("", status_code=201, response_model=AssetOut)
def create_asset(
    payload: AssetCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        asset = portfolio.create_asset(db, user.id, **payload.model_dump())
    except DuplicateSymbol as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidTransaction as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return asset_out(asset)


@router.post("/refresh-prices", response_model=PriceRefreshOut)
def refresh_prices(
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    pricing_service: PricingService = Depends(get_pricing_service),
):
    """Fetch latest quotes for every holding."""
    return portfolio.refresh_asset_prices(db, pricing_service, user.id)


@router.get("/{asset_id}", response_model=AssetOut)
def get_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        return asset_out(portfolio.get_asset(db, user.id, asset_id))
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.patch("/{asset_id}", response_model=AssetOut)
def update_asset(
    asset_id: int,
    payload: AssetUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        asset = portfolio.update_asset(
            db, user.id, asset_id, **payload.model_dump(exclude_unset=True)
        )
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DuplicateSymbol as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return asset_out(asset)


@router.delete("/{asset_id}", status_code=204)
def delete_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """Delete an asset and, with it, its whole transaction history."""
    try:
        portfolio.delete_asset(db, user.id, asset_id)
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/{asset_id}/recalculate", response_model=AssetOut)
def recalculate_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """Rebuild quantity and average cost from the asset's transactions."""
    try:
        return asset_out(portfolio.recalculate_asset(db, user.id, asset_id))
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/{asset_id}/transactions", response_model=list[TransactionOut])
def asset_transactions(
    asset_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        asset = portfolio.get_asset(db, user.id, asset_id)
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return portfolio.list_transactions(db, user.id, asset_id=asset.id)
