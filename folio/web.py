from __future__ import annotations

from dataclasses import asdict

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from folio.db import get_db
from folio.models import Asset, User
from folio.schemas import AssetMetricsOut, AssetOut
from folio.services import calculator
from folio.services.pricing import PricingService


def get_user_from_session(request: Request, db: Session) -> User | None:
    """Load the authenticated user based on session state."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return db.scalar(select(User).where(User.id == int(user_id)))


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency that rejects requests without a logged-in user."""
    user = get_user_from_session(request, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_pricing_service(request: Request) -> PricingService:
    return request.app.state.pricing_service


def asset_out(asset: Asset, with_metrics: bool = True) -> AssetOut:
    """Serialize an asset, attaching its derived metrics."""
    metrics = (
        AssetMetricsOut(**asdict(calculator.asset_metrics(asset))) if with_metrics else None
    )
    return AssetOut(
        id=asset.id,
        user_id=asset.user_id,
        symbol=asset.symbol,
        name=asset.name,
        asset_type=asset.asset_type,
        kind=asset.kind.label,
        current_price=asset.current_price,
        previous_close=asset.previous_close,
        quantity=asset.quantity,
        average_cost=asset.average_cost,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
        metrics=metrics,
    )
