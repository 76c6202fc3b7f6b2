from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from folio.db import get_db
from folio.models import User
from folio.schemas import (
    TransactionCreate,
    TransactionOut,
    TransactionTypeInput,
    TransactionUpdate,
)
from folio.services import portfolio
from folio.services.portfolio import (
    PERIODS,
    AssetNotFound,
    InvalidTransaction,
    TransactionNotFound,
)
from folio.web import current_user

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=list[TransactionOut])
def list_transactions(
    asset_id: int | None = None,
    tx_type: TransactionTypeInput | None = Query(default=None, alias="type"),
    start: datetime | None = None,
    end: datetime | None = None,
    period: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """List trades newest first; ``period`` overrides ``start``/``end``."""
    if period is not None:
        if period not in PERIODS:
            raise HTTPException(
                status_code=400, detail=f"period must be one of {', '.join(PERIODS)}"
            )
        start, end = portfolio.period_bounds(period)
    return portfolio.list_transactions(
        db,
        user.id,
        asset_id=asset_id,
        tx_type=tx_type,
        start=start,
        end=end,
        limit=limit,
    )


@router.post("", status_code=201, response_model=TransactionOut)
def add_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    """Record a trade; the asset's quantity and average cost follow."""
    try:
        return portfolio.add_transaction(
            db,
            user.id,
            payload.asset_id,
            tx_type=payload.type,
            quantity=payload.quantity,
            price_per_unit=payload.price_per_unit,
            date=payload.date,
            notes=payload.notes,
        )
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransaction as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.patch("/{tx_id}", response_model=TransactionOut)
def update_transaction(
    tx_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        return portfolio.update_transaction(
            db, user.id, tx_id, **payload.model_dump(exclude_unset=True)
        )
    except (AssetNotFound, TransactionNotFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransaction as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/{tx_id}", status_code=204)
def delete_transaction(
    tx_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    try:
        portfolio.delete_transaction(db, user.id, tx_id)
    except (AssetNotFound, TransactionNotFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransaction as exc:
        raise HTTPException(
            status_code=400, detail=f"Cannot delete transaction: {exc}"
        ) from exc
