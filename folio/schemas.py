from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

AssetTypeInput = Literal["stock", "crypto", "etf"]
TransactionTypeInput = Literal["buy", "sell"]


def _clean_symbol(value: str) -> str:
    value = value.strip().upper()
    if not value:
        raise ValueError("Symbol is required")
    return value


def _clean_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Name is required")
    return value


Symbol = Annotated[str, Field(min_length=1, max_length=32), AfterValidator(_clean_symbol)]
AssetName = Annotated[str, Field(min_length=1, max_length=200), AfterValidator(_clean_name)]


class Credentials(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=8)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Username is required")
        return value


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    created_at: datetime


class AssetCreate(BaseModel):
    symbol: Symbol
    name: AssetName
    asset_type: AssetTypeInput
    current_price: float = Field(default=0.0, ge=0)
    previous_close: float | None = Field(default=None, ge=0)
    quantity: float = Field(default=0.0, ge=0)
    average_cost: float = Field(default=0.0, ge=0)
    initial_purchase_date: datetime | None = None
    notes: str | None = None

    @field_validator("asset_type", mode="before")
    @classmethod
    def _lower_type(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_initial_purchase(self) -> AssetCreate:
        if self.initial_purchase_date is not None and (
            self.quantity <= 0 or self.average_cost <= 0
        ):
            raise ValueError(
                "An initial purchase needs a positive quantity and average cost"
            )
        return self


class AssetUpdate(BaseModel):
    symbol: Symbol | None = None
    name: AssetName | None = None
    asset_type: AssetTypeInput | None = None
    current_price: float | None = Field(default=None, ge=0)
    previous_close: float | None = Field(default=None, ge=0)
    quantity: float | None = Field(default=None, ge=0)
    average_cost: float | None = Field(default=None, ge=0)

    @field_validator("asset_type", mode="before")
    @classmethod
    def _lower_type(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class AssetMetricsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_value: float
    cost_basis: float
    unrealized_gain: float
    unrealized_gain_percent: float
    day_change: float
    day_change_value: float
    day_change_percent: float


class AssetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    symbol: str
    name: str
    asset_type: str
    kind: str
    current_price: float
    previous_close: float
    quantity: float
    average_cost: float
    created_at: datetime
    updated_at: datetime
    metrics: AssetMetricsOut | None = None


class TransactionCreate(BaseModel):
    asset_id: int
    type: TransactionTypeInput
    quantity: float = Field(gt=0)
    price_per_unit: float = Field(gt=0)
    date: datetime
    notes: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class TransactionUpdate(BaseModel):
    asset_id: int | None = None
    type: TransactionTypeInput | None = None
    quantity: float | None = Field(default=None, gt=0)
    price_per_unit: float | None = Field(default=None, gt=0)
    date: datetime | None = None
    notes: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    asset_id: int
    type: TransactionTypeInput
    quantity: float
    price_per_unit: float
    total_amount: float
    date: datetime
    notes: str | None
    created_at: datetime

    @field_validator("type", mode="before")
    @classmethod
    def _enum_value(cls, value: object) -> object:
        return getattr(value, "value", value)


class PortfolioSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_value: float
    total_invested: float
    total_cost: float
    total_gain: float
    total_gain_percent: float
    day_gain: float
    day_gain_percent: float
    value_by_type: dict[str, float]
    asset_count: int
    transaction_count: int


class AllocationSliceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: float
    percentage: float


class RealizedGainOut(BaseModel):
    realized_gain_estimate: float
    assumed_margin: float
    is_estimate: bool = True


class HoldingRef(BaseModel):
    id: int
    symbol: str
    current_value: float


class InsightsOut(BaseModel):
    diversity_score: float
    return_on_investment: float
    compound_annual_growth_rate: float
    portfolio_average_cost: float
    asset_count_by_type: dict[str, int]
    largest_holding: HoldingRef | None
    smallest_holding: HoldingRef | None


class VolumeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    buy_volume: float
    sell_volume: float
    transaction_count: int


class PriceRefreshOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    updated: list[str]
    failed: list[str]


class OverviewOut(BaseModel):
    summary: PortfolioSummaryOut
    allocation: dict[str, AllocationSliceOut]
    top_performers: list[AssetOut]
    worst_performers: list[AssetOut]
    realized_gain_estimate: float
