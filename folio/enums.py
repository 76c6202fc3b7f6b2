from __future__ import annotations

from enum import Enum


class AssetType(str, Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    ETF = "etf"
    OTHER = "other"

    @classmethod
    def parse(cls, value: AssetType | str | None) -> AssetType:
        """Map a stored type string onto the enum; unknown values become OTHER."""
        if isinstance(value, AssetType):
            return value
        raw = (value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER

    @property
    def label(self) -> str:
        if self is AssetType.ETF:
            return "ETF"
        return self.value.capitalize()


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"


def transaction_type_value(value: TransactionType | str | None) -> str:
    """Normalise an enum member or stored string to ``buy``/``sell`` form."""
    if isinstance(value, TransactionType):
        return value.value
    return str(value or "").strip().lower()
