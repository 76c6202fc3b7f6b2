from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from folio.models import QuoteCache

logger = logging.getLogger(__name__)


@dataclass
class QuoteResult:
    symbol: str
    price: float
    fetched_at: datetime
    previous_close: float | None = None
    stale: bool = False
    warning: str | None = None


class QuoteProvider(Protocol):
    """Provider interface for latest quotes."""

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        ...


class YFinanceProvider:
    """Best-effort provider backed by the free yfinance library."""

    def __init__(self) -> None:
        try:
            import yfinance as yf
        except Exception as exc:  # pragma: no cover - exercised in runtime, not tests
            raise RuntimeError("yfinance is not available") from exc
        self._yf = yf

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        ticker = self._yf.Ticker(symbol)
        hist = ticker.history(period="5d", interval="1d", auto_adjust=False)
        if hist.empty:
            raise RuntimeError(f"No quote data found for {symbol}")

        close_series = hist["Close"].dropna()
        if close_series.empty:
            raise RuntimeError(f"No close data found for {symbol}")

        price = float(close_series.iloc[-1])
        previous_close = float(close_series.iloc[-2]) if len(close_series) > 1 else None
        return QuoteResult(
            symbol=symbol.upper(),
            price=price,
            previous_close=previous_close,
            fetched_at=datetime.now(timezone.utc),
        )


class UnavailableProvider:
    """Fallback provider used if yfinance cannot be initialized."""

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        raise RuntimeError("Quote provider is unavailable")


class PricingService:
    """Handles quote lookups with a database-backed cache and provider fallback."""

    def __init__(self, provider: QuoteProvider, ttl_seconds: int = 60) -> None:
        self.provider = provider
        self.ttl_seconds = ttl_seconds

    def get_quote(self, db: Session, symbol: str) -> QuoteResult | None:
        clean_symbol = symbol.strip().upper()
        now = datetime.now(timezone.utc)

        cached = db.scalar(select(QuoteCache).where(QuoteCache.symbol == clean_symbol))
        cached_quote = self._from_cache(clean_symbol, cached) if cached else None
        if cached_quote is not None:
            age_seconds = (now - cached_quote.fetched_at).total_seconds()
            if age_seconds <= self.ttl_seconds:
                return cached_quote

        try:
            fresh = self.provider.get_latest_quote(clean_symbol)
        except Exception as exc:
            logger.warning("Quote provider failed for %s: %s", clean_symbol, exc)
            if cached_quote is not None:
                cached_quote.stale = True
                cached_quote.warning = f"Using cached quote due to provider issue: {exc}"
                return cached_quote
            return None

        fetched_at = self._as_utc(fresh.fetched_at)
        try:
            if cached is None:
                cached = QuoteCache(
                    symbol=clean_symbol,
                    price=fresh.price,
                    previous_close=fresh.previous_close,
                    fetched_at=fetched_at,
                )
                db.add(cached)
            else:
                cached.price = fresh.price
                cached.previous_close = fresh.previous_close
                cached.fetched_at = fetched_at
            db.flush()
        except OperationalError as exc:
            db.rollback()
            logger.warning("Quote cache write failed for %s: %s", clean_symbol, exc)
            if cached_quote is not None:
                cached_quote.stale = True
                cached_quote.warning = f"Using cached quote due to cache write issue: {exc}"
                return cached_quote
            return None

        return QuoteResult(
            symbol=clean_symbol,
            price=fresh.price,
            previous_close=fresh.previous_close,
            fetched_at=fetched_at,
        )

    def _from_cache(self, symbol: str, cached: QuoteCache) -> QuoteResult:
        return QuoteResult(
            symbol=symbol,
            price=float(cached.price),
            previous_close=(
                float(cached.previous_close) if cached.previous_close is not None else None
            ),
            fetched_at=self._as_utc(cached.fetched_at),
        )

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
