from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

    from folio.services.pricing import PricingService

logger = logging.getLogger(__name__)


def create_app(
    pricing_service: PricingService | None = None,
    enable_startup_init: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    # Importing the folio package must not build the database engine.
    from fastapi import FastAPI
    from starlette.middleware.sessions import SessionMiddleware

    from folio.config import settings
    from folio.db import init_db
    from folio.logging_config import configure_logging
    from folio.routes import assets, auth, portfolio, transactions
    from folio.services.pricing import (
        PricingService,
        QuoteProvider,
        UnavailableProvider,
        YFinanceProvider,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if enable_startup_init:
            configure_logging()
            init_db()
            logger.info("%s started", settings.app_name)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie_name,
        same_site="lax",
        https_only=settings.session_https_only,
        max_age=60 * 60 * 24 * 7,
    )

    if pricing_service is None:
        try:
            provider: QuoteProvider = YFinanceProvider()
        except RuntimeError:
            logger.warning("yfinance unavailable; price refresh disabled")
            provider = UnavailableProvider()
        pricing_service = PricingService(provider=provider, ttl_seconds=settings.quote_ttl_seconds)
    app.state.pricing_service = pricing_service

    app.include_router(auth.router)
    app.include_router(assets.router)
    app.include_router(transactions.router)
    app.include_router(portfolio.router)

    return app
