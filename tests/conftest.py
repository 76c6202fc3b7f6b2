from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the repository root is importable in pytest runs.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from folio import create_app
from folio.db import Base, enable_sqlite_foreign_keys, get_db
from folio.models import User
from folio.security import hash_password
from folio.services.pricing import PricingService, QuoteResult


class MockQuoteProvider:
    """Deterministic in-memory quote provider for tests."""

    def __init__(self) -> None:
        self.latest: dict[str, tuple[float, float | None]] = {}
        self.calls: list[str] = []

    def set_latest(self, symbol: str, price: float, previous_close: float | None = None) -> None:
        self.latest[symbol.upper()] = (float(price), previous_close)

    def get_latest_quote(self, symbol: str) -> QuoteResult:
        key = symbol.upper()
        self.calls.append(key)
        if key not in self.latest:
            raise RuntimeError(f"No latest quote for {key}")
        price, previous_close = self.latest[key]
        return QuoteResult(
            symbol=key,
            price=price,
            previous_close=previous_close,
            fetched_at=datetime.now(timezone.utc),
        )


@pytest.fixture()
def test_env():
    provider = MockQuoteProvider()

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    event.listen(engine, "connect", enable_sqlite_foreign_keys)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    Base.metadata.create_all(bind=engine)

    app = create_app(
        pricing_service=PricingService(provider=provider, ttl_seconds=60),
        enable_startup_init=False,
    )

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with SessionLocal() as db:
        user = User(username="tester", password_hash=hash_password("password123"))
        db.add(user)
        db.commit()
        user_id = user.id

    with TestClient(app) as client:
        yield {
            "app": app,
            "client": client,
            "session_factory": SessionLocal,
            "provider": provider,
            "user_id": user_id,
        }

    engine.dispose()


@pytest.fixture()
def app(test_env):
    return test_env["app"]


@pytest.fixture()
def client(test_env):
    return test_env["client"]


@pytest.fixture()
def db_session_factory(test_env):
    return test_env["session_factory"]


@pytest.fixture()
def mock_provider(test_env):
    return test_env["provider"]


@pytest.fixture()
def user_id(test_env):
    return test_env["user_id"]


@pytest.fixture()
def authed_client(client):
    response = client.post(
        "/auth/login",
        json={"username": "tester", "password": "password123"},
    )
    assert response.status_code == 200
    return client
