from __future__ import annotations

import argparse
import getpass

from sqlalchemy import select

from folio.config import settings
from folio.db import SessionLocal, init_db
from folio.logging_config import configure_logging
from folio.models import User
from folio.security import MIN_PASSWORD_LENGTH, hash_password
from folio.services.portfolio import recalculate_all_assets, refresh_asset_prices
from folio.services.pricing import PricingService, YFinanceProvider


def create_user(username: str) -> int:
    """Create one user with a securely hashed password."""
    password = getpass.getpass(prompt="Password: ")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    with SessionLocal() as db:
        existing = db.scalar(select(User).where(User.username == username))
        if existing:
            raise ValueError(f"User '{username}' already exists")

        user = User(username=username, password_hash=hash_password(password))
        db.add(user)
        db.commit()
        return user.id


def _require_user(db, username: str) -> User:
    user = db.scalar(select(User).where(User.username == username))
    if user is None:
        raise ValueError(f"User '{username}' does not exist")
    return user


def recalculate(username: str) -> int:
    """Rebuild quantity and average cost of every asset from its transactions."""
    with SessionLocal() as db:
        user = _require_user(db, username)
        return recalculate_all_assets(db, user.id)


def refresh_prices(username: str, pricing_service: PricingService | None = None) -> tuple[int, list[str]]:
    """Fetch latest quotes for all of a user's assets."""
    pricing_service = pricing_service or PricingService(
        provider=YFinanceProvider(), ttl_seconds=settings.quote_ttl_seconds
    )
    with SessionLocal() as db:
        user = _require_user(db, username)
        result = refresh_asset_prices(db, pricing_service, user.id)
        return len(result.updated), result.failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Folio management commands")
    sub = parser.add_subparsers(dest="command", required=True)

    create_user_parser = sub.add_parser("create-user", help="Create a login user")
    create_user_parser.add_argument(
        "--username", required=True, help="Username for the new user"
    )
    recalculate_parser = sub.add_parser(
        "recalculate",
        help="Recalculate every asset's quantity and average cost from transactions",
    )
    recalculate_parser.add_argument("--username", required=True)
    refresh_parser = sub.add_parser(
        "refresh-prices", help="Update current price and previous close from quotes"
    )
    refresh_parser.add_argument("--username", required=True)

    args = parser.parse_args()

    configure_logging()
    init_db()

    if args.command == "create-user":
        user_id = create_user(args.username)
        print(f"Created user id={user_id} username={args.username}")
    elif args.command == "recalculate":
        count = recalculate(args.username)
        print(f"Recalculated {count} asset(s)")
    elif args.command == "refresh-prices":
        updated, failed = refresh_prices(args.username)
        print(f"Updated {updated} asset(s)")
        if failed:
            print(f"No quote for: {', '.join(failed)}")


if __name__ == "__main__":
    main()
