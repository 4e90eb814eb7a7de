"""CLI for restaurant (tenant) administration.

Usage::

    python -m scripts.manage_tenant <command> [options]

Commands:
    create-restaurant       Provision a new restaurant
    list-restaurants        List restaurants with user/order counts
    set-poster              Store Poster POS credentials for a restaurant
    deactivate-restaurant   Deactivate a restaurant (never hard-deleted)
    check-rls               Report RLS status and per-restaurant row counts
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Callable

from sqlalchemy import create_engine, func, select
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.orm import Session

from restaurant_checklist.config import settings
from restaurant_checklist.storage.database import create_engine as create_async_pool
from restaurant_checklist.storage.orm import (
    TENANT_SCOPED_TABLES,
    Order,
    Restaurant,
    User,
)
from restaurant_checklist.storage.rls import (
    isolation_counts,
    is_rls_enabled,
    rls_policies,
)
from restaurant_checklist.storage.tenant_session import TenantSessionManager


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    A fresh connection carries no tenant marker, so every restaurant's
    rows are visible here.
    """
    engine = create_engine(settings.database_url)
    return Session(engine)


def _get_restaurant(session: Session, restaurant_id: str) -> Restaurant:
    restaurant = session.execute(
        select(Restaurant).where(Restaurant.id == restaurant_id)
    ).scalar_one_or_none()
    if restaurant is None:
        print(f"Restaurant not found: {restaurant_id}", file=sys.stderr)
        sys.exit(1)
    return restaurant


def create_restaurant(args: argparse.Namespace) -> None:
    """Provision a new restaurant."""
    with get_sync_session() as session:
        existing = session.execute(
            select(Restaurant).where(Restaurant.id == args.id)
        ).scalar_one_or_none()
        if existing is not None:
            print(f"Restaurant already exists: {args.id}", file=sys.stderr)
            sys.exit(1)

        restaurant = Restaurant(
            id=args.id,
            name=args.name,
            currency=args.currency,
            locale=args.locale,
            is_active=True,
        )
        session.add(restaurant)
        session.commit()
        print(f"Restaurant created: {args.name} (id: {restaurant.id})")


def list_restaurants(_args: argparse.Namespace) -> None:
    """List all restaurants with user and order counts."""
    with get_sync_session() as session:
        users = (
            select(func.count(User.id))
            .where(User.restaurant_id == Restaurant.id)
            .scalar_subquery()
        )
        orders = (
            select(func.count(Order.id))
            .where(Order.restaurant_id == Restaurant.id)
            .scalar_subquery()
        )
        stmt = select(
            Restaurant.id,
            Restaurant.name,
            Restaurant.is_active,
            users.label("user_count"),
            orders.label("order_count"),
        ).order_by(Restaurant.id)
        rows = session.execute(stmt).all()

        if not rows:
            print("No restaurants found.")
            return

        print("Restaurants:")
        for i, row in enumerate(rows, 1):
            status = "active" if row.is_active else "inactive"
            print(
                f"  {i}. {row.id} [{row.name}] ({status}, "
                f"{row.user_count} users, {row.order_count} orders)"
            )


def set_poster(args: argparse.Namespace) -> None:
    """Store Poster POS credentials."""
    with get_sync_session() as session:
        restaurant = _get_restaurant(session, args.id)
        restaurant.poster_token = args.token
        restaurant.poster_account_name = args.account
        session.commit()
        print(f"Poster credentials updated: {args.id} (account: {args.account})")


def deactivate_restaurant(args: argparse.Namespace) -> None:
    """Deactivate a restaurant; its users get 403 on the next cache refresh."""
    with get_sync_session() as session:
        restaurant = _get_restaurant(session, args.id)
        if not restaurant.is_active:
            print(f"Restaurant already inactive: {args.id}", file=sys.stderr)
            sys.exit(1)

        restaurant.is_active = False
        session.commit()
        print(f"Restaurant deactivated: {args.id}")


async def _check_rls(restaurant_ids: list[str]) -> bool:
    sessions = TenantSessionManager(create_async_pool(settings))
    healthy = True
    try:
        for table in TENANT_SCOPED_TABLES:

            async def _inspect(
                conn: AsyncConnection, table: str = table
            ) -> tuple[bool, list[str]]:
                enabled = await is_rls_enabled(conn, table)
                policies = [p["policyname"] for p in await rls_policies(conn, table)]
                return enabled, policies

            enabled, policies = await sessions.without_tenant(_inspect)
            healthy = healthy and enabled and bool(policies)
            state = "enabled" if enabled else "DISABLED"
            print(f"{table}: RLS {state}, policies: {', '.join(policies) or 'none'}")

            if restaurant_ids:
                counts = await isolation_counts(sessions, table, restaurant_ids)
                for rid, count in counts.items():
                    print(f"  {rid}: {count} rows")
    finally:
        await sessions.dispose()
    return healthy


def check_rls(args: argparse.Namespace) -> None:
    """Report RLS status; exit 1 if any tenant table is unprotected."""
    if not asyncio.run(_check_rls(args.restaurant or [])):
        sys.exit(1)


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Restaurant management CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # create-restaurant
    p = sub.add_parser("create-restaurant", help="Provision a new restaurant")
    p.add_argument("--id", required=True, help="Restaurant id (slug)")
    p.add_argument("--name", required=True, help="Display name")
    p.add_argument("--currency", default="UAH", help="ISO currency code")
    p.add_argument("--locale", default="uk-UA", help="Locale tag")

    # list-restaurants
    sub.add_parser("list-restaurants", help="List all restaurants")

    # set-poster
    p = sub.add_parser("set-poster", help="Store Poster POS credentials")
    p.add_argument("--id", required=True, help="Restaurant id")
    p.add_argument("--token", required=True, help="Poster access token")
    p.add_argument("--account", required=True, help="Poster account subdomain")

    # deactivate-restaurant
    p = sub.add_parser("deactivate-restaurant", help="Deactivate a restaurant")
    p.add_argument("--id", required=True, help="Restaurant id")

    # check-rls
    p = sub.add_parser("check-rls", help="Verify row-level security")
    p.add_argument(
        "--restaurant",
        action="append",
        help="Restaurant id to count rows for (repeatable)",
    )

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "create-restaurant": create_restaurant,
        "list-restaurants": list_restaurants,
        "set-poster": set_poster,
        "deactivate-restaurant": deactivate_restaurant,
        "check-rls": check_rls,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
