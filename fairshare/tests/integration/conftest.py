"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against the TestingConfig database (in-memory SQLite unless
    TEST_DATABASE_URL points elsewhere).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - The exchange-rate provider is replaced by a cached static table so no
    test ever reaches the network. TEST_RATES lists every known rate.

Helper functions (not fixtures) are provided for common operations:
  - make_user(app, ...)      → user id
  - make_group(app, ...)     → group id (members joined in order)
  - make_category(app, ...)  → category id
  - make_expense(app, ...)   → expense id
  - identity_headers(uid)    → {"X-User-Id": "<uid>"}

Expenses, groups and users are owned by an external persistence layer; the
helpers write rows directly through the models instead of an HTTP API.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fairshare.app import create_app
from fairshare.app.extensions import db as _db
from fairshare.app.models.expense import Category, Expense
from fairshare.app.models.group import Group
from fairshare.app.models.membership import Membership
from fairshare.app.models.split import Split
from fairshare.app.models.user import User
from fairshare.app.services.rate_provider import CachingRateProvider, StaticRateProvider

FRI = date(2024, 3, 1)
MON = date(2024, 3, 4)

TEST_RATES = {
    ("EUR", "USD"): {FRI: "1.08", MON: "1.10"},
    ("GBP", "USD"): {MON: "1.25"},
    ("USD", "EUR"): {MON: "0.91"},
}


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig.
      2. Swap in a static rate table behind the read-through cache.
      3. Run db.create_all() to create all tables.
      4. Yield the app for the test session.
      5. Drop all tables at teardown.
    """
    flask_app = create_app("testing")
    flask_app.extensions["rate_provider"] = CachingRateProvider(
        StaticRateProvider(TEST_RATES),
    )

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows between tests in FK-safe order.

    autouse=True means this runs after EVERY test in the integration suite
    without needing to be declared in each test function.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        from sqlalchemy import text
        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM splits"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM categories"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def identity_headers(user_id: int) -> dict:
    """Returns the caller identity header forwarded by the upstream auth layer."""
    return {"X-User-Id": str(user_id)}


def make_user(
    app,
    username: str = "alice",
    is_shadow: bool = False,
    display_currency: str | None = None,
    conversion_mode: str | None = None,
) -> int:
    with app.app_context():
        user = User(
            username=username,
            email=None if is_shadow else f"{username}@test.com",
            is_shadow=is_shadow,
            display_currency=display_currency,
            conversion_mode=conversion_mode,
        )
        _db.session.add(user)
        _db.session.commit()
        return user.id


def make_group(app, first_member_id: int, member_ids=(), name: str = "Test Group") -> int:
    """Creates a group; `first_member_id` joins first, then `member_ids` in order."""
    with app.app_context():
        group = Group(name=name)
        _db.session.add(group)
        _db.session.flush()

        for uid in (first_member_id, *member_ids):
            _db.session.add(Membership(user_id=uid, group_id=group.id))
        _db.session.commit()
        return group.id


def make_category(app, name: str = "Food", color: str | None = "#ff8800") -> int:
    with app.app_context():
        category = Category(name=name, color=color, icon=None)
        _db.session.add(category)
        _db.session.commit()
        return category.id


def make_expense(
    app,
    group_id: int | None,
    paid_by_user_id: int,
    amount: str,
    splits: dict[int, str],
    currency: str = "USD",
    on: date = MON,
    category_id: int | None = None,
    description: str = "Test Expense",
    deleted: bool = False,
    settled=(),
) -> int:
    """
    Inserts an expense with its splits and returns its id.
    `splits` maps user id → share amount in the expense currency; the shares
    of users listed in `settled` are stored as already repaid.
    """
    with app.app_context():
        expense = Expense(
            group_id=group_id,
            paid_by_user_id=paid_by_user_id,
            category_id=category_id,
            description=description,
            amount=Decimal(amount),
            currency=currency,
            date=on,
            deleted_at=datetime.now(timezone.utc) if deleted else None,
        )
        expense.splits = [
            Split(user_id=uid, amount=Decimal(share), is_settled=uid in settled)
            for uid, share in splits.items()
        ]
        _db.session.add(expense)
        _db.session.commit()
        return expense.id
