"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against the database in TestingConfig: SQLite in memory by
    default, or whatever TEST_DATABASE_URL points at (e.g. a PostgreSQL
    splitplus_test database).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Accounts, groups, memberships and friendships are owned by other services, so
there are no endpoints for them here. Helpers below seed those rows directly
and mint bearer tokens signed with the testing JWT_SECRET_KEY.

Helper functions (not fixtures) are provided for common operations:
  - seed_user(app, ...)               → user id
  - seed_group(app, owner, members)   → group id
  - seed_pending_user(app, ...)       → pending user id
  - seed_friendship(app, a, b)        → friendship id
  - set_friendship_status(app, id, s) → block or unfriend after seeding
  - seed_category(app, group, name) → category id
  - auth_headers(user_id)             → {"Authorization": "Bearer <token>"}
  - equal_expense(...)                → request body for an equal split
  - post_expense(...)                 → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from splitplus.app import create_app
from splitplus.app.extensions import db as _db
from splitplus.app.models.category import ExpenseCategory
from splitplus.app.models.group import Group
from splitplus.app.models.membership import Friendship, FriendshipStatus, Membership
from splitplus.app.models.user import PendingUser, User


TEST_JWT_SECRET = "test-jwt-secret"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig.
      2. Run db.create_all() to create all tables.
      3. Yield the app for the test session.
      4. Drop all tables at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

_TABLES_IN_DELETE_ORDER = (
    "expense_splits",
    "expense_payments",
    "settlements",
    "expenses",
    "expense_categories",
    "friendships",
    "memberships",
    "pending_users",
    "groups",
    "users",
)


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
        for table in _TABLES_IN_DELETE_ORDER:
            _db.session.execute(text(f"DELETE FROM {table}"))
        _db.session.commit()


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

def make_token(user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": str(user_id), "iat": now, "exp": now + expires_in},
        TEST_JWT_SECRET,
        algorithm="HS256",
    )


def auth_headers(user_id: int) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def seed_user(app, username: str) -> int:
    with app.app_context():
        user = User(username=username, email=f"{username}@test.com")
        _db.session.add(user)
        _db.session.commit()
        return user.id


def seed_group(
    app,
    owner_id: int,
    member_ids: tuple[int, ...] = (),
    name: str = "Trip",
    currency_code: str = "USD",
) -> int:
    """Creates a group with the owner and `member_ids` as members."""
    with app.app_context():
        group = Group(name=name, owner_user_id=owner_id, currency_code=currency_code)
        _db.session.add(group)
        _db.session.flush()
        for user_id in (owner_id, *member_ids):
            _db.session.add(Membership(user_id=user_id, group_id=group.id))
        _db.session.commit()
        return group.id


def seed_pending_user(app, group_id: int | None, name: str, invited_by: int) -> int:
    with app.app_context():
        pending = PendingUser(
            name=name,
            email=f"{name.lower()}@invite.test",
            group_id=group_id,
            invited_by=invited_by,
        )
        _db.session.add(pending)
        _db.session.commit()
        return pending.id


def seed_friendship(
    app,
    user_a: int,
    user_b: int,
    status: FriendshipStatus = FriendshipStatus.ACCEPTED,
    currency_code: str = "USD",
) -> int:
    with app.app_context():
        low, high = Friendship.canonical_pair(user_a, user_b)
        friendship = Friendship(
            user_low_id=low,
            user_high_id=high,
            status=status,
            currency_code=currency_code,
        )
        _db.session.add(friendship)
        _db.session.commit()
        return friendship.id


def set_friendship_status(app, friendship_id: int, status: FriendshipStatus) -> None:
    with app.app_context():
        _db.session.get(Friendship, friendship_id).status = status
        _db.session.commit()


def seed_category(app, group_id: int, name: str, created_by: int) -> int:
    with app.app_context():
        category = ExpenseCategory(
            group_id=group_id,
            slug=name.lower().replace(" ", "-"),
            name=name,
            created_by=created_by,
        )
        _db.session.add(category)
        _db.session.commit()
        return category.id


def equal_expense(
    payer_id: int,
    amount: str,
    user_ids: list[int],
    pending_ids: list[int] = (),
    title: str = "Dinner",
    **extra,
) -> dict:
    """Request body: `payer_id` pays `amount`, split equally."""
    splits = [{"user_id": uid, "split_type": "equal"} for uid in user_ids]
    splits += [{"pending_user_id": pid, "split_type": "equal"} for pid in pending_ids]
    return {
        "title": title,
        "amount": amount,
        "payments": [{"user_id": payer_id, "amount": amount}],
        "splits": splits,
        **extra,
    }


def post_expense(client, user_id: int, group_id: int, body: dict):
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=body,
        headers=auth_headers(user_id),
    )


def error_code(resp) -> str:
    return resp.get_json()["error"]["code"]
