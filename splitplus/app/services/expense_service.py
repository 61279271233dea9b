"""
services/expense_service.py — Expense business logic.

Every write goes through validate_and_prepare():
  1. The caller must belong to the scope (membership_service).
  2. ledger.validator.validate_expense() checks the arithmetic invariants and
     computes exact split amounts. Nothing is written if it raises.
  3. Every referenced participant must be a member of the scope.
  4. A category, when given, must belong to the expense's group
     (category_service).
Only then are the expense, its payments and its splits written, all inside
the caller's transaction.

Authorization rules:
  - Create / list / get / replace / delete: caller must belong to the scope.
    Any scope member may replace or delete an expense.
  - Replace: a soft-deleted expense cannot be edited (EXPENSE_DELETED, 422).

Search:
  search_expenses() filters a group's active expenses by title/notes text,
  date range, category, creator, amount range, payer and ower, newest first,
  paged by limit (default 20, at most 100) and offset.

Update semantics:
  An expense and its payment/split set change as a unit. replace_expense()
  re-validates the full submitted expense and swaps every payment and split
  row; there is no partial patch of individual line items.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from splitplus.app.errors import AppError, ErrorCode
from splitplus.app.ledger.scope import Scope
from splitplus.app.ledger.validator import PreparedExpense, validate_expense
from splitplus.app.models.expense import Expense, Payment
from splitplus.app.models.split import Split
from splitplus.app.services import category_service, membership_service

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _friend_scope(caller_id: int, friend_id: int, session: Session) -> Scope:
    friendship = membership_service.get_friendship_or_404(caller_id, friend_id, session)
    return Scope.friendship(friendship.id)


def _write_line_items(expense: Expense, prepared: PreparedExpense) -> None:
    """Appends Payment and Split rows in submitted order."""
    for payment in prepared.payments:
        expense.payments.append(Payment(
            user_id=payment.participant.user_id,
            pending_user_id=payment.participant.pending_user_id,
            amount=payment.amount.amount,
            payment_method=payment.payment_method,
        ))
    for split in prepared.splits:
        expense.splits.append(Split(
            user_id=split.participant.user_id,
            pending_user_id=split.participant.pending_user_id,
            amount=split.amount.amount,
            split_type=split.split_type,
            share_value=split.share_value,
        ))


def _active_expenses_stmt(scope: Scope):
    column = Expense.group_id if scope.is_group else Expense.friendship_id
    return (
        select(Expense)
        .options(selectinload(Expense.payments), selectinload(Expense.splits))
        .where(
            column == scope.id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.date.desc(), Expense.id.desc())
    )


# ── Validation ─────────────────────────────────────────────────────────────

def validate_and_prepare(
        scope: Scope,
        caller_id: int,
        data: Mapping,
        session: Session,
) -> PreparedExpense:
    """
    Runs every check an expense must pass before it may be persisted.

    Args:
        scope:     The group or friend scope the expense is recorded in.
        caller_id: The authenticated user (from flask.g).
        data:      Validated dict from ExpenseSchema.

    Returns:
        PreparedExpense with exact amounts for every payment and split.

    Raises:
        AppError -- authorization, ledger validation or membership failures.
    """
    membership_service.require_scope_access(scope, caller_id, session)
    currency = membership_service.scope_currency(scope, session)

    prepared = validate_expense(data, currency)

    membership_service.require_participants_in_scope(
        scope,
        [p.participant for p in prepared.payments],
        session,
        field="payments",
    )
    membership_service.require_participants_in_scope(
        scope,
        [s.participant for s in prepared.splits],
        session,
        field="splits",
    )
    category_service.validate_expense_category(scope, data.get("category_id"), session)
    return prepared


def _save_expense(
        scope: Scope,
        caller_id: int,
        data: Mapping,
        prepared: PreparedExpense,
        session: Session,
) -> Expense:
    expense = Expense(
        group_id=scope.id if scope.is_group else None,
        friendship_id=None if scope.is_group else scope.id,
        title=data["title"],
        notes=data.get("notes"),
        amount=prepared.amount.amount,
        currency_code=prepared.currency,
        created_by=caller_id,
        category_id=data.get("category_id"),
    )
    if data.get("date") is not None:
        expense.date = data["date"]

    _write_line_items(expense, prepared)
    session.add(expense)
    session.flush()

    logger.info(
        "Created expense %s in scope %s: %s %s, %d payments, %d splits",
        expense.id,
        scope,
        expense.amount,
        expense.currency_code,
        len(prepared.payments),
        len(prepared.splits),
    )
    return expense


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense in a group.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  -- group does not exist.
        AppError(NOT_GROUP_MEMBER, 403) -- caller or a participant is not a member.
        AppError(<ledger code>, 422)    -- see ledger.validator.
    """
    scope = Scope.group(group_id)
    prepared = validate_and_prepare(scope, caller_id, data, session)
    return _save_expense(scope, caller_id, data, prepared, session)


def create_friend_expense(
        friend_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """Records a new expense between the caller and one friend, outside any group."""
    scope = _friend_scope(caller_id, friend_id, session)
    prepared = validate_and_prepare(scope, caller_id, data, session)
    return _save_expense(scope, caller_id, data, prepared, session)


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Returns all active (non-deleted) expenses for a group, newest first."""
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    return list(session.execute(_active_expenses_stmt(scope)).scalars().all())


def list_friend_expenses(
        friend_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Returns all active expenses between the caller and one friend, newest first."""
    scope = _friend_scope(caller_id, friend_id, session)
    return list(session.execute(_active_expenses_stmt(scope)).scalars().all())


DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100


def search_expenses(
        group_id: int,
        caller_id: int,
        filters: Mapping,
        session: Session,
) -> list[Expense]:
    """
    Active group expenses matching every given filter, newest first.

    Filters (all optional): q, start_date, end_date, category_id, created_by,
    min_amount, max_amount, payer_id, ower_id, limit, offset. payer_id and
    ower_id match registered users on the expense's payments and splits.
    """
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)

    stmt = _active_expenses_stmt(scope)

    if filters.get("q"):
        pattern = f"%{filters['q']}%"
        stmt = stmt.where(or_(Expense.title.ilike(pattern), Expense.notes.ilike(pattern)))
    if filters.get("start_date") is not None:
        stmt = stmt.where(Expense.date >= filters["start_date"])
    if filters.get("end_date") is not None:
        stmt = stmt.where(Expense.date <= filters["end_date"])
    if filters.get("category_id") is not None:
        stmt = stmt.where(Expense.category_id == filters["category_id"])
    if filters.get("created_by") is not None:
        stmt = stmt.where(Expense.created_by == filters["created_by"])
    if filters.get("min_amount") is not None:
        stmt = stmt.where(Expense.amount >= filters["min_amount"])
    if filters.get("max_amount") is not None:
        stmt = stmt.where(Expense.amount <= filters["max_amount"])
    if filters.get("payer_id") is not None:
        stmt = stmt.where(Expense.id.in_(
            select(Payment.expense_id).where(Payment.user_id == filters["payer_id"])
        ))
    if filters.get("ower_id") is not None:
        stmt = stmt.where(Expense.id.in_(
            select(Split.expense_id).where(Split.user_id == filters["ower_id"])
        ))

    limit = filters.get("limit") or DEFAULT_SEARCH_LIMIT
    if limit <= 0:
        limit = DEFAULT_SEARCH_LIMIT
    limit = min(limit, MAX_SEARCH_LIMIT)
    stmt = stmt.limit(limit).offset(max(filters.get("offset") or 0, 0))

    return list(session.execute(stmt).scalars().all())


def get_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Returns a single expense including its payments and splits.

    Returns the expense even if soft-deleted; deleted_at is present in the
    response so the client can display the deletion state.
    """
    expense = _get_expense_or_404(expense_id, session)
    membership_service.require_scope_access(expense.scope, caller_id, session)
    return expense


def replace_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Replaces an expense and its whole payment/split set.

    The submitted expense is validated exactly like a new one. The old line
    items are removed and the new ones written within the same transaction,
    so a failure anywhere leaves the stored expense untouched.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) -- expense does not exist.
        AppError(EXPENSE_DELETED, 422)   -- expense is soft-deleted.
        plus everything validate_and_prepare() raises.
    """
    expense = _get_expense_or_404(expense_id, session)
    scope = expense.scope
    membership_service.require_scope_access(scope, caller_id, session)

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )

    prepared = validate_and_prepare(scope, caller_id, data, session)

    expense.title = data["title"]
    expense.notes = data.get("notes")
    expense.category_id = data.get("category_id")
    if data.get("date") is not None:
        expense.date = data["date"]
    expense.amount = prepared.amount.amount
    expense.currency_code = prepared.currency

    # Old rows must be gone before the new ones hit the unique constraints.
    expense.payments.clear()
    expense.splits.clear()
    session.flush()

    _write_line_items(expense, prepared)
    expense.updated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info("Replaced expense %s in scope %s", expense.id, scope)
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Soft-deletes an expense by setting deleted_at = NOW().

    The row and its line items stay in the database for audit. Balance
    computation excludes it. Re-deleting is a no-op.
    """
    expense = _get_expense_or_404(expense_id, session)
    membership_service.require_scope_access(expense.scope, caller_id, session)

    if not expense.is_deleted:
        expense.deleted_at = datetime.now(timezone.utc)
        session.flush()
        logger.info("Soft-deleted expense %s in scope %s", expense.id, expense.scope)
