"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns the group-scoped paths (/groups/:id/expenses), the friend-scoped paths
(/friends/:id/expenses) AND the expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - serialize_expense() is a pure data-shape helper — not business logic.

Endpoints:
  POST   /groups/:id/expenses    → 201  create group expense
  GET    /groups/:id/expenses    → 200  list active group expenses
  GET    /groups/:id/expenses/search → 200  filter active group expenses
  POST   /friends/:id/expenses   → 201  create friend expense
  GET    /friends/:id/expenses   → 200  list active friend expenses
  GET    /expenses/:id           → 200  get expense + payments + splits
  PUT    /expenses/:id           → 200  replace expense and its line items
  DELETE /expenses/:id           → 200  soft-delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitplus.app.extensions import db
from splitplus.app.middleware.auth_middleware import require_auth
from splitplus.app.models.expense import Expense
from splitplus.app.schemas.expense_schema import ExpenseSchema, ExpenseSearchSchema
from splitplus.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helper ───────────────────────────────────────────────────
# Pure data-shaping with no DB access. Amounts as strings.

def serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "friendship_id": expense.friendship_id,
        "title": expense.title,
        "notes": expense.notes,
        "amount": str(expense.amount),
        "currency_code": expense.currency_code,
        "date": expense.date.isoformat(),
        "category_id": expense.category_id,
        "created_by": expense.created_by,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "payments": [
            {
                **p.participant.to_dict(),
                "amount": str(p.amount),
                "payment_method": p.payment_method,
            }
            for p in expense.payments
        ],
        "splits": [
            {
                **s.participant.to_dict(),
                "amount": str(s.amount),
                "split_type": s.split_type.value,
                "share_value": str(s.share_value) if s.share_value is not None else None,
            }
            for s in expense.splits
        ],
    }


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record a new group expense."""
    data = ExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — List active (non-deleted) expenses for a group."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/groups/<int:group_id>/expenses/search", methods=["GET"])
@require_auth
def search_expenses(group_id: int):
    """
    GET /groups/:id/expenses/search — Filter active group expenses.
    Query: q, start_date, end_date, category_id, created_by, min_amount,
    max_amount, payer_id, ower_id, limit, offset.
    """
    filters = ExpenseSearchSchema().load(request.args.to_dict())
    expenses = expense_service.search_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        filters=filters,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Friend-scoped expense routes ───────────────────────────────────────────

@expenses_bp.route("/friends/<int:friend_id>/expenses", methods=["POST"])
@require_auth
def create_friend_expense(friend_id: int):
    """POST /friends/:id/expenses — Record an expense with one friend, no group."""
    data = ExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_friend_expense(
        friend_id=friend_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/friends/<int:friend_id>/expenses", methods=["GET"])
@require_auth
def list_friend_expenses(friend_id: int):
    """GET /friends/:id/expenses — List active expenses with one friend."""
    expenses = expense_service.list_friend_expenses(
        friend_id=friend_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — Get expense detail including payments and splits."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PUT"])
@require_auth
def replace_expense(expense_id: int):
    """
    PUT /expenses/:id — Replace the expense and its whole payment/split set.
    The body is a complete expense, validated exactly like a create.
    """
    data = ExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.replace_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """
    DELETE /expenses/:id — Soft-delete (sets deleted_at = NOW()).
    Row stays in DB. Line items remain for audit. Balances exclude it.
    """
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
