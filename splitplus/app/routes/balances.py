"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Call ONE service, return envelope. Read-only: nothing is committed.
  - No business logic. No DB queries. No bare SQL.
  - Balances are recomputed from the full scope history on every request.

Endpoints (url_prefix=/api/v1):
  GET /groups/:id/balances              → 200  positions + pairwise + plan
  GET /groups/:id/balances/:user_id     → 200  one user's position + breakdown
  GET /groups/:id/simplified-debts      → 200  minimal payoff plan
  GET /users/me/balances                → 200  caller's position in every scope
  GET /friends/:id/balance              → 200  caller's position against a friend
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from splitplus.app.extensions import db
from splitplus.app.middleware.auth_middleware import require_auth
from splitplus.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


def _serialize_breakdown(breakdown: dict) -> dict:
    participant = breakdown["participant"]
    names = balance_service.get_participant_names(
        {participant}
        | {pb.creditor for pb in breakdown["owes"]}
        | {pb.debtor for pb in breakdown["owed_by"]},
        db.session,
    )
    return {
        **participant.to_dict(),
        "net_position": str(breakdown["net_position"]),
        "owes": balance_service.serialize_pairwise(breakdown["owes"], names),
        "owed_by": balance_service.serialize_pairwise(breakdown["owed_by"], names),
    }


@balances_bp.route("/groups/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    The service verifies the caller is a group member before computing and
    fails with INTERNAL_ERROR (500) if the positions do not sum to zero.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/groups/<int:group_id>/balances/<int:user_id>", methods=["GET"])
@require_auth
def get_user_balance(group_id: int, user_id: int):
    breakdown = balance_service.compute_user_balance(
        group_id=group_id,
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": {"group_id": group_id, **_serialize_breakdown(breakdown)},
        "warnings": [],
    }), 200


@balances_bp.route("/groups/<int:group_id>/simplified-debts", methods=["GET"])
@require_auth
def get_simplified_debts(group_id: int):
    plan = balance_service.simplify_group_debts(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    names = balance_service.get_participant_names(
        {t.debtor for t in plan} | {t.creditor for t in plan},
        db.session,
    )
    return jsonify({
        "data": {
            "group_id": group_id,
            "transactions": balance_service.serialize_plan(plan, names),
        },
        "warnings": [],
    }), 200


@balances_bp.route("/users/me/balances", methods=["GET"])
@require_auth
def get_overall_balance():
    """
    GET /users/me/balances — one entry per group and friend scope.
    Positions in different currencies are listed, never summed together.
    """
    positions = balance_service.compute_overall_balance(
        user_id=g.user_id,
        session=db.session,
    )
    totals = {}
    for entry in positions:
        currency = entry["currency_code"]
        totals[currency] = (
            totals[currency] + entry["net_position"]
            if currency in totals else entry["net_position"]
        )
    return jsonify({
        "data": {
            "user_id": g.user_id,
            "scopes": [
                {
                    **entry["scope"].to_dict(),
                    "currency_code": entry["currency_code"],
                    "net_position": str(entry["net_position"]),
                }
                for entry in positions
            ],
            "totals_by_currency": {c: str(m) for c, m in sorted(totals.items())},
        },
        "warnings": [],
    }), 200


@balances_bp.route("/friends/<int:friend_id>/balance", methods=["GET"])
@require_auth
def get_friend_balance(friend_id: int):
    breakdown = balance_service.compute_friend_balance(
        caller_id=g.user_id,
        friend_id=friend_id,
        session=db.session,
    )
    return jsonify({
        "data": {
            "friend_id": friend_id,
            "friendship_id": breakdown["friendship_id"],
            "currency_code": breakdown["currency_code"],
            **_serialize_breakdown(breakdown),
        },
        "warnings": [],
    }), 200
