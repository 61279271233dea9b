"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Special: the create handlers receive (Settlement, warnings[]).
  A non-empty warnings list (e.g. OVERPAYMENT) goes into the response
  envelope: {"data": {...}, "warnings": [{"code": "OVERPAYMENT", ...}]}.
  The HTTP status is still 201 — overpayment does NOT block the request.

Endpoints (url_prefix=/api/v1):
  POST   /groups/:id/settlements    → 201  record a group settlement
  GET    /groups/:id/settlements    → 200  list group settlements
  POST   /friends/:id/settlements   → 201  record a friend settlement
  GET    /friends/:id/settlements   → 200  list friend settlements
  GET    /settlements/:id           → 200  get one settlement
  PATCH  /settlements/:id/status    → 200  move to a new status
  DELETE /settlements/:id           → 200  delete a pending or cancelled settlement
  GET    /users/me/settlements      → 200  settlements the caller pays or receives
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitplus.app.extensions import db
from splitplus.app.middleware.auth_middleware import require_auth
from splitplus.app.models.settlement import Settlement
from splitplus.app.schemas.settlement_schema import (
    CreateSettlementSchema,
    SettlementStatusSchema,
)
from splitplus.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def serialize_settlement(s: Settlement) -> dict:
    """Converts a Settlement ORM object to a plain dict for JSON output."""
    return {
        "id": s.id,
        "group_id": s.group_id,
        "friendship_id": s.friendship_id,
        "payer": s.payer.to_dict(),
        "payee": s.payee.to_dict(),
        "amount": str(s.amount),
        "currency_code": s.currency_code,
        "status": s.status.value,
        "payment_method": s.payment_method,
        "notes": s.notes,
        "created_by": s.created_by,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "updated_at": s.updated_at.isoformat() if s.updated_at else None,
        "completed_at": s.completed_at.isoformat() if s.completed_at else None,
    }


# ── Group-scoped routes ────────────────────────────────────────────────────

@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["POST"])
@require_auth
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a settlement.

    The payer defaults to the authenticated caller (g.user_id). If the amount
    exceeds the payer's current debt to the payee, the settlement is still
    recorded and an OVERPAYMENT warning is included. Status remains 201.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement, warnings = settlement_service.create_settlement(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_settlement(settlement), "warnings": warnings}), 201


@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["GET"])
@require_auth
def list_settlements(group_id: int):
    """GET /groups/:id/settlements — List every settlement for a group."""
    settlements = settlement_service.list_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


# ── Friend-scoped routes ───────────────────────────────────────────────────

@settlements_bp.route("/friends/<int:friend_id>/settlements", methods=["POST"])
@require_auth
def create_friend_settlement(friend_id: int):
    """POST /friends/:id/settlements — Caller pays the friend unless told otherwise."""
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement, warnings = settlement_service.create_friend_settlement(
        friend_id=friend_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_settlement(settlement), "warnings": warnings}), 201


@settlements_bp.route("/friends/<int:friend_id>/settlements", methods=["GET"])
@require_auth
def list_friend_settlements(friend_id: int):
    settlements = settlement_service.list_friend_settlements(
        friend_id=friend_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


# ── Settlement-ID routes ───────────────────────────────────────────────────

@settlements_bp.route("/settlements/<int:settlement_id>", methods=["GET"])
@require_auth
def get_settlement(settlement_id: int):
    settlement = settlement_service.get_settlement(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": serialize_settlement(settlement), "warnings": []}), 200


@settlements_bp.route("/settlements/<int:settlement_id>/status", methods=["PATCH"])
@require_auth
def update_settlement_status(settlement_id: int):
    """
    PATCH /settlements/:id/status — pending → completed | cancelled,
    completed → cancelled. Only completed settlements affect balances.
    """
    data = SettlementStatusSchema().load(request.get_json(force=True) or {})
    settlement = settlement_service.update_settlement_status(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        new_status=data["status"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_settlement(settlement), "warnings": []}), 200


@settlements_bp.route("/settlements/<int:settlement_id>", methods=["DELETE"])
@require_auth
def delete_settlement(settlement_id: int):
    """
    DELETE /settlements/:id — Hard-delete a pending or cancelled settlement.
    A completed settlement must be cancelled first (422).
    """
    settlement_service.delete_settlement(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "settlement_id": settlement_id,
        },
        "warnings": [],
    }), 200


# ── Caller-scoped routes ───────────────────────────────────────────────────

@settlements_bp.route("/users/me/settlements", methods=["GET"])
@require_auth
def list_my_settlements():
    """GET /users/me/settlements — Settlements the caller pays or receives, newest first."""
    settlements = settlement_service.list_user_settlements(
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200
