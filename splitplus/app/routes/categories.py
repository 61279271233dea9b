"""
routes/categories.py — Group expense category route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (url_prefix=/api/v1):
  GET    /categories/presets                       → 200  system presets
  GET    /groups/:id/categories                    → 200  list group categories
  POST   /groups/:id/categories                    → 201  add a category
  POST   /groups/:id/categories/from-presets       → 201  adopt presets
  PUT    /groups/:id/categories/:category_id       → 200  rename / restyle
  DELETE /groups/:id/categories/:category_id       → 200  delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitplus.app.extensions import db
from splitplus.app.middleware.auth_middleware import require_auth
from splitplus.app.models.category import ExpenseCategory
from splitplus.app.schemas.category_schema import CategoryPresetsSchema, CategorySchema
from splitplus.app.services import category_service

categories_bp = Blueprint("categories", __name__)


def serialize_category(category: ExpenseCategory) -> dict:
    return {
        "id": category.id,
        "group_id": category.group_id,
        "slug": category.slug,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
        "created_by": category.created_by,
        "created_at": category.created_at.isoformat() if category.created_at else None,
        "updated_at": category.updated_at.isoformat() if category.updated_at else None,
    }


@categories_bp.route("/categories/presets", methods=["GET"])
def list_presets():
    """GET /categories/presets — The system category templates. No auth."""
    return jsonify({
        "data": [preset.to_dict() for preset in category_service.list_presets()],
        "warnings": [],
    }), 200


@categories_bp.route("/groups/<int:group_id>/categories", methods=["GET"])
@require_auth
def list_group_categories(group_id: int):
    categories = category_service.list_group_categories(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [serialize_category(c) for c in categories],
        "warnings": [],
    }), 200


@categories_bp.route("/groups/<int:group_id>/categories", methods=["POST"])
@require_auth
def create_group_category(group_id: int):
    data = CategorySchema().load(request.get_json(force=True) or {})
    category = category_service.create_group_category(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_category(category), "warnings": []}), 201


@categories_bp.route("/groups/<int:group_id>/categories/from-presets", methods=["POST"])
@require_auth
def create_categories_from_presets(group_id: int):
    """
    POST /groups/:id/categories/from-presets — Adopt presets by slug.
    Unknown slugs are ignored; presets already adopted are returned as-is.
    """
    data = CategoryPresetsSchema().load(request.get_json(force=True) or {})
    categories = category_service.create_categories_from_presets(
        group_id=group_id,
        caller_id=g.user_id,
        preset_slugs=data["preset_slugs"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": [serialize_category(c) for c in categories],
        "warnings": [],
    }), 201


@categories_bp.route("/groups/<int:group_id>/categories/<int:category_id>", methods=["PUT"])
@require_auth
def update_group_category(group_id: int, category_id: int):
    data = CategorySchema().load(request.get_json(force=True) or {})
    category = category_service.update_group_category(
        group_id=group_id,
        category_id=category_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": serialize_category(category), "warnings": []}), 200


@categories_bp.route("/groups/<int:group_id>/categories/<int:category_id>", methods=["DELETE"])
@require_auth
def delete_group_category(group_id: int, category_id: int):
    """DELETE /groups/:id/categories/:category_id — Expenses using it become uncategorised."""
    category_service.delete_group_category(
        group_id=group_id,
        category_id=category_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "category_id": category_id,
        },
        "warnings": [],
    }), 200
