"""
schemas/category_schema.py — Marshmallow schemas for group category endpoints.

Validation responsibility:
  - This file: field presence, lengths, colour format.
  - services/category_service.py:
      - INVALID_CATEGORY_NAME (400)    — name yields an empty slug
      - CATEGORY_ALREADY_EXISTS (409)  — slug taken within the group

IMPORTANT: Inherits from marshmallow.Schema directly — never an app-bound
           schema. See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate

from splitplus.app.errors import ErrorCode


def _validate_name(value: str) -> None:
    if not value.strip():
        raise ValidationError(ErrorCode.INVALID_CATEGORY_NAME)


class CategorySchema(Schema):
    """POST /groups/:id/categories, PUT /groups/:id/categories/:category_id"""

    name = fields.Str(
        required=True,
        validate=[validate.Length(max=100), _validate_name],
    )

    icon = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=16),
    )

    color = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(
            r"^#[0-9A-Fa-f]{6}$",
            error="color must be a hex colour such as #FF6B6B.",
        ),
    )


class CategoryPresetsSchema(Schema):
    """POST /groups/:id/categories/from-presets"""

    preset_slugs = fields.List(
        fields.Str(validate=validate.Length(min=1, max=100)),
        required=True,
        validate=validate.Length(min=1, error="At least one preset slug is required."),
    )
