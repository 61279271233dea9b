"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

Validation responsibility:
  - This file: field types, decimal precision, status enum values.
  - services/settlement_service.py:
      - INVALID_SETTLEMENT (422)     — payer == payee
      - INVALID_PARTICIPANT (422)    — both or neither participant reference
      - INVALID_AMOUNT (422)         — amount <= 0 or wrong currency
      - OVERPAYMENT warning (201)    — requires the current balance
      - membership checks (403)      — require DB lookups

The payer defaults to the caller (flask.g.user_id, passed by the route) when
neither payer_user_id nor payer_pending_user_id is sent.

IMPORTANT: Inherits from marshmallow.Schema directly — never an app-bound
           schema. See extensions.py.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from splitplus.app.errors import ErrorCode
from splitplus.app.ledger.enums import SettlementStatus


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Same rule as expense_schema.py, kept local so each schema file stands on
# its own.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """More than 2 decimal places is REJECTED (INVALID_AMOUNT_PRECISION), never rounded."""
    if not value.is_finite() or value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


_MONETARY_CEILING = validate.Range(
    max=Decimal("9999999999.99"),
    error="Amount must not exceed {max}.",
)


def _participant_ref(name: str) -> fields.Int:
    return fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error=f"{name} must be a positive integer."),
    )


# ── Schemas ────────────────────────────────────────────────────────────────

class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements, POST /friends/:id/settlements

    Field rules:
      payer_* / payee_* : at most one of each pair; existence and membership
                          are checked in the service
      amount            : required Decimal, max 2 decimal places, at most
                          9999999999.99 (the Numeric(12, 2) ceiling)
      status            : initial status, default 'pending'; 'cancelled' is
                          not a valid starting point
    """

    payer_user_id = _participant_ref("payer_user_id")
    payer_pending_user_id = _participant_ref("payer_pending_user_id")
    payee_user_id = _participant_ref("payee_user_id")
    payee_pending_user_id = _participant_ref("payee_pending_user_id")

    amount = fields.Decimal(
        required=True,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )

    currency_code = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(
            r"^[A-Z]{3}$",
            error="currency_code must be a 3-letter ISO-4217 code.",
        ),
    )

    status = fields.Enum(
        SettlementStatus,
        by_value=True,
        load_default=SettlementStatus.PENDING,
        validate=validate.OneOf(
            [SettlementStatus.PENDING, SettlementStatus.COMPLETED],
            error=ErrorCode.INVALID_STATUS,
        ),
        error_messages={"unknown": ErrorCode.INVALID_STATUS},
    )

    payment_method = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=50),
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
    )


class SettlementStatusSchema(Schema):
    """PATCH /settlements/:id/status"""

    status = fields.Enum(
        SettlementStatus,
        by_value=True,
        required=True,
        error_messages={"unknown": ErrorCode.INVALID_STATUS},
    )
