"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, enum values (INVALID_SPLIT_TYPE)
      - Decimal precision: more than 2 decimal places is rejected with
        INVALID_AMOUNT_PRECISION, never rounded
      - Non-empty-after-trim title
      - payments and splits are present and non-empty lists
  - ledger/validator.py (ledger invariants, 422):
      - amount > 0, currency, participant references, totals, split types
  - services/membership_service.py (403):
      - every participant belongs to the scope

Participants are sent as {"user_id": n} or {"pending_user_id": n} inside
each payment and split. Both keys load as None when absent so the ledger
validator can reject "both" and "neither" with INVALID_PARTICIPANT.

IMPORTANT: Inherits from marshmallow.Schema directly — never an app-bound
           schema. See extensions.py.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from splitplus.app.errors import ErrorCode
from splitplus.app.ledger.enums import SplitType


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Rejects monetary values with more than 2 decimal places.

    Decimal.as_tuple().exponent gives the scale as a negative integer:
      Decimal("10.123") → -3 → REJECT
      Decimal("10.12")  → -2 → accept
      Decimal("10")     →  0 → accept
    Sign is checked by the ledger validator (INVALID_AMOUNT, 422).
    """
    if not value.is_finite() or value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


# Largest value a Numeric(12, 2) column holds.
MAX_MONETARY_AMOUNT = Decimal("9999999999.99")

_MONETARY_CEILING = validate.Range(
    max=MAX_MONETARY_AMOUNT,
    error="Amount must not exceed {max}.",
)


def _validate_percentage(value: Decimal) -> None:
    """Percentages are stored with 4 decimal places (Numeric(12, 4))."""
    if not value.is_finite() or value.as_tuple().exponent < -4:
        raise ValidationError("percentage must have at most 4 decimal places.")


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _participant_ref(name: str) -> fields.Int:
    return fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error=f"{name} must be a positive integer."),
    )


def _currency_code() -> fields.Str:
    return fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(
            r"^[A-Z]{3}$",
            error="currency_code must be a 3-letter ISO-4217 code.",
        ),
    )


# ── Line items ─────────────────────────────────────────────────────────────

class PaymentInputSchema(Schema):
    """One entry of the `payments` array: who paid how much."""

    user_id = _participant_ref("user_id")
    pending_user_id = _participant_ref("pending_user_id")

    amount = fields.Decimal(
        required=True,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )

    payment_method = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=50),
    )


class SplitInputSchema(Schema):
    """
    One entry of the `splits` array: who owes a share.

    Which of amount / percentage / shares is required depends on split_type
    and is checked by the ledger validator, which knows the whole set.
    """

    user_id = _participant_ref("user_id")
    pending_user_id = _participant_ref("pending_user_id")

    split_type = fields.Enum(
        SplitType,
        by_value=True,
        load_default=SplitType.EXACT,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )

    percentage = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_percentage,
    )

    shares = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
    )


# ── Expense ────────────────────────────────────────────────────────────────

class ExpenseSchema(Schema):
    """
    POST /groups/:id/expenses, POST /friends/:id/expenses, PUT /expenses/:id

    PUT carries the complete expense: the stored payment and split sets are
    replaced wholesale, so the same schema serves create and replace.
    """

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Title must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    notes = fields.Str(
        load_default=None,
        allow_none=True,
    )

    amount = fields.Decimal(
        required=True,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )

    # Defaults to the scope currency in the service.
    currency_code = _currency_code()

    date = fields.Date(
        load_default=None,
        allow_none=True,
    )

    # Must belong to the expense's group; checked in the service.
    category_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="category_id must be a positive integer."),
    )

    payments = fields.List(
        fields.Nested(PaymentInputSchema),
        required=True,
        validate=validate.Length(min=1, error="At least one payment is required."),
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        required=True,
        validate=validate.Length(min=1, error="At least one split is required."),
    )


# ── Search ─────────────────────────────────────────────────────────────────

def _query_id() -> fields.Int:
    return fields.Int(
        load_default=None,
        validate=validate.Range(min=1, error="Ids must be positive integers."),
    )


class ExpenseSearchSchema(Schema):
    """
    GET /groups/:id/expenses/search query string.

    Every filter is optional. Dates are YYYY-MM-DD. Out-of-range limits are
    clamped by the service (default 20, at most 100).
    """

    q = fields.Str(load_default=None, validate=validate.Length(max=255))
    start_date = fields.Date(load_default=None)
    end_date = fields.Date(load_default=None)
    category_id = _query_id()
    created_by = _query_id()
    min_amount = fields.Decimal(
        load_default=None,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )
    max_amount = fields.Decimal(
        load_default=None,
        validate=[_validate_monetary_amount, _MONETARY_CEILING],
    )
    payer_id = _query_id()
    ower_id = _query_id()
    limit = fields.Int(load_default=None)
    offset = fields.Int(
        load_default=0,
        validate=validate.Range(min=0, error="offset must not be negative."),
    )
