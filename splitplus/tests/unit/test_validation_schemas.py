"""
tests/unit/test_validation_schemas.py — Unit tests for the marshmallow request schemas.

What this file proves:
  - Amounts load as Decimal; more than 2 decimal places is rejected with
    INVALID_AMOUNT_PRECISION (never rounded)
  - Amounts above the Numeric(12, 2) ceiling are rejected before the database
  - Unknown split_type / status values carry their registered error codes
  - category_id and search filters load as integers, dates and Decimals
  - Participant references default to None so the ledger validator can
    reject "both" and "neither"
  - Sign is NOT checked here (that is INVALID_AMOUNT in the ledger)

No Flask app, no database.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from marshmallow import ValidationError

from splitplus.app.errors import ErrorCode
from splitplus.app.ledger.enums import SettlementStatus, SplitType
from splitplus.app.schemas.expense_schema import MAX_MONETARY_AMOUNT, ExpenseSchema, ExpenseSearchSchema
from splitplus.app.schemas.settlement_schema import (
    CreateSettlementSchema,
    SettlementStatusSchema,
)


def _expense_payload(**overrides) -> dict:
    payload = {
        "title": "Groceries",
        "amount": "42.10",
        "payments": [{"user_id": 1, "amount": "42.10"}],
        "splits": [
            {"user_id": 1, "split_type": "equal"},
            {"pending_user_id": 3, "split_type": "equal"},
        ],
    }
    payload.update(overrides)
    return payload


def _messages(exc_info) -> str:
    return str(exc_info.value.messages)


# ── ExpenseSchema ──────────────────────────────────────────────────────────

def test_expense_schema_loads_valid_payload():
    data = ExpenseSchema().load(_expense_payload())

    assert data["amount"] == Decimal("42.10")
    assert data["category_id"] is None
    assert data["currency_code"] is None
    assert data["payments"][0] == {
        "user_id": 1,
        "pending_user_id": None,
        "amount": Decimal("42.10"),
        "payment_method": None,
    }
    assert data["splits"][0]["split_type"] is SplitType.EQUAL
    assert data["splits"][1]["user_id"] is None
    assert data["splits"][1]["pending_user_id"] == 3


def test_split_type_defaults_to_exact():
    data = ExpenseSchema().load(_expense_payload(splits=[{"user_id": 1, "amount": "42.10"}]))
    assert data["splits"][0]["split_type"] is SplitType.EXACT


def test_three_decimal_places_is_precision_error():
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(amount="42.105"))
    assert "amount" in exc_info.value.messages
    assert ErrorCode.INVALID_AMOUNT_PRECISION.value in _messages(exc_info)


def test_nested_precision_error_is_reported():
    payload = _expense_payload(payments=[{"user_id": 1, "amount": "42.101"}])
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(payload)
    assert "payments" in exc_info.value.messages
    assert ErrorCode.INVALID_AMOUNT_PRECISION.value in _messages(exc_info)


def test_negative_amount_passes_schema():
    """Positivity belongs to the ledger validator, not the schema."""
    data = ExpenseSchema().load(_expense_payload(amount="-1.00"))
    assert data["amount"] == Decimal("-1.00")


def test_category_id_must_be_an_integer():
    assert ExpenseSchema().load(_expense_payload(category_id=4))["category_id"] == 4

    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(category_id="food"))
    assert "category_id" in exc_info.value.messages


def test_amount_above_column_capacity_is_rejected():
    assert ExpenseSchema().load(_expense_payload(
        amount="9999999999.99",
        payments=[{"user_id": 1, "amount": "9999999999.99"}],
    ))["amount"] == MAX_MONETARY_AMOUNT

    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(amount="10000000000.00"))
    assert exc_info.value.messages["amount"] == ["Amount must not exceed 9999999999.99."]


def test_nested_amount_above_column_capacity_is_rejected():
    payload = _expense_payload(
        payments=[{"user_id": 1, "amount": "10000000000"}],
        splits=[{"user_id": 1, "amount": "10000000000"}],
    )
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(payload)
    assert set(exc_info.value.messages) == {"payments", "splits"}


def test_unknown_split_type_has_registered_code():
    payload = _expense_payload(splits=[{"user_id": 1, "split_type": "halves"}])
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(payload)
    assert ErrorCode.INVALID_SPLIT_TYPE.value in _messages(exc_info)


@pytest.mark.parametrize("field", ["title", "amount", "payments", "splits"])
def test_required_fields(field):
    payload = _expense_payload()
    del payload[field]
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(payload)
    assert field in exc_info.value.messages


def test_empty_split_list_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(splits=[]))
    assert "splits" in exc_info.value.messages


def test_blank_title_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(title="   "))
    assert "title" in exc_info.value.messages


def test_lowercase_currency_code_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSchema().load(_expense_payload(currency_code="usd"))
    assert "currency_code" in exc_info.value.messages


def test_participant_ids_must_be_integers():
    payload = _expense_payload(payments=[{"user_id": "1", "amount": "42.10"}])
    with pytest.raises(ValidationError):
        ExpenseSchema().load(payload)


def test_percentage_precision_is_four_places():
    ok = _expense_payload(splits=[{"user_id": 1, "split_type": "percentage", "percentage": "33.3333"}])
    assert ExpenseSchema().load(ok)["splits"][0]["percentage"] == Decimal("33.3333")

    bad = _expense_payload(splits=[{"user_id": 1, "split_type": "percentage", "percentage": "33.33333"}])
    with pytest.raises(ValidationError):
        ExpenseSchema().load(bad)


# ── Settlement schemas ─────────────────────────────────────────────────────

def test_create_settlement_defaults():
    data = CreateSettlementSchema().load({"payee_user_id": 2, "amount": "10.00"})

    assert data["amount"] == Decimal("10.00")
    assert data["status"] is SettlementStatus.PENDING
    assert data["payer_user_id"] is None
    assert data["payer_pending_user_id"] is None


def test_create_settlement_may_start_completed():
    data = CreateSettlementSchema().load({"payee_user_id": 2, "amount": "10.00", "status": "completed"})
    assert data["status"] is SettlementStatus.COMPLETED


def test_create_settlement_cannot_start_cancelled():
    with pytest.raises(ValidationError) as exc_info:
        CreateSettlementSchema().load({"payee_user_id": 2, "amount": "10.00", "status": "cancelled"})
    assert exc_info.value.messages["status"] == [ErrorCode.INVALID_STATUS.value]


def test_create_settlement_precision():
    with pytest.raises(ValidationError) as exc_info:
        CreateSettlementSchema().load({"payee_user_id": 2, "amount": "10.001"})
    assert ErrorCode.INVALID_AMOUNT_PRECISION.value in _messages(exc_info)


def test_status_schema_requires_known_status():
    assert SettlementStatusSchema().load({"status": "cancelled"})["status"] is SettlementStatus.CANCELLED

    with pytest.raises(ValidationError) as exc_info:
        SettlementStatusSchema().load({"status": "refunded"})
    assert exc_info.value.messages["status"] == [ErrorCode.INVALID_STATUS.value]

    with pytest.raises(ValidationError) as exc_info:
        SettlementStatusSchema().load({})
    assert "status" in exc_info.value.messages


def test_create_settlement_amount_ceiling():
    with pytest.raises(ValidationError) as exc_info:
        CreateSettlementSchema().load({"payee_user_id": 2, "amount": "12345678901.00"})
    assert exc_info.value.messages["amount"] == ["Amount must not exceed 9999999999.99."]


# ── ExpenseSearchSchema ────────────────────────────────────────────────────

def test_search_schema_loads_query_strings():
    data = ExpenseSearchSchema().load({
        "q": "taxi",
        "start_date": "2024-03-01",
        "end_date": "2024-03-31",
        "payer_id": "2",
        "min_amount": "10.50",
        "limit": "500",
    })

    assert data["q"] == "taxi"
    assert data["start_date"].isoformat() == "2024-03-01"
    assert data["end_date"].isoformat() == "2024-03-31"
    assert data["payer_id"] == 2
    assert data["min_amount"] == Decimal("10.50")
    assert data["limit"] == 500
    assert data["offset"] == 0
    assert data["ower_id"] is None


@pytest.mark.parametrize(
    "query, field",
    [
        ({"start_date": "03/01/2024"}, "start_date"),
        ({"ower_id": "bob"}, "ower_id"),
        ({"offset": "-1"}, "offset"),
        ({"max_amount": "1.001"}, "max_amount"),
    ],
)
def test_search_schema_rejects_bad_filters(query, field):
    with pytest.raises(ValidationError) as exc_info:
        ExpenseSearchSchema().load(query)
    assert field in exc_info.value.messages
