"""
Unit tests for settlement_service: creation rules, overpayment warning and
status transitions.

DB-free: the session is a MagicMock, membership checks and the scope balance
matrix are patched.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from splitplus.app.errors import AppError, ErrorCode, WarningCode
from splitplus.app.ledger.aggregator import BalanceMatrix
from splitplus.app.ledger.enums import SettlementStatus
from splitplus.app.ledger.money import Money
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope
from splitplus.app.models.settlement import Settlement
from splitplus.app.services import settlement_service


MEMBERS = "splitplus.app.services.membership_service"
BALANCES = "splitplus.app.services.balance_service"

A, B = Participant.user(1), Participant.user(2)


def _matrix_where_a_owes_b(amount: str) -> BalanceMatrix:
    matrix = BalanceMatrix("USD")
    matrix.include(A)
    matrix.include(B)
    if Decimal(amount) > 0:
        matrix.add_debt(A, B, Money.from_decimal(amount, "USD"))
    return matrix


def _data(**overrides) -> dict:
    data = {
        "payer_user_id": None,
        "payer_pending_user_id": None,
        "payee_user_id": 2,
        "payee_pending_user_id": None,
        "amount": Decimal("25.00"),
        "currency_code": None,
        "status": SettlementStatus.PENDING,
        "payment_method": None,
        "notes": None,
    }
    data.update(overrides)
    return data


@pytest.fixture
def scope_ok():
    """Caller may access the scope, USD, participants belong, A owes B 40.00."""
    with patch(f"{MEMBERS}.require_scope_access") as access, \
            patch(f"{MEMBERS}.scope_currency", return_value="USD"), \
            patch(f"{MEMBERS}.require_participants_in_scope") as in_scope, \
            patch(f"{BALANCES}.compute_scope_matrix", return_value=_matrix_where_a_owes_b("40.00")) as matrix:
        yield SimpleNamespace(access=access, in_scope=in_scope, matrix=matrix)


# ── create ─────────────────────────────────────────────────────────────────

def test_create_settlement_defaults_payer_to_caller(scope_ok):
    session = MagicMock()

    settlement, warnings = settlement_service.create_settlement(
        group_id=3, caller_id=1, data=_data(), session=session,
    )

    assert settlement.payer == A
    assert settlement.payee == B
    assert settlement.amount == Decimal("25.00")
    assert settlement.currency_code == "USD"
    assert settlement.status is SettlementStatus.PENDING
    assert settlement.completed_at is None
    assert warnings == []
    session.add.assert_called_once_with(settlement)


def test_create_completed_settlement_stamps_completed_at(scope_ok):
    settlement, _ = settlement_service.create_settlement(
        group_id=3, caller_id=1, data=_data(status=SettlementStatus.COMPLETED), session=MagicMock(),
    )
    assert settlement.completed_at is not None


def test_overpayment_is_recorded_with_warning(scope_ok):
    settlement, warnings = settlement_service.create_settlement(
        group_id=3, caller_id=1, data=_data(amount=Decimal("50.00")), session=MagicMock(),
    )

    assert settlement.amount == Decimal("50.00")
    assert [w["code"] for w in warnings] == [WarningCode.OVERPAYMENT.value]
    assert "40.00" in warnings[0]["message"]


def test_paying_someone_you_do_not_owe_warns(scope_ok):
    settlement, warnings = settlement_service.create_settlement(
        group_id=3,
        caller_id=2,
        data=_data(payee_user_id=1, amount=Decimal("5.00")),
        session=MagicMock(),
    )
    assert settlement.payer == B
    assert [w["code"] for w in warnings] == ["OVERPAYMENT"]
    assert "0.00" in warnings[0]["message"]


def test_settlement_to_self_is_invalid(scope_ok):
    with pytest.raises(AppError) as exc_info:
        settlement_service.create_settlement(
            group_id=3, caller_id=2, data=_data(), session=MagicMock(),
        )

    assert exc_info.value.code == ErrorCode.INVALID_SETTLEMENT
    assert exc_info.value.http_status == 422


def test_settlement_in_other_currency_is_invalid(scope_ok):
    with pytest.raises(AppError) as exc_info:
        settlement_service.create_settlement(
            group_id=3, caller_id=1, data=_data(currency_code="EUR"), session=MagicMock(),
        )
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
    assert exc_info.value.field == "currency_code"


@pytest.mark.parametrize("amount", ["0", "-1.00"])
def test_non_positive_settlement_is_invalid(scope_ok, amount):
    with pytest.raises(AppError) as exc_info:
        settlement_service.create_settlement(
            group_id=3, caller_id=1, data=_data(amount=Decimal(amount)), session=MagicMock(),
        )
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT


def test_payee_with_both_references_is_invalid(scope_ok):
    with pytest.raises(AppError) as exc_info:
        settlement_service.create_settlement(
            group_id=3, caller_id=1, data=_data(payee_pending_user_id=4), session=MagicMock(),
        )
    assert exc_info.value.code == ErrorCode.INVALID_PARTICIPANT
    assert exc_info.value.field == "payee"


def test_payee_outside_scope_writes_nothing(scope_ok):
    scope_ok.in_scope.side_effect = AppError(ErrorCode.NOT_GROUP_MEMBER, "no", 403)
    session = MagicMock()

    with pytest.raises(AppError) as exc_info:
        settlement_service.create_settlement(group_id=3, caller_id=1, data=_data(), session=session)

    assert exc_info.value.code == ErrorCode.NOT_GROUP_MEMBER
    session.add.assert_not_called()


def test_pending_payer_is_accepted(scope_ok):
    settlement, _ = settlement_service.create_settlement(
        group_id=3, caller_id=1, data=_data(payer_pending_user_id=6), session=MagicMock(),
    )
    assert settlement.payer == Participant.pending(6)
    assert settlement.payer_user_id is None


@patch(f"{MEMBERS}.get_friendship_or_404")
def test_friend_settlement_defaults_to_caller_paying_friend(mock_friendship, scope_ok):
    mock_friendship.return_value = SimpleNamespace(id=8, other_user_id=lambda uid: 2 if uid == 1 else 1)

    settlement, _ = settlement_service.create_friend_settlement(
        friend_id=2, caller_id=1, data=_data(payee_user_id=None), session=MagicMock(),
    )

    assert settlement.friendship_id == 8
    assert settlement.group_id is None
    assert settlement.payer == A
    assert settlement.payee == B
    assert scope_ok.access.call_args.args[0] == Scope.friendship(8)


# ── status transitions ─────────────────────────────────────────────────────

def _stored(status: SettlementStatus) -> Settlement:
    return Settlement(
        id=21,
        group_id=3,
        payer_user_id=1,
        payee_user_id=2,
        amount=Decimal("10.00"),
        currency_code="USD",
        status=status,
        created_by=1,
    )


@pytest.mark.parametrize(
    "current, new",
    [
        (SettlementStatus.PENDING, SettlementStatus.COMPLETED),
        (SettlementStatus.PENDING, SettlementStatus.CANCELLED),
        (SettlementStatus.COMPLETED, SettlementStatus.CANCELLED),
    ],
)
def test_allowed_transitions(current, new):
    session = MagicMock()
    session.get.return_value = _stored(current)

    with patch(f"{MEMBERS}.require_scope_access"):
        settlement = settlement_service.update_settlement_status(21, 1, new, session)

    assert settlement.status is new
    assert settlement.updated_at is not None
    assert settlement.amount == Decimal("10.00")
    if new is SettlementStatus.COMPLETED:
        assert settlement.completed_at is not None


@pytest.mark.parametrize(
    "current, new",
    [
        (SettlementStatus.CANCELLED, SettlementStatus.COMPLETED),
        (SettlementStatus.CANCELLED, SettlementStatus.PENDING),
        (SettlementStatus.COMPLETED, SettlementStatus.PENDING),
        (SettlementStatus.PENDING, SettlementStatus.PENDING),
        (SettlementStatus.COMPLETED, SettlementStatus.COMPLETED),
    ],
)
def test_disallowed_transitions(current, new):
    session = MagicMock()
    session.get.return_value = _stored(current)

    with patch(f"{MEMBERS}.require_scope_access"):
        with pytest.raises(AppError) as exc_info:
            settlement_service.update_settlement_status(21, 1, new, session)

    assert exc_info.value.code == ErrorCode.INVALID_STATUS_TRANSITION
    assert exc_info.value.http_status == 422
    session.flush.assert_not_called()


def test_missing_settlement_is_not_found():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        settlement_service.get_settlement(404, 1, session)

    assert exc_info.value.code == ErrorCode.SETTLEMENT_NOT_FOUND
    assert exc_info.value.http_status == 404
