"""
services/settlement_service.py — Settlement business logic.

A settlement records money moving from a payer to a payee inside one scope.
It only affects balances once its status is COMPLETED; the amount never
changes after creation.

Rules enforced here:
  - Caller must belong to the scope (membership_service).
  - Payer and payee are participants (registered or pending) and must both
    be members of the scope (NOT_GROUP_MEMBER / INVALID_FRIEND_ACTION, 403).
  - Payer != payee (INVALID_SETTLEMENT, 422).
  - The settlement currency must equal the scope currency (INVALID_AMOUNT).
  - Status transitions follow SETTLEMENT_TRANSITIONS
    (INVALID_STATUS_TRANSITION, 422). completed_at is stamped on completion.
  - Only pending or cancelled settlements may be deleted; a completed one
    is cancelled first (INVALID_STATUS_TRANSITION, 422).

Overpayment:
  A settlement larger than the payer's current net debt to the payee is still
  recorded, with an OVERPAYMENT warning in the response. Once completed, the
  excess becomes a debt of the payee to the payer (ledger.aggregator).

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from splitplus.app.errors import AppError, ErrorCode, WarningCode
from splitplus.app.ledger.enums import SETTLEMENT_TRANSITIONS, SettlementStatus
from splitplus.app.ledger.money import Money
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope
from splitplus.app.models.settlement import Settlement
from splitplus.app.services import balance_service, membership_service

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_settlement_or_404(settlement_id: int, session: Session) -> Settlement:
    settlement = session.get(Settlement, settlement_id)
    if settlement is None:
        raise AppError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist.",
            404,
        )
    return settlement


def _overpayment_warnings(
        scope: Scope,
        payer: Participant,
        payee: Participant,
        amount: Money,
        session: Session,
) -> list[dict]:
    """
    Compares the settlement with the payer's current net debt to the payee.

    The debt is the pairwise net from the full scope matrix (active expenses
    plus completed settlements), so it matches what the balance endpoints
    report.
    """
    matrix = balance_service.compute_scope_matrix(scope, session)
    owed = matrix.net(payer, payee)
    if amount <= owed:
        return []

    outstanding = owed if owed.is_positive() else Money.zero(amount.currency)
    return [{
        "code": WarningCode.OVERPAYMENT.value,
        "message": (
            f"Settlement amount {amount} exceeds the current debt of "
            f"{outstanding} to this participant. Once completed, the excess "
            f"is owed back to the payer."
        ),
    }]


def _create(
        scope: Scope,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Settlement, list[dict]]:
    membership_service.require_scope_access(scope, caller_id, session)
    currency = membership_service.scope_currency(scope, session)

    payer = Participant.from_refs(data.get("payer_user_id"), data.get("payer_pending_user_id"), field="payer")
    payee = Participant.from_refs(data.get("payee_user_id"), data.get("payee_pending_user_id"), field="payee")

    if payer == payee:
        raise AppError(
            ErrorCode.INVALID_SETTLEMENT,
            "A settlement cannot be made to the same participant.",
            422,
            field="payee",
        )

    requested_currency = data.get("currency_code") or currency
    if requested_currency != currency:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Settlement currency {requested_currency} does not match the scope "
            f"currency {currency}.",
            422,
            field="currency_code",
        )

    amount = Money.from_decimal(data["amount"], currency)
    if not amount.is_positive():
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            "Settlement amount must be greater than zero.",
            422,
            field="amount",
        )

    membership_service.require_participants_in_scope(scope, [payer, payee], session)

    warnings = _overpayment_warnings(scope, payer, payee, amount, session)

    status = SettlementStatus(data.get("status") or SettlementStatus.PENDING)
    settlement = Settlement(
        group_id=scope.id if scope.is_group else None,
        friendship_id=None if scope.is_group else scope.id,
        payer_user_id=payer.user_id,
        payer_pending_user_id=payer.pending_user_id,
        payee_user_id=payee.user_id,
        payee_pending_user_id=payee.pending_user_id,
        amount=amount.amount,
        currency_code=currency,
        status=status,
        payment_method=data.get("payment_method"),
        notes=data.get("notes"),
        created_by=caller_id,
    )
    if status is SettlementStatus.COMPLETED:
        settlement.completed_at = datetime.now(timezone.utc)

    session.add(settlement)
    session.flush()

    logger.info(
        "Recorded %s settlement %s in scope %s: %s -> %s %s %s",
        status.value,
        settlement.id,
        scope,
        payer,
        payee,
        amount,
        currency,
    )
    return settlement, warnings


def _list(scope: Scope, session: Session) -> list[Settlement]:
    column = Settlement.group_id if scope.is_group else Settlement.friendship_id
    stmt = (
        select(Settlement)
        .where(column == scope.id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def create_settlement(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Settlement, list[dict]]:
    """
    Records a settlement in a group.

    Args:
        data: Validated dict from CreateSettlementSchema. When no payer is
              given the caller is the payer.

    Returns:
        (Settlement, warnings). An empty warnings list means no warnings.
    """
    data = dict(data)
    if data.get("payer_user_id") is None and data.get("payer_pending_user_id") is None:
        data["payer_user_id"] = caller_id
    return _create(Scope.group(group_id), caller_id, data, session)


def create_friend_settlement(
        friend_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Settlement, list[dict]]:
    """
    Records a settlement between the caller and a friend.

    Defaults to the caller paying the friend when neither side is given.
    """
    friendship = membership_service.get_friendship_or_404(caller_id, friend_id, session)
    data = dict(data)
    if data.get("payer_user_id") is None and data.get("payer_pending_user_id") is None:
        data["payer_user_id"] = caller_id
    if data.get("payee_user_id") is None and data.get("payee_pending_user_id") is None:
        data["payee_user_id"] = friendship.other_user_id(data["payer_user_id"])
    return _create(Scope.friendship(friendship.id), caller_id, data, session)


def list_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Settlement]:
    """Every settlement of a group, any status, newest first."""
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    return _list(scope, session)


def list_friend_settlements(
        friend_id: int,
        caller_id: int,
        session: Session,
) -> list[Settlement]:
    friendship = membership_service.get_friendship_or_404(caller_id, friend_id, session)
    return _list(Scope.friendship(friendship.id), session)


def list_user_settlements(caller_id: int, session: Session) -> list[Settlement]:
    """
    Every settlement the caller pays or receives, across all groups the
    caller belongs to and all accepted friendships, newest first.
    """
    scopes = balance_service.get_user_scopes(caller_id, session)
    if not scopes:
        return []
    group_ids = [scope.id for scope in scopes if scope.is_group]
    friendship_ids = [scope.id for scope in scopes if not scope.is_group]

    stmt = (
        select(Settlement)
        .where(
            or_(Settlement.payer_user_id == caller_id, Settlement.payee_user_id == caller_id),
            or_(Settlement.group_id.in_(group_ids), Settlement.friendship_id.in_(friendship_ids)),
        )
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_settlement(
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> Settlement:
    settlement = _get_settlement_or_404(settlement_id, session)
    membership_service.require_scope_access(settlement.scope, caller_id, session)
    return settlement


def update_settlement_status(
        settlement_id: int,
        caller_id: int,
        new_status: SettlementStatus,
        session: Session,
) -> Settlement:
    """
    Moves a settlement to `new_status`.

    Allowed: pending -> completed | cancelled, completed -> cancelled.
    Cancelled is terminal. Setting the current status again is rejected like
    any other disallowed transition.

    Raises:
        AppError(SETTLEMENT_NOT_FOUND, 404)
        AppError(INVALID_STATUS_TRANSITION, 422)
    """
    settlement = get_settlement(settlement_id, caller_id, session)
    current = SettlementStatus(settlement.status)
    new_status = SettlementStatus(new_status)

    if new_status not in SETTLEMENT_TRANSITIONS[current]:
        raise AppError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Cannot move a {current.value} settlement to {new_status.value}.",
            422,
            field="status",
        )

    now = datetime.now(timezone.utc)
    settlement.status = new_status
    settlement.updated_at = now
    if new_status is SettlementStatus.COMPLETED:
        settlement.completed_at = now
    session.flush()

    logger.info(
        "Settlement %s moved from %s to %s by user %s",
        settlement.id,
        current.value,
        new_status.value,
        caller_id,
    )
    return settlement


def delete_settlement(
        settlement_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Removes a pending or cancelled settlement.

    A completed settlement has moved balances; it must be cancelled first so
    the reversal goes through the status lifecycle.

    Raises:
        AppError(SETTLEMENT_NOT_FOUND, 404)
        AppError(INVALID_STATUS_TRANSITION, 422) -- settlement is completed.
    """
    settlement = get_settlement(settlement_id, caller_id, session)
    if SettlementStatus(settlement.status) is SettlementStatus.COMPLETED:
        raise AppError(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Settlement {settlement_id} is completed; cancel it before deleting.",
            422,
            field="status",
        )

    session.delete(settlement)
    session.flush()
    logger.info("Deleted settlement %s by user %s", settlement_id, caller_id)
