"""
services/balance_service.py — Scope history fetch and the public balance
operations.

The math lives in splitplus.app.ledger (allocator, aggregator, simplifier).
This module only decides WHICH rows feed it and shapes the results. Do not
reimplement any part of the balance formula here.

Active-row rule:
  - get_active_expenses() ALWAYS filters WHERE deleted_at IS NULL.
  - get_completed_settlements() ALWAYS filters status = 'completed'.
  - Every balance operation reads through these two helpers. Direct queries
    on Expense or Settlement in a balance context are forbidden.

Zero-sum guarantee:
  BalanceMatrix.net_positions() asserts that positions sum to zero and that
  the matrix and pairwise forms agree; simplify_debts() re-checks the sum.
  A violation is logged with scope context and surfaces as an opaque 500.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives ids and a SQLAlchemy Session; returns ledger values or dicts.
  - Fully unit-testable by patching the data-access helpers.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from splitplus.app.errors import AppError, ErrorCode
from splitplus.app.ledger.aggregator import BalanceMatrix, PairwiseBalance, fold_scope
from splitplus.app.ledger.enums import SettlementStatus
from splitplus.app.ledger.money import Money
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope
from splitplus.app.ledger.simplifier import PlannedTransfer, simplify_debts
from splitplus.app.models.expense import Expense
from splitplus.app.models.group import Group
from splitplus.app.models.membership import Friendship, FriendshipStatus, Membership
from splitplus.app.models.settlement import Settlement
from splitplus.app.models.user import PendingUser, User
from splitplus.app.services import membership_service

logger = logging.getLogger(__name__)


# ── Data access helpers ────────────────────────────────────────────────────
# These are the ONLY sanctioned ways to read ledger history for balances.

def _scope_filter(model, scope: Scope):
    column = model.group_id if scope.is_group else model.friendship_id
    return column == scope.id


def get_active_expenses(scope: Scope, session: Session) -> list[Expense]:
    """Expenses of `scope` WHERE deleted_at IS NULL, payments and splits loaded."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.payments), selectinload(Expense.splits))
        .where(
            _scope_filter(Expense, scope),
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_completed_settlements(scope: Scope, session: Session) -> list[Settlement]:
    """Settlements of `scope` with status = completed. Others never count."""
    stmt = (
        select(Settlement)
        .where(
            _scope_filter(Settlement, scope),
            Settlement.status == SettlementStatus.COMPLETED,
        )
        .order_by(Settlement.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_scope_members(scope: Scope, session: Session) -> list[Participant]:
    return membership_service.scope_members(scope, session)


def get_user_scopes(user_id: int, session: Session) -> list[Scope]:
    """Every group the user belongs to and every accepted friendship, in order."""
    group_ids = session.execute(
        select(Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Membership.group_id)
    ).scalars().all()

    friendship_ids = session.execute(
        select(Friendship.id)
        .where(
            or_(Friendship.user_low_id == user_id, Friendship.user_high_id == user_id),
            Friendship.status == FriendshipStatus.ACCEPTED,
        )
        .order_by(Friendship.id)
    ).scalars().all()

    return (
        [Scope.group(gid) for gid in group_ids]
        + [Scope.friendship(fid) for fid in friendship_ids]
    )


def get_participant_names(participants, session: Session) -> dict[Participant, str]:
    """Display names for users (username) and pending users (name)."""
    user_ids = [p.user_id for p in participants if not p.is_pending]
    pending_ids = [p.pending_user_id for p in participants if p.is_pending]

    names: dict[Participant, str] = {}
    if user_ids:
        for uid, username in session.execute(
            select(User.id, User.username).where(User.id.in_(user_ids))
        ).all():
            names[Participant.user(uid)] = username
    if pending_ids:
        for pid, name in session.execute(
            select(PendingUser.id, PendingUser.name).where(PendingUser.id.in_(pending_ids))
        ).all():
            names[Participant.pending(pid)] = name
    return names


# ── Core computation ───────────────────────────────────────────────────────

def compute_scope_matrix(scope: Scope, session: Session) -> BalanceMatrix:
    """
    Canonical balance computation for one scope.

    Reads active expenses and completed settlements through the helpers
    above and folds them with ledger.aggregator.fold_scope(). Every scope
    member appears in the resulting positions, with zero if untouched.
    """
    currency = membership_service.scope_currency(scope, session)
    return fold_scope(
        get_active_expenses(scope, session),
        get_completed_settlements(scope, session),
        currency,
        members=get_scope_members(scope, session),
        scope_label=str(scope),
    )


# ── Public balance operations ──────────────────────────────────────────────

def compute_group_balances(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[PairwiseBalance]:
    """
    Every nonzero pairwise debt in the group, ordered by (debtor, creditor).

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  -- group does not exist.
        AppError(NOT_GROUP_MEMBER, 403) -- caller not a group member.
    """
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    return compute_scope_matrix(scope, session).pairwise_balances()


def _position_breakdown(matrix: BalanceMatrix, participant: Participant) -> dict:
    positions = matrix.net_positions()
    if participant not in positions:
        raise AppError(
            ErrorCode.NOT_GROUP_MEMBER,
            f"Participant {participant} is not part of this ledger.",
            403,
        )
    pairwise = [
        pb for pb in matrix.pairwise_balances()
        if participant in (pb.debtor, pb.creditor)
    ]
    return {
        "participant": participant,
        "net_position": positions[participant],
        "owes": [pb for pb in pairwise if pb.debtor == participant],
        "owed_by": [pb for pb in pairwise if pb.creditor == participant],
    }


def compute_user_balance(
        group_id: int,
        user_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    One user's net position in a group plus the pairwise debts behind it.

    Returns:
        {"participant", "net_position": Money,
         "owes": [PairwiseBalance], "owed_by": [PairwiseBalance]}
    """
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    matrix = compute_scope_matrix(scope, session)
    return _position_breakdown(matrix, Participant.user(user_id))


def compute_friend_balance(
        caller_id: int,
        friend_id: int,
        session: Session,
) -> dict:
    """The caller's position against one friend, outside any group."""
    friendship = membership_service.get_friendship_or_404(caller_id, friend_id, session)
    matrix = compute_scope_matrix(Scope.friendship(friendship.id), session)
    breakdown = _position_breakdown(matrix, Participant.user(caller_id))
    breakdown["friendship_id"] = friendship.id
    breakdown["currency_code"] = matrix.currency
    return breakdown


def compute_overall_balance(user_id: int, session: Session) -> list[dict]:
    """
    The user's net position in every group and friend scope they belong to.

    Scopes never cross: positions in different currencies are listed side by
    side, not converted or summed.

    Returns:
        [{"scope": Scope, "currency_code": str, "net_position": Money}, ...]
    """
    me = Participant.user(user_id)
    results: list[dict] = []
    for scope in get_user_scopes(user_id, session):
        matrix = compute_scope_matrix(scope, session)
        results.append({
            "scope": scope,
            "currency_code": matrix.currency,
            "net_position": matrix.position_of(me),
        })
    return results


def simplify_group_debts(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[PlannedTransfer]:
    """Minimal payoff plan for a group. Empty when everyone is square."""
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    positions = compute_scope_matrix(scope, session).net_positions()
    return simplify_debts(positions, scope=scope)


# ── Response shaping ───────────────────────────────────────────────────────

def _named(participant: Participant, names: dict[Participant, str]) -> dict:
    entry = participant.to_dict()
    entry["name"] = names.get(participant, str(participant))
    return entry


def serialize_pairwise(balances: list[PairwiseBalance], names: dict) -> list[dict]:
    return [
        {
            "debtor": _named(pb.debtor, names),
            "creditor": _named(pb.creditor, names),
            "amount": str(pb.amount),
        }
        for pb in balances
    ]


def serialize_plan(plan: list[PlannedTransfer], names: dict) -> list[dict]:
    return [
        {
            "from": _named(t.debtor, names),
            "to": _named(t.creditor, names),
            "amount": str(t.amount),
        }
        for t in plan
    ]


def get_balance_response(
        group_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Builds the full balance payload for GET /groups/:id/balances.

    Net positions, pairwise balances and the simplified plan all come from a
    single matrix, so the three views are always consistent with each other.
    """
    scope = Scope.group(group_id)
    membership_service.require_scope_access(scope, caller_id, session)
    group = session.get(Group, group_id)

    matrix = compute_scope_matrix(scope, session)
    positions = matrix.net_positions()
    pairwise = matrix.pairwise_balances()
    plan = simplify_debts(positions, scope=scope)
    names = get_participant_names(positions.keys(), session)

    balance_sum = sum((m for m in positions.values()), Money.zero(matrix.currency))

    return {
        "group_id": group_id,
        "currency_code": group.currency_code,
        "balances": [
            {**_named(p, names), "net_position": str(m)}
            for p, m in positions.items()
        ],
        "pairwise_balances": serialize_pairwise(pairwise, names),
        "simplified_debts": serialize_plan(plan, names),
        "balance_sum": str(balance_sum),
    }
