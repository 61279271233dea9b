"""
services/membership_service.py — Scope resolution, membership checks and
pending-user reconciliation.

This is the membership/authorization collaborator the ledger depends on. The
ledger itself never queries membership; services call in here before any
mutation and before any balance is returned.

Scopes:
  - Group scope: members are every Membership row of the group plus every
    unreconciled PendingUser invited into the group.
  - Friend scope: members are exactly the two users of the friendship.
    Pending users never take part in a friend scope.

Authorization rules:
  - A caller must be a member of a group to read or write anything in it
    (NOT_GROUP_MEMBER, 403). Non-members get 403, not 404, once the group is
    known to exist.
  - A caller can only use a friend scope they are part of, and only while the
    friendship is accepted (FRIEND_NOT_FOUND, 404).
  - Every participant referenced by an expense or settlement must be a member
    of its scope (NOT_GROUP_MEMBER / INVALID_FRIEND_ACTION, 403).

Layer rules:
  - No Flask imports. Receives plain ints and a SQLAlchemy Session.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from splitplus.app.errors import AppError, ErrorCode
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope
from splitplus.app.models.expense import Expense, Payment
from splitplus.app.models.group import Group
from splitplus.app.models.membership import Friendship, FriendshipStatus, Membership
from splitplus.app.models.settlement import Settlement
from splitplus.app.models.split import Split
from splitplus.app.models.user import PendingUser, User

logger = logging.getLogger(__name__)


# ── Lookups ────────────────────────────────────────────────────────────────

def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def get_friendship_or_404(user_id: int, friend_id: int, session: Session) -> Friendship:
    """
    Returns the accepted Friendship between user_id and friend_id.

    Raises:
        AppError(INVALID_FRIEND_ACTION, 403) -- user_id == friend_id.
        AppError(FRIEND_NOT_FOUND, 404)      -- no accepted friendship exists.
    """
    if user_id == friend_id:
        raise AppError(
            ErrorCode.INVALID_FRIEND_ACTION,
            "You cannot record friend expenses with yourself.",
            403,
        )

    low, high = Friendship.canonical_pair(user_id, friend_id)
    friendship = session.execute(
        select(Friendship).where(
            Friendship.user_low_id == low,
            Friendship.user_high_id == high,
        )
    ).scalar_one_or_none()

    if friendship is None or friendship.status is not FriendshipStatus.ACCEPTED:
        raise AppError(
            ErrorCode.FRIEND_NOT_FOUND,
            f"User {friend_id} is not your friend.",
            404,
        )
    return friendship


def get_group_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all current members of a group."""
    stmt = select(Membership.user_id).where(Membership.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def get_group_pending_user_ids(group_id: int, session: Session) -> list[int]:
    """Returns the ids of every unreconciled pending user invited into the group."""
    stmt = select(PendingUser.id).where(
        PendingUser.group_id == group_id,
        PendingUser.reconciled_user_id.is_(None),
    )
    return list(session.execute(stmt).scalars().all())


# ── Scope helpers ──────────────────────────────────────────────────────────

def scope_currency(scope: Scope, session: Session) -> str:
    """The settlement currency of a group or friend pair."""
    if scope.is_group:
        return get_group_or_404(scope.id, session).currency_code
    return session.get(Friendship, scope.id).currency_code


def scope_members(scope: Scope, session: Session) -> list[Participant]:
    """Every participant that belongs to `scope`, in ascending order."""
    if scope.is_group:
        members = [Participant.user(uid) for uid in get_group_member_ids(scope.id, session)]
        members.extend(
            Participant.pending(pid) for pid in get_group_pending_user_ids(scope.id, session)
        )
        return sorted(members)

    friendship = session.get(Friendship, scope.id)
    return [
        Participant.user(friendship.user_low_id),
        Participant.user(friendship.user_high_id),
    ]


def is_member(scope: Scope, participant: Participant, session: Session) -> bool:
    return participant in scope_members(scope, session)


def require_group_member(group_id: int, user_id: int, session: Session) -> None:
    """
    Raises NOT_GROUP_MEMBER (403) if user_id is not a member of group_id.
    The group must already be known to exist.
    """
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.NOT_GROUP_MEMBER,
            f"You are not a member of group {group_id}.",
            403,
        )


def require_scope_access(scope: Scope, caller_id: int, session: Session) -> None:
    """Caller must belong to the scope to read or write anything in it."""
    if scope.is_group:
        get_group_or_404(scope.id, session)
        require_group_member(scope.id, caller_id, session)
        return

    friendship = session.get(Friendship, scope.id)
    if (
        friendship is None
        or friendship.status is not FriendshipStatus.ACCEPTED
        or caller_id not in (friendship.user_low_id, friendship.user_high_id)
    ):
        raise AppError(
            ErrorCode.FRIEND_NOT_FOUND,
            "This friend ledger does not exist.",
            404,
        )


def require_participants_in_scope(
        scope: Scope,
        participants: Iterable[Participant],
        session: Session,
        field: str | None = None,
) -> None:
    """
    Raises for the first participant (in ascending order) outside the scope.

    Group scope: NOT_GROUP_MEMBER (403).
    Friend scope: INVALID_FRIEND_ACTION (403).
    """
    members = set(scope_members(scope, session))
    for participant in sorted(set(participants)):
        if participant in members:
            continue
        if scope.is_group:
            raise AppError(
                ErrorCode.NOT_GROUP_MEMBER,
                f"Participant {participant} is not a member of group {scope.id}.",
                403,
                field=field,
            )
        raise AppError(
            ErrorCode.INVALID_FRIEND_ACTION,
            f"Participant {participant} is not part of this friendship.",
            403,
            field=field,
        )


# ── Pending-user reconciliation ────────────────────────────────────────────

def _expense_ids_referencing(model, column, value, session: Session, *, deleted: bool) -> set[int]:
    stmt = (
        select(model.expense_id)
        .join(Expense, Expense.id == model.expense_id)
        .where(column == value)
        .where(Expense.deleted_at.is_not(None) if deleted else Expense.deleted_at.is_(None))
    )
    return set(session.execute(stmt).scalars().all())


def _clashing_expense_ids(model, pending_user_id: int, user_id: int, session: Session, *, deleted: bool) -> list[int]:
    pending_rows = _expense_ids_referencing(
        model, model.pending_user_id, pending_user_id, session, deleted=deleted,
    )
    user_rows = _expense_ids_referencing(model, model.user_id, user_id, session, deleted=deleted)
    return sorted(pending_rows & user_rows)


def _reject_duplicate_after_rewrite(model, pending_user_id: int, user_id: int, session: Session) -> None:
    clash = _clashing_expense_ids(model, pending_user_id, user_id, session, deleted=False)
    if clash:
        raise AppError(
            ErrorCode.INVALID_PARTICIPANT,
            f"User {user_id} and pending user {pending_user_id} both appear in "
            f"{model.__tablename__} of expense {clash[0]}; merge them by editing "
            f"the expense first.",
            422,
        )


def _merge_rows_on_deleted_expenses(model, pending_user_id: int, user_id: int, session: Session) -> None:
    """
    Folds the pending user's line item into the user's on soft-deleted
    expenses that list both. Deleted expenses cannot be edited, and the merged
    row keeps the expense's payment and split sums intact.
    """
    for expense_id in _clashing_expense_ids(model, pending_user_id, user_id, session, deleted=True):
        rows = session.execute(
            select(model).where(
                model.expense_id == expense_id,
                (model.user_id == user_id) | (model.pending_user_id == pending_user_id),
            )
        ).scalars().all()
        kept = next(row for row in rows if row.user_id == user_id)
        folded = next(row for row in rows if row.pending_user_id == pending_user_id)

        kept.amount += folded.amount
        if getattr(kept, "share_value", None) is not None and folded.share_value is not None:
            kept.share_value += folded.share_value
        session.delete(folded)
        logger.info(
            "Merged %s row of pending user %s into user %s on deleted expense %s",
            model.__tablename__,
            pending_user_id,
            user_id,
            expense_id,
        )
    session.flush()


def reconcile_pending_user(
        pending_user_id: int,
        user_id: int,
        session: Session,
) -> PendingUser:
    """
    Moves every ledger reference from a pending user onto a registered user.

    Rewrites payments, splits and settlements, adds a group membership for
    the user when the pending user was invited into a group, and stamps the
    pending user as reconciled. Balances are unchanged by construction: the
    same amounts now point at the registered participant.

    Raises:
        AppError(PENDING_USER_NOT_FOUND, 404)  -- no such pending user.
        AppError(PENDING_USER_RECONCILED, 422) -- already reconciled.
        AppError(INVALID_PARTICIPANT, 422)     -- the user does not exist, or
            the rewrite would list the same participant twice in one active
            expense or turn a settlement into a self-settlement. On deleted
            expenses the two rows are merged instead.
    """
    pending = session.get(PendingUser, pending_user_id)
    if pending is None:
        raise AppError(
            ErrorCode.PENDING_USER_NOT_FOUND,
            f"Pending user {pending_user_id} does not exist.",
            404,
        )
    if pending.is_reconciled:
        raise AppError(
            ErrorCode.PENDING_USER_RECONCILED,
            f"Pending user {pending_user_id} was already reconciled to user "
            f"{pending.reconciled_user_id}.",
            422,
        )
    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.INVALID_PARTICIPANT,
            f"User {user_id} does not exist.",
            422,
        )

    _reject_duplicate_after_rewrite(Payment, pending_user_id, user_id, session)
    _reject_duplicate_after_rewrite(Split, pending_user_id, user_id, session)

    self_settlement = session.execute(
        select(Settlement.id).where(
            ((Settlement.payer_pending_user_id == pending_user_id)
             & (Settlement.payee_user_id == user_id))
            | ((Settlement.payee_pending_user_id == pending_user_id)
               & (Settlement.payer_user_id == user_id))
        )
    ).scalars().first()
    if self_settlement is not None:
        raise AppError(
            ErrorCode.INVALID_PARTICIPANT,
            f"Settlement {self_settlement} is between user {user_id} and pending "
            f"user {pending_user_id}; it would become a self-settlement.",
            422,
        )

    for model in (Payment, Split):
        _merge_rows_on_deleted_expenses(model, pending_user_id, user_id, session)
        session.execute(
            update(model)
            .where(model.pending_user_id == pending_user_id)
            .values(user_id=user_id, pending_user_id=None)
        )
    session.execute(
        update(Settlement)
        .where(Settlement.payer_pending_user_id == pending_user_id)
        .values(payer_user_id=user_id, payer_pending_user_id=None)
    )
    session.execute(
        update(Settlement)
        .where(Settlement.payee_pending_user_id == pending_user_id)
        .values(payee_user_id=user_id, payee_pending_user_id=None)
    )

    if pending.group_id is not None and user_id not in get_group_member_ids(pending.group_id, session):
        session.add(Membership(user_id=user_id, group_id=pending.group_id))

    pending.reconciled_user_id = user_id
    pending.reconciled_at = datetime.now(timezone.utc)
    session.flush()
    # Bulk updates bypass the identity map; drop stale participant columns.
    session.expire_all()

    logger.info(
        "Reconciled pending user %s into user %s (group %s)",
        pending_user_id,
        user_id,
        pending.group_id,
    )
    return pending
