"""
models/membership.py — Group membership and friendship tables.

No business logic. No imports from services or routes.

Friendship rows are stored once per pair, canonically ordered so that
user_low_id < user_high_id. Expenses and settlements between two friends
outside any group hang off the friendship row; its currency_code is the
settlement currency of that pair.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitplus.app.extensions import db
from splitplus.app.models.expense import _enum_values
from splitplus.app.models.group import default_currency_code


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"user_id={self.user_id} "
            f"group_id={self.group_id}>"
        )


class FriendshipStatus(str, enum.Enum):
    PENDING  = "pending"
    ACCEPTED = "accepted"
    BLOCKED  = "blocked"


class Friendship(db.Model):
    __tablename__ = "friendships"

    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friendships_pair"),
        CheckConstraint(
            "user_low_id < user_high_id",
            name="ck_friendships_canonical_order",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_low_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    user_high_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    status: Mapped[FriendshipStatus] = mapped_column(
        Enum(
            FriendshipStatus,
            name="friendship_status_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=FriendshipStatus.ACCEPTED,
    )

    currency_code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default=default_currency_code,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    @staticmethod
    def canonical_pair(a: int, b: int) -> tuple[int, int]:
        return (a, b) if a < b else (b, a)

    def other_user_id(self, user_id: int) -> int:
        return self.user_high_id if user_id == self.user_low_id else self.user_low_id

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Friendship id={self.id} "
            f"users=({self.user_low_id}, {self.user_high_id}) "
            f"status={self.status.value}>"
        )
