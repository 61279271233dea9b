"""
models/group.py — Group table definition.

No business logic. No imports from services or routes.

Every group has exactly one settlement currency. All expenses and
settlements recorded in the group must use it; the ledger never converts.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitplus.app.extensions import db


def default_currency_code() -> str:
    """DEFAULT_CURRENCY_CODE from the active app config, USD outside an app."""
    if has_app_context():
        return current_app.config.get("DEFAULT_CURRENCY_CODE", "USD")
    return "USD"


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
        CheckConstraint(
            "LENGTH(currency_code) = 3",
            name="ck_groups_currency_code_length",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # ISO-4217, e.g. "USD".
    currency_code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default=default_currency_code,
    )

    # ON DELETE RESTRICT: cannot delete a user who owns a group.
    owner_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    owner: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[owner_user_id],
    )

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
    )

    pending_users: Mapped[list["PendingUser"]] = relationship(  # noqa: F821
        "PendingUser",
        back_populates="group",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r} currency={self.currency_code}>"
