"""
models/expense.py — Expense and payment table definitions.

No business logic. No imports from services or routes.

Key design points:
  - An expense belongs to exactly one scope: a group (group_id) or a direct
    friend pair (friendship_id). The CHECK below enforces "exactly one".
  - `deleted_at` is NULL for active expenses, non-null for soft-deleted ones.
    Balance queries only ever read active rows (balance_service).
  - Amounts use Numeric(12, 2), never Float.
  - Payments and splits are owned by their expense and are replaced as a
    whole on update. Both collections are ordered by insertion (id); the
    allocator's rounding tie-break depends on that order.
  - The Σpayments == amount and Σsplits == amount invariants are enforced by
    the ledger validator before any row is written, not by the database.
"""

from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitplus.app.extensions import db
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'equal'), not names ('EQUAL')."""
    return [member.value for member in enum_cls]


# Shared by every table that stores a participant as a nullable pair.
PARTICIPANT_CHECK = "({prefix}user_id IS NULL) <> ({prefix}pending_user_id IS NULL)"


# ── Expense ────────────────────────────────────────────────────────────────

class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_expenses_title_nonempty",
        ),
        CheckConstraint(
            "(group_id IS NULL) <> (friendship_id IS NULL)",
            name="ck_expenses_exactly_one_scope",
        ),
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    friendship_id: Mapped[int | None] = mapped_column(
        ForeignKey("friendships.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency_code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    date: Mapped[dt.date] = mapped_column(
        Date,
        nullable=False,
        default=dt.date.today,
    )

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Group expenses only; must belong to the same group.
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("expense_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Set on every successful replace.
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # NULL = active; NOT NULL = soft-deleted. Never hard-delete via the API.
    deleted_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Payment.id",
    )

    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Split.id",
    )

    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    @property
    def scope(self) -> Scope:
        if self.group_id is not None:
            return Scope.group(self.group_id)
        return Scope.friendship(self.friendship_id)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"scope={self.scope} "
            f"amount={self.amount} "
            f"deleted={self.is_deleted}>"
        )


# ── Payment ────────────────────────────────────────────────────────────────

class Payment(db.Model):
    """Who actually paid how much toward an expense."""
    __tablename__ = "expense_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expense_payments_amount_positive"),
        CheckConstraint(
            PARTICIPANT_CHECK.format(prefix=""),
            name="ck_expense_payments_one_participant",
        ),
        UniqueConstraint("expense_id", "user_id", name="uq_expense_payments_user"),
        UniqueConstraint(
            "expense_id", "pending_user_id", name="uq_expense_payments_pending_user",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    pending_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("pending_users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    payment_method: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    expense: Mapped["Expense"] = relationship(
        "Expense",
        back_populates="payments",
    )

    @property
    def participant(self) -> Participant:
        return Participant.from_refs(self.user_id, self.pending_user_id)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Payment id={self.id} "
            f"expense_id={self.expense_id} "
            f"participant={self.participant} "
            f"amount={self.amount}>"
        )
