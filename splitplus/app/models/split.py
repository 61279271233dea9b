"""
models/split.py — Split table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` is the computed amount owed, Numeric(12, 2), never Float. It is
    always stored, whatever the split_type, so balance queries never need to
    recompute percentages or shares.
  - `share_value` keeps the client's input for percentage (e.g. 33.3333) and
    shares (e.g. 2) splits. NULL for equal and exact splits.
  - A participant is either a registered user or a pending user; the CHECK
    enforces exactly one of the two columns.
  - expense_id is ON DELETE CASCADE — splits are owned by their expense.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitplus.app.extensions import db
from splitplus.app.ledger.enums import SplitType
from splitplus.app.ledger.participant import Participant
from splitplus.app.models.expense import PARTICIPANT_CHECK, _enum_values


class Split(db.Model):
    __tablename__ = "expense_splits"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_splits_user"),
        UniqueConstraint(
            "expense_id", "pending_user_id", name="uq_expense_splits_pending_user",
        ),
        CheckConstraint("amount > 0", name="ck_expense_splits_amount_positive"),
        CheckConstraint(
            PARTICIPANT_CHECK.format(prefix=""),
            name="ck_expense_splits_one_participant",
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

    split_type: Mapped[SplitType] = mapped_column(
        Enum(
            SplitType,
            name="split_type_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitType.EXACT,
    )

    share_value: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 4),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    @property
    def participant(self) -> Participant:
        return Participant.from_refs(self.user_id, self.pending_user_id)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"participant={self.participant} "
            f"amount={self.amount}>"
        )
