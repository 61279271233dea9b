"""
models/settlement.py — Settlement table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2), never Float, and never changes after
    creation. Only `status` moves (see SETTLEMENT_TRANSITIONS).
  - Only COMPLETED settlements reduce balances. PENDING and CANCELLED rows
    are history.
  - Payer and payee are participants: each is a (user_id, pending_user_id)
    pair with exactly one column set.
  - A settlement belongs to exactly one scope (group or friendship).
  - Payer != payee is enforced in settlement_service (INVALID_SETTLEMENT,
    422) before the write reaches the database.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from splitplus.app.extensions import db
from splitplus.app.ledger.enums import SettlementStatus
from splitplus.app.ledger.participant import Participant
from splitplus.app.ledger.scope import Scope
from splitplus.app.models.expense import PARTICIPANT_CHECK, _enum_values


class Settlement(db.Model):
    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        CheckConstraint(
            "(group_id IS NULL) <> (friendship_id IS NULL)",
            name="ck_settlements_exactly_one_scope",
        ),
        CheckConstraint(
            PARTICIPANT_CHECK.format(prefix="payer_"),
            name="ck_settlements_one_payer",
        ),
        CheckConstraint(
            PARTICIPANT_CHECK.format(prefix="payee_"),
            name="ck_settlements_one_payee",
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

    payer_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    payer_pending_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("pending_users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    payee_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    payee_pending_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("pending_users.id", ondelete="RESTRICT"),
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

    status: Mapped[SettlementStatus] = mapped_column(
        Enum(
            SettlementStatus,
            name="settlement_status_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SettlementStatus.PENDING,
        server_default=SettlementStatus.PENDING.value,
    )

    payment_method: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Participant views ──────────────────────────────────────────────────

    @property
    def payer(self) -> Participant:
        return Participant.from_refs(self.payer_user_id, self.payer_pending_user_id)

    @property
    def payee(self) -> Participant:
        return Participant.from_refs(self.payee_user_id, self.payee_pending_user_id)

    @property
    def scope(self) -> Scope:
        if self.group_id is not None:
            return Scope.group(self.group_id)
        return Scope.friendship(self.friendship_id)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Settlement id={self.id} "
            f"scope={self.scope} "
            f"from={self.payer} "
            f"to={self.payee} "
            f"amount={self.amount} "
            f"status={self.status.value}>"
        )
