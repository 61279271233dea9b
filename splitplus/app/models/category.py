"""
models/category.py — Per-group expense category table definition.

No business logic. No imports from services or routes.

Key design points:
  - Categories belong to one group. Friend expenses carry no category.
  - `slug` is derived from `name` (category_service.generate_slug) and is
    unique within the group, so "Food & Drink" and "food and drink" clash.
  - Deleting a group deletes its categories. Deleting a category leaves its
    expenses uncategorised (expenses.category_id ON DELETE SET NULL).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from splitplus.app.extensions import db


class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"

    __table_args__ = (
        UniqueConstraint("group_id", "slug", name="uq_expense_categories_group_slug"),
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_expense_categories_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    icon: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
    )

    # "#RRGGBB"
    color: Mapped[str | None] = mapped_column(
        String(7),
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

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ExpenseCategory id={self.id} group_id={self.group_id} slug={self.slug!r}>"
