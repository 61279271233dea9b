"""
services/category_service.py — Per-group expense categories.

Each group keeps its own category list. A group starts empty and adopts the
system presets it wants (create_categories_from_presets) or adds its own.
Expenses reference a category by id; the category must belong to the
expense's group (validate_expense_category).

Slugs:
  generate_slug() lowercases the name, turns spaces into hyphens, strips
  everything except [a-z0-9-], collapses repeated hyphens and trims them.
  A name whose slug is empty ("!!!") is INVALID_CATEGORY_NAME. Two
  categories of one group may not share a slug (CATEGORY_ALREADY_EXISTS).

Authorization rules:
  - Any group member may list, create, rename or delete the group's
    categories (NOT_GROUP_MEMBER, 403 otherwise).
  - A category id that exists but belongs to another group is reported as
    CATEGORY_NOT_FOUND on the category routes, and as CATEGORY_NOT_IN_GROUP
    when an expense references it.

Layer rules:
  - No Flask imports. Receives plain ints and dicts and a SQLAlchemy Session.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from splitplus.app.errors import AppError, ErrorCode
from splitplus.app.ledger.scope import Scope
from splitplus.app.models.category import ExpenseCategory
from splitplus.app.models.expense import Expense
from splitplus.app.services import membership_service

logger = logging.getLogger(__name__)


# ── System presets ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CategoryPreset:
    slug: str
    name: str
    icon: str
    color: str

    def to_dict(self) -> dict:
        return {"slug": self.slug, "name": self.name, "icon": self.icon, "color": self.color}


CATEGORY_PRESETS: tuple[CategoryPreset, ...] = (
    CategoryPreset("food-and-drink", "Food & Drink", "🍔", "#FF6B6B"),
    CategoryPreset("entertainment", "Entertainment", "🎬", "#4ECDC4"),
    CategoryPreset("home", "Home", "🏠", "#45B7D1"),
    CategoryPreset("transportation", "Transportation", "🚗", "#96CEB4"),
    CategoryPreset("shopping", "Shopping", "🛍️", "#FFEAA7"),
    CategoryPreset("utilities", "Utilities", "💡", "#DFE6E9"),
    CategoryPreset("healthcare", "Healthcare", "⚕️", "#74B9FF"),
    CategoryPreset("travel", "Travel", "✈️", "#A29BFE"),
    CategoryPreset("other", "Other", "📌", "#B2BEC3"),
)

_PRESETS_BY_SLUG = {preset.slug: preset for preset in CATEGORY_PRESETS}

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9-]+")
_REPEATED_HYPHENS = re.compile(r"-+")


def generate_slug(name: str) -> str:
    """URL-friendly form of a category name: "Food & Drink" -> "food-drink"."""
    slug = name.lower().replace(" ", "-")
    slug = _NON_SLUG_CHARS.sub("", slug)
    slug = _REPEATED_HYPHENS.sub("-", slug)
    return slug.strip("-")


def get_preset(slug: str) -> CategoryPreset | None:
    return _PRESETS_BY_SLUG.get(slug)


def list_presets() -> list[CategoryPreset]:
    return list(CATEGORY_PRESETS)


# ── Private helpers ────────────────────────────────────────────────────────

def _require_group_member(group_id: int, caller_id: int, session: Session) -> None:
    membership_service.require_scope_access(Scope.group(group_id), caller_id, session)


def _name_and_slug(raw_name: str) -> tuple[str, str]:
    name = (raw_name or "").strip()
    slug = generate_slug(name)
    if not name or not slug:
        raise AppError(
            ErrorCode.INVALID_CATEGORY_NAME,
            "Category name must contain at least one letter or digit.",
            400,
            field="name",
        )
    return name, slug


def _find_by_slug(group_id: int, slug: str, session: Session) -> ExpenseCategory | None:
    return session.execute(
        select(ExpenseCategory).where(
            ExpenseCategory.group_id == group_id,
            ExpenseCategory.slug == slug,
        )
    ).scalar_one_or_none()


def _reject_taken_slug(group_id: int, slug: str, session: Session, exclude_id: int | None = None) -> None:
    existing = _find_by_slug(group_id, slug, session)
    if existing is not None and existing.id != exclude_id:
        raise AppError(
            ErrorCode.CATEGORY_ALREADY_EXISTS,
            f"Group {group_id} already has a category named {existing.name!r}.",
            409,
            field="name",
        )


def _get_group_category_or_404(group_id: int, category_id: int, session: Session) -> ExpenseCategory:
    category = session.get(ExpenseCategory, category_id)
    if category is None or category.group_id != group_id:
        raise AppError(
            ErrorCode.CATEGORY_NOT_FOUND,
            f"Category {category_id} does not exist in group {group_id}.",
            404,
        )
    return category


# ── Public service functions ───────────────────────────────────────────────

def list_group_categories(group_id: int, caller_id: int, session: Session) -> list[ExpenseCategory]:
    """The group's categories ordered by name."""
    _require_group_member(group_id, caller_id, session)
    stmt = (
        select(ExpenseCategory)
        .where(ExpenseCategory.group_id == group_id)
        .order_by(ExpenseCategory.name, ExpenseCategory.id)
    )
    return list(session.execute(stmt).scalars().all())


def create_group_category(
        group_id: int,
        caller_id: int,
        data: Mapping,
        session: Session,
) -> ExpenseCategory:
    """
    Adds a category to a group.

    Raises:
        AppError(GROUP_NOT_FOUND, 404), AppError(NOT_GROUP_MEMBER, 403)
        AppError(INVALID_CATEGORY_NAME, 400)   -- name has no usable slug.
        AppError(CATEGORY_ALREADY_EXISTS, 409) -- slug taken in this group.
    """
    _require_group_member(group_id, caller_id, session)
    name, slug = _name_and_slug(data["name"])
    _reject_taken_slug(group_id, slug, session)

    category = ExpenseCategory(
        group_id=group_id,
        slug=slug,
        name=name,
        icon=data.get("icon") or None,
        color=data.get("color") or None,
        created_by=caller_id,
    )
    session.add(category)
    session.flush()

    logger.info("Created category %s (%s) in group %s", category.id, slug, group_id)
    return category


def update_group_category(
        group_id: int,
        category_id: int,
        caller_id: int,
        data: Mapping,
        session: Session,
) -> ExpenseCategory:
    """Renames a category and replaces its icon and colour."""
    category = _get_group_category_or_404(group_id, category_id, session)
    _require_group_member(group_id, caller_id, session)
    name, slug = _name_and_slug(data["name"])
    _reject_taken_slug(group_id, slug, session, exclude_id=category.id)

    category.name = name
    category.slug = slug
    category.icon = data.get("icon") or None
    category.color = data.get("color") or None
    category.updated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info("Updated category %s in group %s", category.id, group_id)
    return category


def delete_group_category(
        group_id: int,
        category_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """Deletes a category; expenses that used it become uncategorised."""
    category = _get_group_category_or_404(group_id, category_id, session)
    _require_group_member(group_id, caller_id, session)

    session.execute(
        update(Expense)
        .where(Expense.category_id == category_id)
        .values(category_id=None)
    )
    session.delete(category)
    session.flush()
    logger.info("Deleted category %s from group %s", category_id, group_id)


def create_categories_from_presets(
        group_id: int,
        caller_id: int,
        preset_slugs: Iterable[str],
        session: Session,
) -> list[ExpenseCategory]:
    """
    Adopts system presets into a group.

    Unknown slugs are skipped. A preset the group already has is returned
    as it is, so calling this twice is harmless.
    """
    _require_group_member(group_id, caller_id, session)

    categories: list[ExpenseCategory] = []
    for slug in dict.fromkeys(preset_slugs):
        preset = get_preset(slug)
        if preset is None:
            logger.debug("Skipping unknown category preset %r", slug)
            continue

        existing = _find_by_slug(group_id, generate_slug(preset.name), session)
        if existing is not None:
            categories.append(existing)
            continue

        categories.append(create_group_category(
            group_id,
            caller_id,
            {"name": preset.name, "icon": preset.icon, "color": preset.color},
            session,
        ))
    return categories


def validate_expense_category(scope: Scope, category_id: int | None, session: Session) -> None:
    """
    An expense's category must exist and belong to the expense's group.

    Friend expenses cannot be categorised.

    Raises:
        AppError(CATEGORY_NOT_FOUND, 404)
        AppError(CATEGORY_NOT_IN_GROUP, 422)
    """
    if category_id is None:
        return

    category = session.get(ExpenseCategory, category_id)
    if category is None:
        raise AppError(
            ErrorCode.CATEGORY_NOT_FOUND,
            f"Category {category_id} does not exist.",
            404,
            field="category_id",
        )
    if not scope.is_group or category.group_id != scope.id:
        raise AppError(
            ErrorCode.CATEGORY_NOT_IN_GROUP,
            f"Category {category_id} does not belong to this expense's group.",
            422,
            field="category_id",
        )
