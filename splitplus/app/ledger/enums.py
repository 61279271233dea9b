"""
ledger/enums.py — Enumerations shared by the ledger, models and schemas.

Defined here so they can be imported by schemas, services and the pure
ledger package without pulling in the ORM models. Do not duplicate these as
plain string constants anywhere else in the codebase.
"""

from __future__ import annotations

import enum


class SplitType(str, enum.Enum):
    EQUAL      = "equal"
    EXACT      = "exact"
    PERCENTAGE = "percentage"
    SHARES     = "shares"


class SettlementStatus(str, enum.Enum):
    PENDING   = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed settlement status transitions. The amount never changes; only the
# status moves forward. `cancelled` is terminal.
SETTLEMENT_TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    SettlementStatus.PENDING:   frozenset({SettlementStatus.COMPLETED, SettlementStatus.CANCELLED}),
    SettlementStatus.COMPLETED: frozenset({SettlementStatus.CANCELLED}),
    SettlementStatus.CANCELLED: frozenset(),
}
