"""
ledger/scope.py — The balance universe being queried.

A scope is either one group or one direct friend pair (expenses recorded
between two friends with no group). Balances never cross scopes; the
overall balance of a user is a list of per-scope positions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ScopeKind(str, enum.Enum):
    GROUP  = "group"
    FRIEND = "friend"


@dataclass(frozen=True, order=True)
class Scope:
    kind: ScopeKind
    id: int  # groups.id or friendships.id

    @classmethod
    def group(cls, group_id: int) -> Scope:
        return cls(ScopeKind.GROUP, group_id)

    @classmethod
    def friendship(cls, friendship_id: int) -> Scope:
        return cls(ScopeKind.FRIEND, friendship_id)

    @property
    def is_group(self) -> bool:
        return self.kind is ScopeKind.GROUP

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
