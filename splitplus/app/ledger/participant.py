"""
ledger/participant.py — Who can pay, owe, or settle.

A Participant is a tagged union of exactly one of:
  - a registered user   (ParticipantKind.USER, users.id)
  - a pending user      (ParticipantKind.PENDING, pending_users.id), i.e. an
                         invited person without an account yet.

Storage keeps two nullable columns (user_id, pending_user_id) per row.
Participant.from_refs() is the single place where that pair is turned into
a Participant, and it rejects "both set" and "neither set".

Participants order by (id, kind). Every deterministic tie-break in the
ledger (equal-split remainder, simplifier ties, output ordering) uses this
ordering.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from splitplus.app.errors import AppError, ErrorCode


class ParticipantKind(str, enum.Enum):
    PENDING = "pending"
    USER    = "user"


@dataclass(frozen=True, order=True)
class Participant:
    id: int
    kind: ParticipantKind

    @classmethod
    def user(cls, user_id: int) -> Participant:
        return cls(user_id, ParticipantKind.USER)

    @classmethod
    def pending(cls, pending_user_id: int) -> Participant:
        return cls(pending_user_id, ParticipantKind.PENDING)

    @classmethod
    def from_refs(
            cls,
            user_id: int | None,
            pending_user_id: int | None,
            field: str | None = None,
    ) -> Participant:
        """Exactly one reference must be set."""
        if user_id is not None and pending_user_id is not None:
            raise AppError(
                ErrorCode.INVALID_PARTICIPANT,
                "Set either user_id or pending_user_id, not both.",
                422,
                field=field,
            )
        if user_id is None and pending_user_id is None:
            raise AppError(
                ErrorCode.INVALID_PARTICIPANT,
                "One of user_id or pending_user_id is required.",
                422,
                field=field,
            )
        if user_id is not None:
            return cls.user(user_id)
        return cls.pending(pending_user_id)

    @property
    def is_pending(self) -> bool:
        return self.kind is ParticipantKind.PENDING

    @property
    def user_id(self) -> int | None:
        return None if self.is_pending else self.id

    @property
    def pending_user_id(self) -> int | None:
        return self.id if self.is_pending else None

    def to_dict(self) -> dict:
        """Wire form: {"user_id": 3} or {"pending_user_id": 7}."""
        if self.is_pending:
            return {"pending_user_id": self.id}
        return {"user_id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
