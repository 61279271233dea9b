"""
errors.py — AppError base class and error code registry.

Every error raised by the ledger engine, the service layer or the HTTP layer
uses a code defined here. Do not raise strings or generic exceptions from
ledger, service or route code.

Rules:
  - ErrorCode is a closed enumeration. Callers match on `error.code`, never
    on message text or object identity.
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - INTERNAL_ERROR messages are opaque. The detail goes to the log, not the
    response body.
"""

from __future__ import annotations

import enum


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode(str, enum.Enum):

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_CATEGORY_NAME      = "INVALID_CATEGORY_NAME"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    INVALID_STATUS             = "INVALID_STATUS"

    # ── Ledger Validation Errors (422) ─────────────────────────────────────
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    PAYMENT_TOTAL_MISMATCH     = "PAYMENT_TOTAL_MISMATCH"
    SPLIT_TOTAL_MISMATCH       = "SPLIT_TOTAL_MISMATCH"
    INVALID_PARTICIPANT        = "INVALID_PARTICIPANT"
    MIXED_SPLIT_TYPES          = "MIXED_SPLIT_TYPES"
    PERCENTAGE_TOTAL_MISMATCH  = "PERCENTAGE_TOTAL_MISMATCH"
    PERCENTAGE_REQUIRED        = "PERCENTAGE_REQUIRED"
    SHARES_REQUIRED            = "SHARES_REQUIRED"
    AMOUNT_REQUIRED            = "AMOUNT_REQUIRED"
    INVALID_SETTLEMENT         = "INVALID_SETTLEMENT"
    INVALID_STATUS_TRANSITION  = "INVALID_STATUS_TRANSITION"
    EXPENSE_DELETED            = "EXPENSE_DELETED"
    CATEGORY_NOT_IN_GROUP      = "CATEGORY_NOT_IN_GROUP"
    PENDING_USER_RECONCILED    = "PENDING_USER_RECONCILED"

    # ── Authorization Errors (403) ─────────────────────────────────────────
    NOT_GROUP_MEMBER           = "NOT_GROUP_MEMBER"
    INVALID_FRIEND_ACTION      = "INVALID_FRIEND_ACTION"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND       = "SETTLEMENT_NOT_FOUND"
    FRIEND_NOT_FOUND           = "FRIEND_NOT_FOUND"
    PENDING_USER_NOT_FOUND     = "PENDING_USER_NOT_FOUND"
    CATEGORY_NOT_FOUND         = "CATEGORY_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    CATEGORY_ALREADY_EXISTS    = "CATEGORY_ALREADY_EXISTS"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    # 401 = we do not know who you are. 403 = we know, but you may not.
    TOKEN_MISSING              = "TOKEN_MISSING"
    TOKEN_INVALID              = "TOKEN_INVALID"
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):

    def __init__(
            self,
            code: ErrorCode,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code.value,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code.value!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


def internal_error() -> AppError:
    """The opaque error surfaced for every ledger invariant violation."""
    return AppError(
        ErrorCode.INTERNAL_ERROR,
        "An internal consistency check failed. No changes were made.",
        500,
    )


def is_error_code(value: object) -> bool:
    """True if `value` is the string form of a registered ErrorCode."""
    return isinstance(value, str) and value in ErrorCode._value2member_map_


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode(str, enum.Enum):

    # Settlement amount exceeds the payer's current debt to the payee.
    # Still recorded; the excess becomes a reversed debt once completed.
    OVERPAYMENT = "OVERPAYMENT"

    def __str__(self) -> str:
        return self.value
