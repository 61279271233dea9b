"""
ledger/validator.py — Per-expense invariants, checked before persistence.

validate_expense() is pure: it takes the request-shaped expense data plus the
scope's settlement currency and either returns a PreparedExpense whose
amounts are exact Money values, or raises AppError. Nothing is written.

Checks, in order:
  INVALID_AMOUNT           total <= 0, currency differs from the scope, any
                           payment or split amount <= 0, or any value that
                           is not exact to the cent
  INVALID_PARTICIPANT      an entry sets both or neither of user_id /
                           pending_user_id, or a participant is listed twice
  PAYMENT_TOTAL_MISMATCH   sum(payments) != total
  MIXED_SPLIT_TYPES        splits of more than one split_type
  PERCENTAGE_REQUIRED /
  PERCENTAGE_TOTAL_MISMATCH  percentage splits without percentages, or
                           percentages not summing to exactly 100
  SHARES_REQUIRED          shares splits without a positive integer share
  AMOUNT_REQUIRED          exact splits without an amount
  SPLIT_TOTAL_MISMATCH     sum(splits) != total

Membership of the referenced participants is NOT checked here; that needs
the membership collaborator (services/membership_service.py).

Split amount rules:
  equal       split_evenly() over participants in ascending order, so the
              first `remainder` participants by id carry the extra cent
  percentage  allocate() by percentage, participants in ascending order
  shares      allocate() by share count, participants in ascending order
  exact       the client's amounts, verified against the total
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from splitplus.app.errors import AppError, ErrorCode
from splitplus.app.ledger.enums import SplitType
from splitplus.app.ledger.money import Money, allocate, split_evenly, total
from splitplus.app.ledger.participant import Participant


_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PreparedPayment:
    participant: Participant
    amount: Money
    payment_method: str | None = None


@dataclass(frozen=True)
class PreparedSplit:
    participant: Participant
    amount: Money
    split_type: SplitType
    share_value: Decimal | None = None


@dataclass(frozen=True)
class PreparedExpense:
    amount: Money
    payments: tuple[PreparedPayment, ...]
    splits: tuple[PreparedSplit, ...]

    @property
    def currency(self) -> str:
        return self.amount.currency

    def participants(self) -> list[Participant]:
        """Every payer and ower, deduplicated, in ascending order."""
        seen = {p.participant for p in self.payments}
        seen.update(s.participant for s in self.splits)
        return sorted(seen)


# ── Helpers ────────────────────────────────────────────────────────────────

def _positive_money(value: Any, currency: str, field: str) -> Money:
    if value is None:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            "An amount is required.",
            422,
            field=field,
        )
    try:
        money = Money.from_decimal(value, currency)
    except AppError as exc:
        raise AppError(exc.code, exc.message, exc.http_status, field=field)

    if not money.is_positive():
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Amount must be greater than zero, got {money}.",
            422,
            field=field,
        )
    return money


def _participant(entry: Mapping, field: str) -> Participant:
    return Participant.from_refs(
        entry.get("user_id"),
        entry.get("pending_user_id"),
        field=field,
    )


def _reject_duplicates(participants: Sequence[Participant], field: str) -> None:
    if len(set(participants)) != len(participants):
        raise AppError(
            ErrorCode.INVALID_PARTICIPANT,
            f"The same participant appears more than once in {field}.",
            422,
            field=field,
        )


def _in_ascending_order(participants: Sequence[Participant]) -> list[int]:
    """Indices of `participants` sorted by participant (id, kind)."""
    return sorted(range(len(participants)), key=lambda i: participants[i])


# ── Payments ───────────────────────────────────────────────────────────────

def _prepare_payments(entries: Sequence[Mapping], expense_total: Money) -> list[PreparedPayment]:
    if not entries:
        raise AppError(
            ErrorCode.PAYMENT_TOTAL_MISMATCH,
            "At least one payment is required.",
            422,
            field="payments",
        )

    payments = [
        PreparedPayment(
            participant=_participant(entry, "payments"),
            amount=_positive_money(entry.get("amount"), expense_total.currency, "payments"),
            payment_method=entry.get("payment_method"),
        )
        for entry in entries
    ]
    _reject_duplicates([p.participant for p in payments], "payments")

    paid = total([p.amount for p in payments], expense_total.currency)
    if paid != expense_total:
        raise AppError(
            ErrorCode.PAYMENT_TOTAL_MISMATCH,
            f"Payment amounts ({paid}) do not equal expense amount ({expense_total}).",
            422,
            field="payments",
        )
    return payments


# ── Splits ─────────────────────────────────────────────────────────────────

def _split_type_of(entries: Sequence[Mapping]) -> SplitType:
    try:
        kinds = {SplitType(entry.get("split_type") or SplitType.EXACT) for entry in entries}
    except ValueError:
        raise AppError(
            ErrorCode.INVALID_SPLIT_TYPE,
            f"split_type must be one of: {', '.join(t.value for t in SplitType)}.",
            400,
            field="splits",
        )
    if len(kinds) != 1:
        raise AppError(
            ErrorCode.MIXED_SPLIT_TYPES,
            "All splits of one expense must have the same split_type.",
            422,
            field="splits",
        )
    return kinds.pop()


def _proportional_amounts(
        expense_total: Money,
        participants: Sequence[Participant],
        weights: Sequence[Decimal | int],
) -> list[Money]:
    order = _in_ascending_order(participants)
    shares = allocate(expense_total, [weights[i] for i in order])
    amounts: list[Money] = [Money.zero(expense_total.currency)] * len(participants)
    for position, index in enumerate(order):
        amounts[index] = shares[position]
    return amounts


def _compute_split_amounts(
        split_type: SplitType,
        entries: Sequence[Mapping],
        participants: Sequence[Participant],
        expense_total: Money,
) -> tuple[list[Money], list[Decimal | None]]:
    """Returns (amounts, share_values), both in input order."""
    currency = expense_total.currency

    if split_type is SplitType.EQUAL:
        order = _in_ascending_order(participants)
        shares = split_evenly(expense_total, len(entries))
        amounts: list[Money] = [Money.zero(currency)] * len(entries)
        for position, index in enumerate(order):
            amounts[index] = shares[position]
        return amounts, [None] * len(entries)

    if split_type is SplitType.PERCENTAGE:
        percentages: list[Decimal] = []
        for entry in entries:
            pct = entry.get("percentage")
            if pct is None:
                raise AppError(
                    ErrorCode.PERCENTAGE_REQUIRED,
                    "Every percentage split needs a percentage.",
                    422,
                    field="splits",
                )
            pct = Decimal(str(pct))
            if pct <= 0:
                raise AppError(
                    ErrorCode.INVALID_AMOUNT,
                    "Percentages must be greater than zero.",
                    422,
                    field="splits",
                )
            percentages.append(pct)

        if sum(percentages, Decimal("0")) != _HUNDRED:
            raise AppError(
                ErrorCode.PERCENTAGE_TOTAL_MISMATCH,
                "Percentages must sum to exactly 100.",
                422,
                field="splits",
            )
        return _proportional_amounts(expense_total, participants, percentages), list(percentages)

    if split_type is SplitType.SHARES:
        counts: list[int] = []
        for entry in entries:
            shares = entry.get("shares")
            if isinstance(shares, bool) or not isinstance(shares, int) or shares <= 0:
                raise AppError(
                    ErrorCode.SHARES_REQUIRED,
                    "Every shares split needs a positive integer share count.",
                    422,
                    field="splits",
                )
            counts.append(shares)
        share_values = [Decimal(c) for c in counts]
        return _proportional_amounts(expense_total, participants, counts), share_values

    # SplitType.EXACT
    amounts = []
    for entry in entries:
        if entry.get("amount") is None:
            raise AppError(
                ErrorCode.AMOUNT_REQUIRED,
                "Every exact split needs an amount.",
                422,
                field="splits",
            )
        amounts.append(_positive_money(entry["amount"], currency, "splits"))
    return amounts, [None] * len(entries)


def _prepare_splits(entries: Sequence[Mapping], expense_total: Money) -> list[PreparedSplit]:
    if not entries:
        raise AppError(
            ErrorCode.SPLIT_TOTAL_MISMATCH,
            "At least one split is required.",
            422,
            field="splits",
        )

    participants = [_participant(entry, "splits") for entry in entries]
    _reject_duplicates(participants, "splits")
    split_type = _split_type_of(entries)

    amounts, share_values = _compute_split_amounts(
        split_type, entries, participants, expense_total,
    )

    for amount in amounts:
        if not amount.is_positive():
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Expense amount {expense_total} is too small to split "
                f"{len(entries)} ways; every share must be positive.",
                422,
                field="splits",
            )

    owed = total(amounts, expense_total.currency)
    if owed != expense_total:
        raise AppError(
            ErrorCode.SPLIT_TOTAL_MISMATCH,
            f"Split amounts ({owed}) do not equal expense amount ({expense_total}).",
            422,
            field="splits",
        )

    return [
        PreparedSplit(participant, amount, split_type, share_value)
        for participant, amount, share_value in zip(participants, amounts, share_values)
    ]


# ── Public entry point ─────────────────────────────────────────────────────

def validate_expense(data: Mapping, scope_currency: str) -> PreparedExpense:
    """
    Validates one candidate expense against the ledger invariants.

    Args:
        data: Request-shaped dict with keys amount, currency_code (optional),
              payments [{user_id | pending_user_id, amount, payment_method}],
              splits [{user_id | pending_user_id, split_type, amount,
              percentage, shares}].
        scope_currency: The settlement currency of the group or friend pair.

    Returns:
        PreparedExpense with exact Money amounts for every payment and split.
        Guarantees sum(payments) == sum(splits) == amount.
    """
    currency = data.get("currency_code") or scope_currency
    if currency != scope_currency:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Expense currency {currency} does not match the scope currency "
            f"{scope_currency}.",
            422,
            field="currency_code",
        )

    expense_total = _positive_money(data.get("amount"), currency, "amount")
    payments = _prepare_payments(data.get("payments") or [], expense_total)
    splits = _prepare_splits(data.get("splits") or [], expense_total)

    return PreparedExpense(
        amount=expense_total,
        payments=tuple(payments),
        splits=tuple(splits),
    )
