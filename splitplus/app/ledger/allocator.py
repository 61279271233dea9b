"""
ledger/allocator.py — One expense → directed pairwise debts.

An expense may have several payers and several owers. To fold it into a
scope-wide balance graph, each ower's share is distributed across the payers
in proportion to what each payer put in:

    for each split (ower_j, owed_j):
        shares = allocate(owed_j, [payment.amount for each payer])
        emit DebtEdge(ower_j -> payer_i, share_i) for every nonzero share

allocate() uses largest-remainder rounding with ties broken by payer order
as stored, so each ower's edges sum exactly to owed_j and the result is
reproducible.

Conservation: the edges of one expense sum to the expense total exactly.
This is checked BEFORE self-edges (ower == payer) are dropped. A failure is
an invariant violation: it is logged with the expense context and surfaced
as an opaque INTERNAL_ERROR, never coerced.

Works on any object exposing:
  expense.id, expense.amount (Decimal), expense.currency_code,
  expense.payments / expense.splits, each with .participant and .amount.
ORM rows and plain test doubles both qualify.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from splitplus.app.errors import internal_error
from splitplus.app.ledger.money import Money, allocate, total
from splitplus.app.ledger.participant import Participant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebtEdge:
    """`debtor` owes `creditor` `amount` because of one expense."""
    debtor: Participant
    creditor: Participant
    amount: Money


def allocate_expense(expense) -> list[DebtEdge]:
    """
    Decomposes one validated expense into directed debt edges.

    Returns edges in split order, then payer order. Self-edges are omitted.
    Raises INTERNAL_ERROR (500) if the expense's own rows are inconsistent
    (payments or splits not summing to the total, or edges not conserving it).
    """
    currency = expense.currency_code
    expense_total = Money.from_decimal(expense.amount, currency)

    payers = [p.participant for p in expense.payments]
    paid = [Money.from_decimal(p.amount, currency) for p in expense.payments]

    if not payers or total(paid, currency) != expense_total:
        logger.error(
            "Allocator rejected expense %s: payments sum to %s, total is %s",
            expense.id,
            total(paid, currency),
            expense_total,
        )
        raise internal_error()

    edges: list[DebtEdge] = []
    for split in expense.splits:
        owed = Money.from_decimal(split.amount, currency)
        if not owed.is_positive():
            continue
        for payer, share in zip(payers, allocate(owed, paid)):
            if share.is_positive():
                edges.append(DebtEdge(split.participant, payer, share))

    allocated = total([e.amount for e in edges], currency)
    if allocated != expense_total:
        logger.error(
            "Allocator conservation failure for expense %s: edges sum to %s, "
            "total is %s (payments=%s, splits=%s)",
            expense.id,
            allocated,
            expense_total,
            [(str(p.participant), str(p.amount)) for p in expense.payments],
            [(str(s.participant), str(s.amount)) for s in expense.splits],
        )
        raise internal_error()

    return [e for e in edges if e.debtor != e.creditor]
