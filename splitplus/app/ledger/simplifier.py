"""
ledger/simplifier.py — Net positions → minimal payoff plan.

Greedy minimum cash flow:
  1. Partition positions into creditors (> 0) and debtors (< 0). Zeros drop.
  2. Repeatedly match the creditor with the largest remaining credit against
     the debtor with the largest remaining debt, transfer min(credit, debt)
     debtor → creditor, and push back whichever side still has a remainder.
  3. Stop when both sides are empty.

Ties on amount go to the smaller Participant, so the plan is a pure function
of its input. Each step zeroes at least one side, which bounds the plan at
N-1 transfers for N nonzero participants. Greedy largest-pair matching is an
approximation: it does not search for the global minimum.

The input MUST sum to exactly zero. A nonzero sum means the aggregator
produced corrupt positions; it is logged and fails closed.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from typing import Mapping

from splitplus.app.errors import internal_error
from splitplus.app.ledger.money import Money
from splitplus.app.ledger.participant import Participant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedTransfer:
    """One payoff step: `debtor` pays `creditor` `amount`."""
    debtor: Participant
    creditor: Participant
    amount: Money

    def to_dict(self) -> dict:
        return {
            "from": self.debtor.to_dict(),
            "to": self.creditor.to_dict(),
            "amount": str(self.amount),
        }


def simplify_debts(
        positions: Mapping[Participant, Money],
        scope=None,
) -> list[PlannedTransfer]:
    """
    Args:
        positions: {participant: signed net position}; positive = is owed.
        scope:     Only used for log context.

    Returns:
        Ordered transfers. An empty list means everyone is already square.
    """
    if not positions:
        return []

    currency = next(iter(positions.values())).currency
    position_sum = sum(m.minor_units for m in positions.values())
    if position_sum != 0:
        logger.error(
            "Refusing to simplify debts for scope %s: positions sum to %s "
            "minor units (positions=%s)",
            scope,
            position_sum,
            {str(p): str(m) for p, m in positions.items()},
        )
        raise internal_error()

    # Max-heaps via negated amounts; the participant breaks ties ascending.
    creditors = [(-m.minor_units, p) for p, m in positions.items() if m.is_positive()]
    debtors = [(m.minor_units, p) for p, m in positions.items() if m.is_negative()]
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    plan: list[PlannedTransfer] = []
    while creditors and debtors:
        neg_credit, creditor = heapq.heappop(creditors)
        neg_debt, debtor = heapq.heappop(debtors)
        credit, debt = -neg_credit, -neg_debt

        transfer = min(credit, debt)
        plan.append(PlannedTransfer(debtor, creditor, Money(transfer, currency)))

        if credit > transfer:
            heapq.heappush(creditors, (-(credit - transfer), creditor))
        if debt > transfer:
            heapq.heappush(debtors, (-(debt - transfer), debtor))

    return plan
