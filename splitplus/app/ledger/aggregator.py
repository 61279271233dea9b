"""
ledger/aggregator.py — Scope history → balance matrix → balances.

This file is the SINGLE SOURCE OF TRUTH for how balances are derived from
expenses and settlements. Services fetch rows; this module does the math.

Matrix:
  M[a][b] = total amount participant a owes participant b.
  - Every expense contributes its allocator edges (ower -> payer).
  - Every COMPLETED settlement payer -> payee of amount s first cancels
    min(M[payer][payee], s); any excess is added to M[payee][payer], i.e. an
    overpayment turns into a reversed debt. Pending and cancelled
    settlements are ignored.

Derived values:
  net(a, b)          = M[a][b] - M[b][a]
  PairwiseBalance    = (debtor, creditor, net) for every pair with net > 0
  net position of u  = sum_v M[v][u] - sum_v M[u][v]   (positive = is owed)

Invariants (violations log scope context and raise INTERNAL_ERROR):
  - sum of all net positions == 0 exactly
  - net positions computed from the matrix equal those recomputed from the
    reported pairwise balances
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from splitplus.app.errors import internal_error
from splitplus.app.ledger.allocator import allocate_expense
from splitplus.app.ledger.enums import SettlementStatus
from splitplus.app.ledger.money import Money
from splitplus.app.ledger.participant import Participant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairwiseBalance:
    """`debtor` owes `creditor` `amount` (always > 0) after netting."""
    debtor: Participant
    creditor: Participant
    amount: Money

    def to_dict(self) -> dict:
        return {
            "debtor": self.debtor.to_dict(),
            "creditor": self.creditor.to_dict(),
            "amount": str(self.amount),
        }


class BalanceMatrix:
    """
    Directed debt totals for one scope, held in integer minor units.

    Build with add_debt() / apply_settlement(), or all at once with
    fold_scope(). Read with owed(), net(), pairwise_balances() and
    net_positions().
    """

    def __init__(self, currency: str, scope_label: str = "") -> None:
        self.currency = currency
        self.scope_label = scope_label
        self._owes: dict[Participant, dict[Participant, int]] = defaultdict(lambda: defaultdict(int))
        self._participants: set[Participant] = set()

    # ── Mutation ───────────────────────────────────────────────────────────

    def include(self, participant: Participant) -> None:
        """Makes `participant` appear in net_positions() even at zero."""
        self._participants.add(participant)

    def add_debt(self, debtor: Participant, creditor: Participant, amount: Money) -> None:
        self._check_currency(amount)
        self._participants.update((debtor, creditor))
        if debtor == creditor:
            return
        self._owes[debtor][creditor] += amount.minor_units

    def apply_settlement(self, payer: Participant, payee: Participant, amount: Money) -> None:
        self._check_currency(amount)
        self._participants.update((payer, payee))
        if payer == payee:
            return
        outstanding = self._owes[payer][payee]
        cancelled = min(outstanding, amount.minor_units)
        self._owes[payer][payee] = outstanding - cancelled
        excess = amount.minor_units - cancelled
        if excess:
            self._owes[payee][payer] += excess

    def _check_currency(self, amount: Money) -> None:
        if amount.currency != self.currency:
            logger.error(
                "Currency mismatch in scope %s: %s amount in a %s ledger",
                self.scope_label,
                amount.currency,
                self.currency,
            )
            raise internal_error()

    # ── Reads ──────────────────────────────────────────────────────────────

    @property
    def participants(self) -> list[Participant]:
        return sorted(self._participants)

    def owed(self, debtor: Participant, creditor: Participant) -> Money:
        """M[debtor][creditor], gross of any debt in the other direction."""
        units = self._owes.get(debtor, {}).get(creditor, 0)
        return Money(units, self.currency)

    def net(self, a: Participant, b: Participant) -> Money:
        """Positive when a owes b on balance, negative when b owes a."""
        return self.owed(a, b) - self.owed(b, a)

    def pairwise_balances(self) -> list[PairwiseBalance]:
        """Every pair with a nonzero net debt, ordered by (debtor, creditor)."""
        people = self.participants
        balances: list[PairwiseBalance] = []
        for i, a in enumerate(people):
            for b in people[i + 1:]:
                net = self.net(a, b)
                if net.is_positive():
                    balances.append(PairwiseBalance(a, b, net))
                elif net.is_negative():
                    balances.append(PairwiseBalance(b, a, -net))
        balances.sort(key=lambda pb: (pb.debtor, pb.creditor))
        return balances

    def _positions_from_matrix(self) -> dict[Participant, int]:
        positions = {p: 0 for p in self._participants}
        for debtor, row in self._owes.items():
            for creditor, units in row.items():
                positions[creditor] += units
                positions[debtor] -= units
        return positions

    def net_positions(self) -> dict[Participant, Money]:
        """
        Signed position per participant, ascending participant order.

        Computed from the matrix and cross-checked against the pairwise
        balances; also asserts the positions sum to zero.
        """
        from_matrix = self._positions_from_matrix()

        from_pairwise = {p: 0 for p in self._participants}
        for pb in self.pairwise_balances():
            from_pairwise[pb.creditor] += pb.amount.minor_units
            from_pairwise[pb.debtor] -= pb.amount.minor_units

        if from_matrix != from_pairwise:
            logger.error(
                "Net position mismatch in scope %s: matrix=%s pairwise=%s",
                self.scope_label,
                {str(p): v for p, v in from_matrix.items()},
                {str(p): v for p, v in from_pairwise.items()},
            )
            raise internal_error()

        position_sum = sum(from_matrix.values())
        if position_sum != 0:
            logger.error(
                "Net positions in scope %s sum to %s minor units, expected 0",
                self.scope_label,
                position_sum,
            )
            raise internal_error()

        return {
            p: Money(from_matrix[p], self.currency)
            for p in sorted(from_matrix)
        }

    def position_of(self, participant: Participant) -> Money:
        return self.net_positions().get(participant, Money.zero(self.currency))


def fold_scope(
        expenses: Iterable,
        settlements: Iterable,
        currency: str,
        members: Iterable[Participant] = (),
        scope_label: str = "",
) -> BalanceMatrix:
    """
    Builds the balance matrix for one scope.

    Args:
        expenses:    Active expenses (see allocator.allocate_expense for the
                     attributes used). Rows with deleted_at set are skipped.
        settlements: Settlements with .payer, .payee, .amount, .status.
                     Only COMPLETED ones are applied.
        currency:    The scope's settlement currency.
        members:     Participants that must appear in the positions even if
                     untouched by any expense.
    """
    matrix = BalanceMatrix(currency, scope_label)
    for member in members:
        matrix.include(member)

    for expense in expenses:
        if getattr(expense, "deleted_at", None) is not None:
            continue
        for edge in allocate_expense(expense):
            matrix.add_debt(edge.debtor, edge.creditor, edge.amount)

    for settlement in settlements:
        if SettlementStatus(settlement.status) is not SettlementStatus.COMPLETED:
            continue
        matrix.apply_settlement(
            settlement.payer,
            settlement.payee,
            Money.from_decimal(settlement.amount, currency),
        )

    return matrix
