"""
ledger/money.py — Exact fixed-point money.

Money is an integer count of minor units (cents) plus an ISO-4217 currency
code. Binary floats are never accepted, and no operation rounds silently:

  - Arithmetic (add, subtract, negate) is exact integer arithmetic.
  - Conversion from Decimal rejects values with more than MINOR_DIGITS
    decimal places instead of rounding them.
  - The only rounding in the ledger happens in split_evenly() and allocate(),
    and both distribute the remainder deterministically so the parts always
    sum back to the whole.

Every amount in one scope shares one currency. Mixing currencies in a single
operation raises INVALID_AMOUNT.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Sequence

from splitplus.app.errors import AppError, ErrorCode


MINOR_DIGITS = 2
_SCALE = 10 ** MINOR_DIGITS
_QUANTUM = Decimal(1).scaleb(-MINOR_DIGITS)  # Decimal("0.01")


def _invalid_amount(message: str) -> AppError:
    return AppError(ErrorCode.INVALID_AMOUNT, message, 422)


@dataclass(frozen=True)
class Money:
    minor_units: int
    currency: str

    def __post_init__(self) -> None:
        if isinstance(self.minor_units, bool) or not isinstance(self.minor_units, int):
            raise _invalid_amount(
                f"Money requires integer minor units, got {self.minor_units!r}."
            )

    # ── Construction ───────────────────────────────────────────────────────

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(0, currency)

    @classmethod
    def from_decimal(cls, value: Decimal | str | int, currency: str) -> Money:
        """
        Builds Money from an exact decimal value.

        Accepts Decimal, decimal strings ("10.50") and ints. Floats are
        rejected outright. Values with more than two decimal places are
        rejected, not rounded.
        """
        if isinstance(value, float):
            raise _invalid_amount("Monetary amounts must never be binary floats.")
        try:
            dec = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation:
            raise _invalid_amount(f"{value!r} is not a valid decimal amount.")

        if not dec.is_finite():
            raise _invalid_amount(f"{value!r} is not a finite amount.")

        scaled = dec * _SCALE
        if scaled != scaled.to_integral_value():
            raise _invalid_amount(
                f"{value} has more than {MINOR_DIGITS} decimal places."
            )
        return cls(int(scaled), currency)

    # ── Views ──────────────────────────────────────────────────────────────

    @property
    def amount(self) -> Decimal:
        """Decimal view with exactly two decimal places (Decimal("10.50"))."""
        return (Decimal(self.minor_units) / _SCALE).quantize(_QUANTUM)

    def is_zero(self) -> bool:
        return self.minor_units == 0

    def is_positive(self) -> bool:
        return self.minor_units > 0

    def is_negative(self) -> bool:
        return self.minor_units < 0

    def __str__(self) -> str:
        return str(self.amount)

    def __repr__(self) -> str:
        return f"Money({self.amount} {self.currency})"

    # ── Arithmetic ─────────────────────────────────────────────────────────

    def _check_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}.")
        if other.currency != self.currency:
            raise _invalid_amount(
                f"Currency mismatch: {self.currency} vs {other.currency}."
            )

    def __add__(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.minor_units + other.minor_units, self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.minor_units - other.minor_units, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.minor_units, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.minor_units), self.currency)

    def __lt__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.minor_units < other.minor_units

    def __le__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.minor_units <= other.minor_units

    def __gt__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.minor_units > other.minor_units

    def __ge__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.minor_units >= other.minor_units


def total(amounts: Sequence[Money], currency: str) -> Money:
    """Exact sum of `amounts`; the zero of `currency` when empty."""
    result = Money.zero(currency)
    for amount in amounts:
        result = result + amount
    return result


# ── Rounding-aware division ────────────────────────────────────────────────

def split_evenly(amount: Money, n: int) -> list[Money]:
    """
    Divides `amount` into n shares that differ by at most one minor unit.

    The remainder (amount mod n) is handed out one minor unit at a time to
    the FIRST `remainder` shares, so the caller controls who absorbs it by
    the order in which it lists participants (ascending participant id for
    equal splits).

    Guarantees: sum(result) == amount, len(result) == n.
    """
    if n < 1:
        raise _invalid_amount("Cannot split an amount into fewer than one share.")
    if amount.is_negative():
        raise _invalid_amount("Cannot split a negative amount.")

    base, remainder = divmod(amount.minor_units, n)
    return [
        Money(base + 1 if i < remainder else base, amount.currency)
        for i in range(n)
    ]


def allocate(amount: Money, weights: Sequence[Decimal | int | Money]) -> list[Money]:
    """
    Proportional allocation with largest-remainder rounding.

    Each share starts at floor(amount * w_i / W). The minor units left over
    go one at a time to the shares with the largest fractional remainder;
    ties go to the earlier position. The result sums exactly to `amount`
    and is reproducible for a given input order.

    Weights may be Decimals, ints or Money (Money weights use minor units).
    """
    if not weights:
        raise _invalid_amount("Cannot allocate across zero weights.")
    if amount.is_negative():
        raise _invalid_amount("Cannot allocate a negative amount.")

    exact_weights = [
        Fraction(w.minor_units) if isinstance(w, Money) else Fraction(w)
        for w in weights
    ]
    if any(w < 0 for w in exact_weights):
        raise _invalid_amount("Allocation weights must not be negative.")

    weight_sum = sum(exact_weights, Fraction(0))
    if weight_sum == 0:
        raise _invalid_amount("Allocation weights must not all be zero.")

    quotas = [amount.minor_units * w / weight_sum for w in exact_weights]
    floors = [math.floor(q) for q in quotas]
    leftover = amount.minor_units - sum(floors)

    # Largest fractional part first; equal parts keep positional order.
    order = sorted(
        range(len(quotas)),
        key=lambda i: (-(quotas[i] - floors[i]), i),
    )
    for i in order[:leftover]:
        floors[i] += 1

    return [Money(units, amount.currency) for units in floors]
