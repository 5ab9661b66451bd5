from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Optional

from settlement_engine.errors import ConsistencyWarning
from settlement_engine.services.expenses import CENT, ExpenseRecord, quantize_amount

logger = logging.getLogger(__name__)

EPSILON = CENT


@dataclass(frozen=True)
class Edge:
    from_participant: str  # debtor
    to_participant: str  # creditor
    amount: Decimal
    resolved: bool = False

    def as_resolved(self) -> Edge:
        return replace(self, resolved=True)


@dataclass(frozen=True)
class SettlementPlan:
    edges: list[Edge]
    warning: Optional[ConsistencyWarning] = None


@dataclass(frozen=True)
class MergeResult:
    all_expenses: list[ExpenseRecord]
    edges: list[Edge]
    warning: Optional[ConsistencyWarning] = None

    @property
    def pending(self) -> list[Edge]:
        return [e for e in self.edges if not e.resolved]

    @property
    def resolved(self) -> list[Edge]:
        return [e for e in self.edges if e.resolved]


@dataclass
class _Position:
    participant_id: str
    remaining: Decimal = field(default=Decimal(0))


def compute_balances(expenses: Iterable[ExpenseRecord], resolved_edges: Iterable[Edge] = ()) -> dict[str, Decimal]:
    """Net position per participant: positive is owed money, negative owes money.

    A resolved edge is money that already moved, so the debtor is credited and
    the creditor debited by its amount.
    """
    balances: dict[str, Decimal] = defaultdict(Decimal)

    for expense in expenses:
        balances[expense.payer] += expense.total_amount
        for participant_id, share in expense.shares():
            balances[participant_id] -= share

    for edge in resolved_edges:
        balances[edge.from_participant] += edge.amount
        balances[edge.to_participant] -= edge.amount

    return {pid: quantize_amount(bal) for pid, bal in balances.items()}


def _ranked(positions: list[_Position]) -> list[_Position]:
    # Largest first; equal amounts ordered by participant id so reruns match.
    return sorted(positions, key=lambda p: (-p.remaining, p.participant_id))


def compute_settlement(balances: dict[str, Decimal], *, epsilon: Decimal = EPSILON) -> SettlementPlan:
    creditors: list[_Position] = []
    debtors: list[_Position] = []

    for pid, bal in balances.items():
        if bal > epsilon:
            creditors.append(_Position(pid, bal))
        elif bal < -epsilon:
            debtors.append(_Position(pid, -bal))

    creditors = _ranked(creditors)
    debtors = _ranked(debtors)

    total_credit = sum((c.remaining for c in creditors), Decimal(0))
    total_debit = sum((d.remaining for d in debtors), Decimal(0))

    out: list[Edge] = []
    i = 0
    j = 0
    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]
        amt = min(creditor.remaining, debtor.remaining)
        if amt > epsilon:
            out.append(Edge(from_participant=debtor.participant_id, to_participant=creditor.participant_id, amount=amt))
        creditor.remaining -= amt
        debtor.remaining -= amt
        if creditor.remaining <= epsilon:
            i += 1
        if debtor.remaining <= epsilon:
            j += 1

    warning = None
    residual = total_credit - total_debit
    if abs(residual) > epsilon:
        unmatched = {p.participant_id: p.remaining for p in creditors[i:] if p.remaining > epsilon}
        unmatched.update({p.participant_id: -p.remaining for p in debtors[j:] if p.remaining > epsilon})
        warning = ConsistencyWarning(residual, unmatched)
        logger.warning("Settlement left unmatched residual %s: %s", residual, unmatched)
    return SettlementPlan(edges=out, warning=warning)


def merge_and_consolidate(
    existing_expenses: Sequence[ExpenseRecord],
    new_expenses: Sequence[ExpenseRecord],
    existing_edges: Sequence[Edge],
    *,
    epsilon: Decimal = EPSILON,
) -> MergeResult:
    """Fold new expenses in and recompute pending edges.

    Resolved edges are carried over untouched and appended after the new
    pending edges.
    """
    all_expenses = [*existing_expenses, *new_expenses]
    resolved = [e for e in existing_edges if e.resolved]
    balances = compute_balances(all_expenses, resolved)
    plan = compute_settlement(balances, epsilon=epsilon)
    return MergeResult(all_expenses=all_expenses, edges=[*plan.edges, *resolved], warning=plan.warning)
