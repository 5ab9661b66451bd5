from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Union

from settlement_engine.db.models import GroupStatus
from settlement_engine.errors import GroupClosedError, NotFoundError, PermissionDenied, ValidationError
from settlement_engine.services.expenses import ExpenseRecord, normalize_participant, unique_expense_name
from settlement_engine.services.ledger import EPSILON, Edge, MergeResult, compute_balances, merge_and_consolidate


@dataclass(frozen=True)
class SettledEdge:
    from_participant: str
    to_participant: str
    amount: Decimal
    settled_at: datetime


@dataclass(frozen=True)
class AddExpenses:
    expenses: Sequence[ExpenseRecord]

    def split(self, current: list[ExpenseRecord]) -> tuple[list[ExpenseRecord], list[ExpenseRecord]]:
        names = [e.name for e in current]
        added: list[ExpenseRecord] = []
        for expense in self.expenses:
            expense = replace(expense, name=unique_expense_name(expense.name, names))
            names.append(expense.name)
            added.append(expense)
        return current, added


@dataclass(frozen=True)
class EditExpense:
    """Replaces an expense in place; id and creation time are kept."""

    expense: ExpenseRecord

    def split(self, current: list[ExpenseRecord]) -> tuple[list[ExpenseRecord], list[ExpenseRecord]]:
        idx = _index_of(current, self.expense.id)
        old = current[idx]
        others = [e.name for e in current if e.id != old.id]
        edited = replace(
            self.expense,
            name=unique_expense_name(self.expense.name, others),
            created_at=old.created_at,
        )
        return [*current[:idx], edited, *current[idx + 1:]], []


@dataclass(frozen=True)
class DeleteExpense:
    expense_id: str

    def split(self, current: list[ExpenseRecord]) -> tuple[list[ExpenseRecord], list[ExpenseRecord]]:
        idx = _index_of(current, self.expense_id)
        return [*current[:idx], *current[idx + 1:]], []


ExpenseChange = Union[AddExpenses, EditExpense, DeleteExpense]


def _index_of(expenses: list[ExpenseRecord], expense_id: str) -> int:
    for i, e in enumerate(expenses):
        if e.id == expense_id:
            return i
    raise NotFoundError(f"expense {expense_id} not found")


@dataclass(frozen=True)
class GroupLedger:
    """Expenses plus the current edge set of one group.

    Instances are immutable; every transition returns a new ledger, so a
    failed transition leaves the caller's copy exactly as it was.
    """

    group_id: str
    name: str
    status: GroupStatus = GroupStatus.ACTIVE
    version: int = 0
    expenses: tuple[ExpenseRecord, ...] = ()
    edges: tuple[Edge, ...] = ()

    @property
    def pending_edges(self) -> list[Edge]:
        return [e for e in self.edges if not e.resolved]

    @property
    def resolved_edges(self) -> list[Edge]:
        return [e for e in self.edges if e.resolved]

    def expense(self, expense_id: str) -> ExpenseRecord:
        return self.expenses[_index_of(list(self.expenses), expense_id)]

    def balances(self) -> dict[str, Decimal]:
        return compute_balances(self.expenses, self.resolved_edges)

    def _require_exists(self) -> None:
        if self.status is GroupStatus.DELETED:
            raise NotFoundError(f"group {self.group_id} not found")

    def _require_active(self) -> None:
        self._require_exists()
        if self.status is GroupStatus.COMPLETED:
            raise GroupClosedError(f"group {self.group_id} is already completed")

    def apply_and_recompute(
        self, change: ExpenseChange, *, epsilon: Decimal = EPSILON
    ) -> tuple[GroupLedger, MergeResult]:
        self._require_active()
        current, added = change.split(list(self.expenses))
        result = merge_and_consolidate(current, added, self.edges, epsilon=epsilon)
        return replace(self, expenses=tuple(result.all_expenses), edges=tuple(result.edges)), result

    def resolve(
        self, from_participant: str, to_participant: str, *, requested_by: str, now: datetime
    ) -> tuple[GroupLedger, SettledEdge]:
        self._require_exists()
        debtor = normalize_participant(from_participant, field="from")
        creditor = normalize_participant(to_participant, field="to")
        if normalize_participant(requested_by, field="requester") != debtor:
            raise PermissionDenied("only the debtor can mark this edge as resolved")

        for idx, edge in enumerate(self.edges):
            if edge.resolved or edge.from_participant != debtor or edge.to_participant != creditor:
                continue
            edges = (*self.edges[:idx], edge.as_resolved(), *self.edges[idx + 1:])
            status = self.status
            if not any(not e.resolved for e in edges):
                status = GroupStatus.COMPLETED
            settled = SettledEdge(debtor, creditor, edge.amount, now)
            return replace(self, edges=edges, status=status), settled

        raise NotFoundError(f"no pending edge from {debtor} to {creditor}")

    def complete(self) -> GroupLedger:
        self._require_active()
        if self.pending_edges:
            raise ValidationError(f"group {self.group_id} still has {len(self.pending_edges)} pending edges")
        return replace(self, status=GroupStatus.COMPLETED)

    def mark_deleted(self) -> GroupLedger:
        self._require_active()
        return replace(self, status=GroupStatus.DELETED)
