from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from settlement_engine.db.models import GroupStatus
from settlement_engine.errors import GroupClosedError, NotFoundError, PermissionDenied, ValidationError
from settlement_engine.services.groups import AddExpenses, DeleteExpense, EditExpense, GroupLedger
from settlement_engine.services.ledger import Edge

NOW = datetime(2026, 3, 2, tzinfo=timezone.utc)


@pytest.fixture
def dinner_ledger(make_expense) -> GroupLedger:
    ledger, _ = GroupLedger("g1", "Trip").apply_and_recompute(
        AddExpenses([make_expense("a", ["a", "b", "c"], "300", name="Dinner", expense_id="dinner")])
    )
    return ledger


def test_add_expenses_recomputes_edges(dinner_ledger):
    assert dinner_ledger.pending_edges == [Edge("b", "a", Decimal(100)), Edge("c", "a", Decimal(100))]
    assert dinner_ledger.status is GroupStatus.ACTIVE


def test_added_names_are_made_unique(dinner_ledger, make_expense):
    ledger, _ = dinner_ledger.apply_and_recompute(
        AddExpenses([make_expense("b", ["a"], "10", name="dinner"), make_expense("b", ["a"], "10", name="Dinner")])
    )

    assert [e.name for e in ledger.expenses] == ["Dinner", "dinner (2)", "Dinner (3)"]


def test_only_the_debtor_can_resolve(dinner_ledger):
    with pytest.raises(PermissionDenied):
        dinner_ledger.resolve("b", "a", requested_by="c", now=NOW)
    with pytest.raises(PermissionError):
        dinner_ledger.resolve("b", "a", requested_by="a", now=NOW)

    assert all(not e.resolved for e in dinner_ledger.edges)


def test_resolve_marks_edge_and_reports_it(dinner_ledger):
    ledger, settled = dinner_ledger.resolve("B", "a", requested_by="b", now=NOW)

    assert settled.from_participant == "b"
    assert settled.amount == Decimal(100)
    assert settled.settled_at == NOW
    assert ledger.resolved_edges == [Edge("b", "a", Decimal(100), resolved=True)]
    assert ledger.pending_edges == [Edge("c", "a", Decimal(100))]
    assert ledger.status is GroupStatus.ACTIVE


def test_resolving_twice_is_not_found(dinner_ledger):
    ledger, _ = dinner_ledger.resolve("b", "a", requested_by="b", now=NOW)

    with pytest.raises(NotFoundError):
        ledger.resolve("b", "a", requested_by="b", now=NOW)
    with pytest.raises(NotFoundError):
        ledger.resolve("b", "c", requested_by="b", now=NOW)


def test_last_resolve_completes_group(dinner_ledger, make_expense):
    ledger, _ = dinner_ledger.resolve("b", "a", requested_by="b", now=NOW)
    ledger, _ = ledger.resolve("c", "a", requested_by="c", now=NOW)

    assert ledger.status is GroupStatus.COMPLETED
    assert ledger.pending_edges == []
    with pytest.raises(GroupClosedError):
        ledger.apply_and_recompute(AddExpenses([make_expense("a", ["b"], "5")]))


def test_resolved_edge_kept_through_later_changes(dinner_ledger, make_expense):
    ledger, _ = dinner_ledger.resolve("b", "a", requested_by="b", now=NOW)
    ledger, _ = ledger.apply_and_recompute(AddExpenses([make_expense("a", ["a", "c"], "90")]))
    ledger, _ = ledger.apply_and_recompute(DeleteExpense("dinner"))

    assert ledger.resolved_edges == [Edge("b", "a", Decimal(100), resolved=True)]
    # b already paid 100 for a dinner that no longer exists, so a owes it back
    assert ledger.balances() == {"a": Decimal(-55), "b": Decimal(100), "c": Decimal(-45)}


def test_edit_keeps_identity_and_position(dinner_ledger, make_expense):
    ledger, _ = dinner_ledger.apply_and_recompute(AddExpenses([make_expense("b", ["b", "c"], "40", name="Taxi")]))
    edited = make_expense("a", ["a", "b"], "60", name="Taxi", expense_id="dinner")

    ledger, result = ledger.apply_and_recompute(EditExpense(edited))

    assert [e.id for e in ledger.expenses][0] == "dinner"
    assert ledger.expenses[0].name == "Taxi (2)"
    assert ledger.expenses[0].created_at == dinner_ledger.expenses[0].created_at
    assert result.pending == [Edge("c", "a", Decimal(20)), Edge("b", "a", Decimal(10))]


def test_edit_or_delete_unknown_expense(dinner_ledger, make_expense):
    with pytest.raises(NotFoundError):
        dinner_ledger.apply_and_recompute(DeleteExpense("nope"))
    with pytest.raises(NotFoundError):
        dinner_ledger.apply_and_recompute(EditExpense(make_expense("a", ["b"], "1", expense_id="nope")))


def test_complete_requires_no_pending_edges(dinner_ledger):
    with pytest.raises(ValidationError):
        dinner_ledger.complete()

    empty = GroupLedger("g2", "Empty")
    assert empty.complete().status is GroupStatus.COMPLETED
    with pytest.raises(GroupClosedError):
        empty.complete().complete()


def test_deleted_group_behaves_as_missing(dinner_ledger, make_expense):
    deleted = dinner_ledger.mark_deleted()

    assert deleted.status is GroupStatus.DELETED
    with pytest.raises(NotFoundError):
        deleted.apply_and_recompute(AddExpenses([make_expense("a", ["b"], "1")]))
    with pytest.raises(NotFoundError):
        deleted.resolve("b", "a", requested_by="b", now=NOW)
    with pytest.raises(GroupClosedError):
        GroupLedger("g3", "Done").complete().mark_deleted()
