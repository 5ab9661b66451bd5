from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from settlement_engine.services.ledger import Edge, compute_balances, compute_settlement, merge_and_consolidate

D = Decimal


def test_scenario_equal_split_between_three(make_expense):
    dinner = make_expense("a", ["a", "b", "c"], "300")

    result = merge_and_consolidate([], [dinner], [])

    assert result.all_expenses == [dinner]
    assert result.pending == [Edge("b", "a", D("100")), Edge("c", "a", D("100"))]
    assert result.resolved == []
    assert result.warning is None


def test_scenario_resolved_edge_survives_new_expense(make_expense):
    dinner = make_expense("a", ["a", "b", "c"], "300")
    edges = [Edge("b", "a", D("100"), resolved=True), Edge("c", "a", D("100"))]
    taxi = make_expense("a", ["a", "c"], "90")

    result = merge_and_consolidate([dinner], [taxi], edges)

    assert result.all_expenses == [dinner, taxi]
    assert result.pending == [Edge("c", "a", D("145"))]
    assert result.resolved == [Edge("b", "a", D("100"), resolved=True)]
    # pending first, resolved history after
    assert result.edges[-1] is edges[0]


def test_scenario_cycle_cancels_out(make_expense):
    expenses = [
        make_expense("b", ["a"], "50"),
        make_expense("c", ["b"], "50"),
        make_expense("a", ["c"], "50"),
    ]

    balances = compute_balances(expenses)

    assert set(balances.values()) == {D("0")}
    assert compute_settlement(balances).edges == []


def test_balances_are_conserved(make_expense):
    expenses = [
        make_expense("a", ["a", "b", "c"], "100"),
        make_expense("b", ["b", "c"], "50"),
        make_expense("c", [{"participant_id": "a", "amount": "30"}, {"participant_id": "c", "amount": "50"}], "80"),
        make_expense("d", ["a", "b", "c", "d"], "19.99"),
    ]

    balances = compute_balances(expenses)

    assert sum(balances.values()) == 0
    assert all(b == b.quantize(D("0.01")) for b in balances.values())


def test_odd_cents_do_not_accumulate(make_expense, caplog):
    expenses = [
        make_expense("x", ["a", "b", "c"], "1"),
        make_expense("y", ["d", "e", "f"], "1"),
    ]

    balances = compute_balances(expenses)
    plan = compute_settlement(balances)

    assert sum(balances.values()) == 0
    assert balances["a"] == D("-0.34")
    assert balances["b"] == balances["c"] == D("-0.33")
    assert plan.warning is None
    assert "residual" not in caplog.text


def test_resolved_edges_shift_balances(make_expense):
    dinner = make_expense("a", ["a", "b"], "100")

    balances = compute_balances([dinner], [Edge("b", "a", D("20"), resolved=True)])

    assert balances == {"a": D("30"), "b": D("-30")}


def test_matcher_amounts_match_balances():
    balances = {"a": D("50"), "b": D("-20"), "c": D("-30"), "d": D("10"), "e": D("-10")}

    plan = compute_settlement(balances)

    touched: dict[str, Decimal] = defaultdict(Decimal)
    for e in plan.edges:
        touched[e.from_participant] += e.amount
        touched[e.to_participant] += e.amount
    assert touched == {pid: abs(b) for pid, b in balances.items()}
    assert len(plan.edges) <= len(balances) - 1
    assert plan.edges == [Edge("c", "a", D("30")), Edge("b", "a", D("20")), Edge("e", "d", D("10"))]
    assert all(not e.resolved for e in plan.edges)


def test_matcher_edge_count_bound_on_larger_group():
    balances = {
        "p1": D("120.50"),
        "p2": D("-40.25"),
        "p3": D("-80.25"),
        "p4": D("35"),
        "p5": D("-20"),
        "p6": D("-15"),
    }

    plan = compute_settlement(balances)

    nonzero = [b for b in balances.values() if b != 0]
    assert len(plan.edges) <= len(nonzero) - 1
    assert sum(e.amount for e in plan.edges) == D("155.50")
    assert plan.warning is None


def test_matcher_ties_break_by_participant_id():
    forward = {"a": D("100"), "b": D("-50"), "c": D("-50")}
    backward = {"c": D("-50"), "b": D("-50"), "a": D("100")}

    assert compute_settlement(forward).edges == [Edge("b", "a", D("50")), Edge("c", "a", D("50"))]
    assert compute_settlement(backward).edges == compute_settlement(forward).edges

    creditors_tied = {"z": D("-100"), "y": D("50"), "x": D("50")}
    assert compute_settlement(creditors_tied).edges == [Edge("z", "x", D("50")), Edge("z", "y", D("50"))]


def test_cent_leftovers_are_never_emitted(make_expense):
    lunch = make_expense("a", ["a", "b", "c"], "100")

    balances = compute_balances([lunch])
    plan = compute_settlement(balances)

    assert balances == {"a": D("66.66"), "b": D("-33.33"), "c": D("-33.33")}
    assert plan.edges == [Edge("b", "a", D("33.33")), Edge("c", "a", D("33.33"))]
    assert plan.warning is None


def test_balances_within_epsilon_are_settled():
    plan = compute_settlement({"a": D("0.01"), "b": D("-0.01"), "c": D("0")})

    assert plan.edges == []
    assert plan.warning is None


def test_unbalanced_input_reports_residual(caplog):
    plan = compute_settlement({"a": D("100"), "b": D("-40")})

    assert plan.edges == [Edge("b", "a", D("40"))]
    assert plan.warning is not None
    assert plan.warning.residual == D("60")
    assert plan.warning.unmatched == {"a": D("60")}
    assert "residual" in caplog.text


def test_merge_is_idempotent(make_expense):
    expenses = [
        make_expense("a", ["a", "b", "c", "d"], "120"),
        make_expense("b", ["c", "d"], "60"),
        make_expense("c", ["a", "b"], "60"),
    ]
    resolved = [Edge("d", "a", D("10"), resolved=True)]

    first = merge_and_consolidate(expenses, [], resolved)
    second = merge_and_consolidate(expenses, [], resolved)

    assert first == second
    assert first.pending == second.pending


def test_merge_never_touches_resolved_edges(make_expense):
    base = [make_expense("a", ["a", "b", "c"], "300")]
    resolved = [Edge("b", "a", D("100"), resolved=True), Edge("c", "a", D("40"), resolved=True)]
    edges = [Edge("c", "a", D("60")), *resolved]

    result = merge_and_consolidate(
        base,
        [
            make_expense("c", ["a", "b", "c"], "900"),
            make_expense("b", ["a"], "12.34"),
            make_expense("a", ["b", "c"], "1"),
        ],
        edges,
    )

    assert result.resolved == resolved
    assert all(any(r is e for e in result.edges) for r in resolved)
