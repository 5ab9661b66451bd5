from __future__ import annotations

from decimal import Decimal

import pytest

from settlement_engine.errors import ValidationError
from settlement_engine.services.expenses import (
    EqualSplitPayee,
    WeightedPayee,
    build_expense,
    expense_from_mapping,
    parse_amount,
    unique_expense_name,
)


def _build(**overrides):
    data = {"name": "Dinner", "payer": "a", "payees": ["a", "b"], "total_amount": "100"}
    data.update(overrides)
    return build_expense(**data)


def test_plain_ids_become_equal_split_payees():
    e = _build(payer="  Alice@Example.com ", payees=[" Alice@example.com", "BOB@example.com"])

    assert e.payer == "alice@example.com"
    assert e.payees == (EqualSplitPayee("alice@example.com"), EqualSplitPayee("bob@example.com"))
    assert e.shares() == [("alice@example.com", Decimal(50)), ("bob@example.com", Decimal(50))]


def test_mappings_become_weighted_payees():
    e = _build(payees=[{"participant_id": "a", "amount": "30"}, {"mailId": "B", "amount": 70}])

    assert e.payees == (WeightedPayee("a", Decimal("30.00")), WeightedPayee("b", Decimal("70.00")))
    assert e.shares() == [("a", Decimal(30)), ("b", Decimal(70))]


def test_amounts_are_rounded_to_cents():
    assert parse_amount("10.005") == Decimal("10.01")
    assert parse_amount("3,5") == Decimal("3.50")
    assert _build(total_amount=12.345).total_amount == Decimal("12.35")


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"payer": ""},
        {"payer": None},
        {"total_amount": "0"},
        {"total_amount": "-5"},
        {"total_amount": "abc"},
        {"total_amount": "NaN"},
        {"total_amount": None},
        {"payees": []},
        {"payees": ["a", "A "]},
        {"payees": ["a", {"participant_id": "b", "amount": "50"}]},
        {"payees": [{"participant_id": "b"}]},
        {"payees": [42]},
    ],
)
def test_malformed_input_is_rejected(overrides):
    with pytest.raises(ValidationError):
        _build(**overrides)


def test_weighted_shares_must_add_up():
    with pytest.raises(ValidationError, match="add up"):
        _build(payees=[{"participant_id": "a", "amount": "30"}, {"participant_id": "b", "amount": "60"}])


def test_weighted_shares_tolerate_cent_rounding():
    e = _build(
        payees=[
            {"participant_id": "a", "amount": "33.33"},
            {"participant_id": "b", "amount": "33.33"},
            {"participant_id": "c", "amount": "33.33"},
        ]
    )

    assert sum(share for _, share in e.shares()) == Decimal("99.99")


def test_weighted_shares_must_be_positive():
    with pytest.raises(ValidationError, match="positive"):
        _build(payees=[{"participant_id": "a", "amount": "110"}, {"participant_id": "b", "amount": "-10"}])


def test_validation_errors_are_value_errors():
    with pytest.raises(ValueError):
        _build(total_amount="-1")


def test_unique_expense_name():
    assert unique_expense_name("Taxi", []) == "Taxi"
    assert unique_expense_name(" Taxi ", ["dinner"]) == "Taxi"
    assert unique_expense_name("Taxi", ["taxi"]) == "Taxi (2)"
    assert unique_expense_name("Taxi", ["Taxi", "taxi (2)"]) == "Taxi (3)"
    assert _build(existing_names=["dinner"]).name == "Dinner (2)"


def test_expense_from_loose_mapping():
    e = expense_from_mapping(
        {"title": "Hotel", "paidBy": "A", "amount": "200", "splits": {"a": "150", "b": "50"}},
        expense_id="h1",
    )

    assert e.id == "h1"
    assert e.name == "Hotel"
    assert e.payer == "a"
    assert e.payees == (WeightedPayee("a", Decimal(150)), WeightedPayee("b", Decimal(50)))


def test_expense_from_mapping_without_payees():
    with pytest.raises(ValidationError, match="payee"):
        expense_from_mapping({"name": "Hotel", "payer": "a", "totalAmount": "10"})


def test_weighted_shares_short_by_more_than_a_cent():
    with pytest.raises(ValidationError, match="add up"):
        _build(
            total_amount="30",
            payees=[{"participant_id": p, "amount": "9.99"} for p in ("a", "b", "c")],
        )
    with pytest.raises(ValidationError, match="add up"):
        _build(payees=[{"participant_id": "a", "amount": "49.99"}, {"participant_id": "b", "amount": "49.99"}])


def test_equal_split_hands_out_whole_cents():
    e = _build(payees=["a", "b", "c"], total_amount="100")

    assert e.shares() == [("a", Decimal("33.34")), ("b", Decimal("33.33")), ("c", Decimal("33.33"))]
    assert sum(share for _, share in e.shares()) == e.total_amount
