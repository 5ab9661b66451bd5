from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, ClassVar, Optional, Union

from settlement_engine.errors import ValidationError

CENT = Decimal("0.01")


@dataclass(frozen=True)
class EqualSplitPayee:
    participant_id: str
    amount: ClassVar[Optional[Decimal]] = None

    def share(self, total_amount: Decimal, payee_count: int, position: int) -> Decimal:
        # Whole cents; the first `remainder` payees carry one extra cent.
        base, remainder = divmod(int(total_amount / CENT), payee_count)
        return (base + (1 if position < remainder else 0)) * CENT


@dataclass(frozen=True)
class WeightedPayee:
    participant_id: str
    amount: Decimal

    def share(self, total_amount: Decimal, payee_count: int, position: int) -> Decimal:
        return self.amount


Payee = Union[EqualSplitPayee, WeightedPayee]


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    name: str
    payer: str
    payees: tuple[Payee, ...]
    total_amount: Decimal
    created_at: datetime

    def shares(self) -> list[tuple[str, Decimal]]:
        n = len(self.payees)
        return [(p.participant_id, p.share(self.total_amount, n, i)) for i, p in enumerate(self.payees)]


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, *, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number, got {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return quantize_amount(amount)


def normalize_participant(value: Any, *, field: str = "participant") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip().lower()


def normalize_payee(raw: Any) -> Payee:
    if isinstance(raw, EqualSplitPayee):
        return EqualSplitPayee(normalize_participant(raw.participant_id, field="payee"))
    if isinstance(raw, WeightedPayee):
        return WeightedPayee(
            normalize_participant(raw.participant_id, field="payee"),
            parse_amount(raw.amount, field=f"share of {raw.participant_id}"),
        )
    if isinstance(raw, str):
        return EqualSplitPayee(normalize_participant(raw, field="payee"))
    if isinstance(raw, Mapping):
        pid = raw.get("participant_id", raw.get("mailId", raw.get("id")))
        if "amount" not in raw:
            raise ValidationError(f"weighted payee {pid!r} has no amount")
        return WeightedPayee(
            normalize_participant(pid, field="payee"),
            parse_amount(raw["amount"], field=f"share of {pid}"),
        )
    raise ValidationError(f"unrecognized payee {raw!r}")


def normalize_payees(raw_payees: Iterable[Any]) -> tuple[Payee, ...]:
    payees = tuple(normalize_payee(p) for p in raw_payees)
    if not payees:
        raise ValidationError("at least one payee is required")

    kinds = {type(p) for p in payees}
    if len(kinds) > 1:
        raise ValidationError("payees mix equal-split ids and weighted shares")

    seen: set[str] = set()
    for p in payees:
        if p.participant_id in seen:
            raise ValidationError(f"payee {p.participant_id} listed twice")
        seen.add(p.participant_id)
    return payees


def unique_expense_name(name: str, existing_names: Iterable[str]) -> str:
    taken = {n.strip().lower() for n in existing_names}
    normalized = name.strip().lower()
    if normalized not in taken:
        return name.strip()
    counter = 2
    while f"{normalized} ({counter})" in taken:
        counter += 1
    return f"{name.strip()} ({counter})"


def build_expense(
    *,
    name: Any,
    payer: Any,
    payees: Iterable[Any],
    total_amount: Any,
    epsilon: Decimal = CENT,
    expense_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    existing_names: Iterable[str] = (),
) -> ExpenseRecord:
    """Validate raw input and return a normalized expense.

    Weighted shares may differ from the total by at most ``epsilon``.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("expense name is required")
    payer_id = normalize_participant(payer, field="payer")
    total = parse_amount(total_amount, field="totalAmount")
    if total <= 0:
        raise ValidationError("totalAmount must be positive")

    normalized = normalize_payees(payees)
    if isinstance(normalized[0], WeightedPayee):
        for p in normalized:
            if p.amount <= 0:
                raise ValidationError(f"share of {p.participant_id} must be positive")
        shares_total = sum((p.amount for p in normalized), Decimal(0))
        if abs(shares_total - total) > epsilon:
            raise ValidationError(f"shares add up to {shares_total}, expected {total}")

    return ExpenseRecord(
        id=expense_id or uuid.uuid4().hex,
        name=unique_expense_name(name, existing_names),
        payer=payer_id,
        payees=normalized,
        total_amount=total,
        created_at=created_at or datetime.now(timezone.utc),
    )


def expense_from_mapping(data: Mapping[str, Any], **kwargs: Any) -> ExpenseRecord:
    """Accept the loose checkout payload: ``splits`` maps ids to weighted shares."""
    payees: Any = data.get("payees")
    if payees is None and data.get("splits") is not None:
        payees = [{"participant_id": pid, "amount": amt} for pid, amt in dict(data["splits"]).items()]
    return build_expense(
        name=data.get("name", data.get("title")),
        payer=data.get("payer", data.get("paidBy")),
        payees=payees or [],
        total_amount=data.get("totalAmount", data.get("amount")),
        **kwargs,
    )
