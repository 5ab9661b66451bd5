"""Argument parsing for the expense commands.

Grammar, after the command name::

    /expense <amount> <name words...> @p1 @p2 ...      equal split with the sender
    /expense <amount> <name words...> @p1=40 me=60     weighted shares
    /edit <id-prefix> <amount> <name words...> ...     same tail as /expense

``me`` stands for the sender, or for the original payer in /edit. Mentions are
lower-cased.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from settlement_engine.errors import NotFoundError, ValidationError

SELF_TOKEN = "me"


@dataclass(frozen=True)
class ExpenseDraft:
    name: str
    total_amount: str
    payees: list[Any]

    def as_payload(self, *, payer: str) -> dict[str, Any]:
        return {"name": self.name, "payer": payer, "totalAmount": self.total_amount, "payees": self.payees}


def _participant(token: str, sender: str) -> str:
    if token.lower() == SELF_TOKEN:
        return sender
    if len(token) < 2:
        raise ValidationError(f"bad mention {token!r}")
    return token.lower()


def _is_payee_token(token: str) -> bool:
    head = token.split("=", 1)[0]
    return head.startswith("@") or head.lower() == SELF_TOKEN


def parse_expense_args(args: str, *, sender: str) -> ExpenseDraft:
    tokens = (args or "").split()
    if not tokens:
        raise ValidationError("usage: /expense <amount> <name> @someone ...")
    amount, rest = tokens[0], tokens[1:]

    name_parts: list[str] = []
    payee_tokens: list[str] = []
    for token in rest:
        (payee_tokens if _is_payee_token(token) else name_parts).append(token)

    if not name_parts:
        raise ValidationError("expense name is missing")
    if not payee_tokens:
        raise ValidationError("mention at least one participant")

    weighted = [t for t in payee_tokens if "=" in t]
    if weighted and len(weighted) != len(payee_tokens):
        raise ValidationError("give a share to every participant or to none")

    payees: list[Any]
    if weighted:
        payees = []
        for token in payee_tokens:
            who, share = token.split("=", 1)
            payees.append({"participant_id": _participant(who, sender), "amount": share})
    else:
        payees = [sender]
        for token in payee_tokens:
            pid = _participant(token, sender)
            if pid not in payees:
                payees.append(pid)

    return ExpenseDraft(name=" ".join(name_parts), total_amount=amount, payees=payees)


def split_id_prefix(args: str) -> tuple[str, str]:
    head, _, tail = (args or "").strip().partition(" ")
    if not head:
        raise ValidationError("expense id is missing")
    return head.lower(), tail.strip()


def match_expense_id(prefix: str, expense_ids: Iterable[str]) -> str:
    matches = [eid for eid in expense_ids if eid.startswith(prefix)]
    if not matches:
        raise NotFoundError(f"no expense with id {prefix}")
    if len(matches) > 1:
        raise ValidationError(f"id {prefix} is ambiguous, type more characters")
    return matches[0]


def parse_mention(args: str, *, sender: str) -> str:
    token = (args or "").strip().split(" ", 1)[0]
    if not token:
        raise ValidationError("mention the participant")
    return _participant(token, sender)
