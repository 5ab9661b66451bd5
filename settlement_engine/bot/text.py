from __future__ import annotations

import html
from decimal import Decimal
from typing import Protocol


class _TgUser(Protocol):
    id: int
    username: str | None


def participant_id(user: _TgUser) -> str:
    # Usernames are the ids people type in mentions; fall back to the numeric id.
    if user.username:
        return f"@{user.username.lower()}"
    return str(user.id)


def participant_label(pid: str) -> str:
    return pid if pid.startswith("@") else f"id{pid}"


def format_amount(amount: Decimal, *, signed: bool = False) -> str:
    sign = "+" if signed and amount > 0 else ""
    return f"{sign}{amount:,.2f}"


def esc(s: str) -> str:
    return html.escape(s, quote=False)
