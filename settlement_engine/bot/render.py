from __future__ import annotations

from collections.abc import Sequence

from settlement_engine.bot.text import esc, format_amount, participant_label
from settlement_engine.db.models import EditLogEntry, GroupStatus
from settlement_engine.errors import ConsistencyWarning
from settlement_engine.services.expenses import ExpenseRecord
from settlement_engine.services.groups import GroupLedger
from settlement_engine.services.ledger import Edge
from settlement_engine.services.store import HistoryDocument

MAX_MESSAGE = 4096
SHORT_ID = 6

STATUS_LABELS = {
    GroupStatus.ACTIVE: "active",
    GroupStatus.COMPLETED: "completed ✅",
    GroupStatus.DELETED: "deleted",
}


def _pre(lines: list[str]) -> str:
    return f"<pre>{esc(chr(10).join(lines))}</pre>"


def _edge_lines(edges: Sequence[Edge], *, limit: int = 30) -> list[str]:
    return [
        f"{participant_label(e.from_participant)} → {participant_label(e.to_participant)}: {format_amount(e.amount)}"
        for e in edges[:limit]
    ]


def render_expense_line(e: ExpenseRecord) -> str:
    payees = ", ".join(
        participant_label(p.participant_id) + (f"={format_amount(p.amount)}" if p.amount is not None else "")
        for p in e.payees
    )
    return f"{e.id[:SHORT_ID]}  {e.name}: {format_amount(e.total_amount)} by {participant_label(e.payer)} [{payees}]"


def render_pending(
    *,
    title: str,
    pending: Sequence[Edge],
    warning: ConsistencyWarning | None = None,
) -> str:
    lines = _edge_lines(pending) or ["Everyone is settled up."]
    text = f"<b>{esc(title)}</b>\n{_pre(lines)}"
    if warning is not None:
        text += f"\n⚠️ <i>Unmatched residual {format_amount(warning.residual)}; check the expenses.</i>"
    return text[:MAX_MESSAGE]


def render_ledger(ledger: GroupLedger) -> str:
    balances = sorted(ledger.balances().items(), key=lambda kv: (-kv[1], kv[0]))
    bal_lines = [
        f"{participant_label(pid)}: {format_amount(bal, signed=True)}" for pid, bal in balances[:30] if bal != 0
    ] or ["No open balances."]
    settle_lines = _edge_lines(ledger.pending_edges) or ["Nothing to pay."]

    text = (
        f"<b>{esc(ledger.name)}</b> ({STATUS_LABELS[ledger.status]})\n\n"
        f"<b>Balances:</b>\n{_pre(bal_lines)}\n"
        f"<b>Payments to make:</b>\n{_pre(settle_lines)}"
    )
    return text[:MAX_MESSAGE]


def render_expenses(ledger: GroupLedger) -> str:
    lines = [render_expense_line(e) for e in ledger.expenses[-30:]] or ["No expenses yet."]
    return f"<b>Expenses ({len(ledger.expenses)})</b>\n{_pre(lines)}"[:MAX_MESSAGE]


def render_history(doc: HistoryDocument) -> str:
    lines = [
        f"{s.settled_at:%Y-%m-%d} {participant_label(s.from_participant)} → "
        f"{participant_label(s.to_participant)}: {format_amount(s.amount)}"
        for s in doc.settled_edges[-30:]
    ] or ["No payments yet."]
    return f"<b>Settled in {esc(doc.group_name)}</b>\n{_pre(lines)}"[:MAX_MESSAGE]


def render_edit_log(entries: Sequence[EditLogEntry]) -> str:
    lines = []
    for entry in entries:
        line = f"{entry.created_at:%m-%d %H:%M} {participant_label(entry.action_by)} {entry.action.value}"
        if entry.expense_name:
            line += f" {entry.expense_name}"
        if entry.changes:
            line += f" ({entry.changes})"
        lines.append(line)
    return f"<b>Recent changes</b>\n{_pre(lines or ['Nothing yet.'])}"[:MAX_MESSAGE]
