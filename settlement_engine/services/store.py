from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from settlement_engine.db.models import (
    EditAction,
    EditLogEntry,
    Expense,
    ExpensePayee,
    Group,
    GroupStatus,
    HistoryEntry,
    SettlementEdge,
)
from settlement_engine.errors import NotFoundError, StaleLedgerError
from settlement_engine.services.expenses import EqualSplitPayee, ExpenseRecord, Payee, WeightedPayee
from settlement_engine.services.groups import GroupLedger, SettledEdge
from settlement_engine.services.ledger import Edge


@dataclass(frozen=True)
class HistoryDocument:
    group_id: str
    group_name: str
    settled_edges: list[SettledEdge]


def _payee_from_row(row: ExpensePayee) -> Payee:
    if row.amount is None:
        return EqualSplitPayee(row.participant_id)
    return WeightedPayee(row.participant_id, row.amount)


def _expense_from_row(row: Expense) -> ExpenseRecord:
    return ExpenseRecord(
        id=row.id,
        name=row.name,
        payer=row.payer,
        payees=tuple(_payee_from_row(p) for p in row.payees),
        total_amount=row.total_amount,
        created_at=row.created_at,
    )


async def find_group_id_by_name(session: AsyncSession, *, name: str) -> Optional[str]:
    return await session.scalar(
        select(Group.id).where(
            sa.func.lower(Group.name) == name.strip().lower(),
            Group.status != GroupStatus.DELETED,
        )
    )


async def insert_group(session: AsyncSession, *, group_id: str, name: str) -> GroupLedger:
    session.add(Group(id=group_id, name=name.strip(), status=GroupStatus.ACTIVE, version=0))
    await session.flush()
    return GroupLedger(group_id=group_id, name=name.strip())


async def group_exists(session: AsyncSession, *, group_id: str) -> bool:
    return await session.scalar(select(Group.id).where(Group.id == group_id)) is not None


async def load_ledger(session: AsyncSession, *, group_id: str) -> GroupLedger:
    group = await session.scalar(
        select(Group).where(Group.id == group_id).execution_options(populate_existing=True)
    )
    if group is None:
        raise NotFoundError(f"group {group_id} not found")

    expense_rows = await session.scalars(
        select(Expense)
        .where(Expense.group_id == group_id)
        .options(selectinload(Expense.payees))
        .order_by(Expense.position.asc())
        .execution_options(populate_existing=True)
    )
    edge_rows = await session.scalars(
        select(SettlementEdge)
        .where(SettlementEdge.group_id == group_id)
        .order_by(SettlementEdge.position.asc())
        .execution_options(populate_existing=True)
    )
    return GroupLedger(
        group_id=group.id,
        name=group.name,
        status=group.status,
        version=group.version,
        expenses=tuple(_expense_from_row(r) for r in expense_rows),
        edges=tuple(
            Edge(from_participant=r.from_participant, to_participant=r.to_participant, amount=r.amount, resolved=r.resolved)
            for r in edge_rows
        ),
    )


async def _replace_expenses(session: AsyncSession, *, group_id: str, expenses: tuple[ExpenseRecord, ...]) -> None:
    await session.execute(
        sa.delete(ExpensePayee)
        .where(ExpensePayee.expense_id.in_(select(Expense.id).where(Expense.group_id == group_id)))
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        sa.delete(Expense).where(Expense.group_id == group_id).execution_options(synchronize_session=False)
    )
    if not expenses:
        return
    await session.execute(
        sa.insert(Expense),
        [
            {
                "id": e.id,
                "group_id": group_id,
                "position": pos,
                "name": e.name,
                "payer": e.payer,
                "total_amount": e.total_amount,
                "created_at": e.created_at,
            }
            for pos, e in enumerate(expenses)
        ],
    )
    await session.execute(
        sa.insert(ExpensePayee),
        [
            {"expense_id": e.id, "position": pos, "participant_id": p.participant_id, "amount": p.amount}
            for e in expenses
            for pos, p in enumerate(e.payees)
        ],
    )


async def _replace_edges(session: AsyncSession, *, group_id: str, edges: tuple[Edge, ...]) -> None:
    await session.execute(
        sa.delete(SettlementEdge)
        .where(SettlementEdge.group_id == group_id)
        .execution_options(synchronize_session=False)
    )
    if not edges:
        return
    await session.execute(
        sa.insert(SettlementEdge),
        [
            {
                "group_id": group_id,
                "position": pos,
                "from_participant": e.from_participant,
                "to_participant": e.to_participant,
                "amount": e.amount,
                "resolved": e.resolved,
            }
            for pos, e in enumerate(edges)
        ],
    )


async def save_ledger(
    session: AsyncSession,
    *,
    previous: GroupLedger,
    ledger: GroupLedger,
    now: datetime,
    purge_after_days: int,
) -> GroupLedger:
    """Write ``ledger`` over ``previous`` if nobody else wrote in between.

    Raises StaleLedgerError when the stored version moved past
    ``previous.version``. Callers run this inside their transaction, so a
    rejected write leaves nothing behind.
    """
    expires_at = None
    if ledger.status is not GroupStatus.ACTIVE:
        expires_at = now + timedelta(days=purge_after_days)

    values = {"version": previous.version + 1, "status": ledger.status, "updated_at": now}
    if ledger.status is not previous.status:
        values["expires_at"] = expires_at

    res = await session.execute(
        sa.update(Group)
        .where(Group.id == ledger.group_id, Group.version == previous.version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise StaleLedgerError(ledger.group_id, previous.version)

    if ledger.expenses != previous.expenses:
        await _replace_expenses(session, group_id=ledger.group_id, expenses=ledger.expenses)
    if ledger.edges != previous.edges:
        await _replace_edges(session, group_id=ledger.group_id, edges=ledger.edges)
    if ledger.status is not previous.status and expires_at is not None:
        await session.execute(
            sa.update(HistoryEntry)
            .where(HistoryEntry.group_id == ledger.group_id)
            .values(expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
    await session.flush()
    return replace(ledger, version=previous.version + 1)


async def append_history(session: AsyncSession, *, ledger: GroupLedger, settled: SettledEdge) -> None:
    session.add(
        HistoryEntry(
            group_id=ledger.group_id,
            group_name=ledger.name,
            from_participant=settled.from_participant,
            to_participant=settled.to_participant,
            amount=settled.amount,
            settled_at=settled.settled_at,
        )
    )
    await session.flush()


async def load_history(session: AsyncSession, *, group_id: str, group_name: str) -> HistoryDocument:
    rows = await session.scalars(
        select(HistoryEntry)
        .where(HistoryEntry.group_id == group_id)
        .order_by(HistoryEntry.settled_at.asc(), HistoryEntry.id.asc())
    )
    return HistoryDocument(
        group_id=group_id,
        group_name=group_name,
        settled_edges=[
            SettledEdge(r.from_participant, r.to_participant, r.amount, r.settled_at) for r in rows
        ],
    )


async def add_edit_log(
    session: AsyncSession,
    *,
    ledger: GroupLedger,
    action: EditAction,
    action_by: str,
    now: datetime,
    expense_id: Optional[str] = None,
    expense_name: Optional[str] = None,
    old_amount: Optional[Decimal] = None,
    new_amount: Optional[Decimal] = None,
    changes: Optional[str] = None,
) -> None:
    session.add(
        EditLogEntry(
            group_id=ledger.group_id,
            group_name=ledger.name,
            action=action,
            action_by=action_by,
            expense_id=expense_id,
            expense_name=expense_name,
            old_amount=old_amount,
            new_amount=new_amount,
            changes=changes,
            created_at=now,
        )
    )
    await session.flush()


async def list_edit_log(session: AsyncSession, *, group_id: str, limit: int = 50) -> list[EditLogEntry]:
    res = await session.scalars(
        select(EditLogEntry)
        .where(EditLogEntry.group_id == group_id)
        .order_by(EditLogEntry.created_at.desc(), EditLogEntry.id.desc())
        .limit(limit)
    )
    return list(res)


async def list_group_ids_with_debtor(session: AsyncSession, *, participant_id: str) -> list[str]:
    res = await session.scalars(
        select(Group.id)
        .where(
            Group.status != GroupStatus.DELETED,
            Group.id.in_(select(SettlementEdge.group_id).where(SettlementEdge.from_participant == participant_id)),
        )
        .order_by(Group.updated_at.desc(), Group.id.asc())
    )
    return list(res)
