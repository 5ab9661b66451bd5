from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, TypeVar, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.config import settings
from settlement_engine.db.models import EditAction, EditLogEntry, GroupStatus
from settlement_engine.errors import ConsistencyWarning, NotFoundError, StaleLedgerError, ValidationError
from settlement_engine.services import store
from settlement_engine.services.expenses import ExpenseRecord, build_expense, expense_from_mapping
from settlement_engine.services.groups import (
    AddExpenses,
    DeleteExpense,
    EditExpense,
    ExpenseChange,
    GroupLedger,
    SettledEdge,
)
from settlement_engine.services.ledger import Edge, MergeResult
from settlement_engine.services.notifications import (
    LogNotifier,
    NotificationRequest,
    Notifier,
    default_display_name,
    dispatch,
    new_debt_requests,
    payment_received_request,
)
from settlement_engine.services.store import HistoryDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")
ExpenseInput = Union[ExpenseRecord, Mapping[str, Any]]


@dataclass(frozen=True)
class ExpenseOutcome:
    group_id: str
    group_name: str
    all_expenses: list[ExpenseRecord]
    pending_edges: list[Edge]
    warning: Optional[ConsistencyWarning] = None
    is_new_group: bool = False


@dataclass(frozen=True)
class ResolveOutcome:
    group_id: str
    settled: SettledEdge
    pending_edges: list[Edge]
    resolved_edges: list[Edge]
    group_status: GroupStatus


@dataclass(frozen=True)
class ParticipantDebts:
    group_id: str
    group_name: str
    group_status: GroupStatus
    pending_edges: list[Edge]
    resolved_edges: list[Edge]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe_edit(old: ExpenseRecord, new: ExpenseRecord) -> str:
    changes = []
    if old.name != new.name:
        changes.append(f"name: {old.name} -> {new.name}")
    if old.total_amount != new.total_amount:
        changes.append(f"amount: {old.total_amount} -> {new.total_amount}")
    if old.payer != new.payer:
        changes.append(f"payer: {old.payer} -> {new.payer}")
    if old.payees != new.payees:
        changes.append("split changed")
    return "; ".join(changes) or "no changes"


class SettlementService:
    """Group operations over the settlement ledger.

    Every operation is one read-modify-write transaction. Writers on the same
    group are serialized by a per-group lock in this process, and the version
    check in the store rejects writes that raced with another process; those
    are retried from a fresh read.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        notifier: Optional[Notifier] = None,
        epsilon: Decimal = settings.settle_epsilon,
        purge_after_days: int = settings.purge_after_days,
        write_retries: int = settings.write_retries,
        clock: Callable[[], datetime] = _utcnow,
        display_name: Callable[[str], str] = default_display_name,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._notifier = notifier or LogNotifier()
        self._epsilon = epsilon
        self._purge_after_days = purge_after_days
        self._write_retries = write_retries
        self._clock = clock
        self._display_name = display_name
        # Entries vanish once no operation holds the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _name_lock(self, name: str) -> asyncio.Lock:
        return self._lock(f"name:{name.strip().lower()}")

    async def _in_session(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._sessionmaker() as session:
            try:
                result = await work(session)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                raise

    async def _transact(
        self,
        group_id: str,
        step: Callable[[AsyncSession, GroupLedger, datetime], Awaitable[T]],
    ) -> T:
        async with self._lock(group_id):
            attempt = 0
            while True:
                async def work(session: AsyncSession) -> T:
                    ledger = await store.load_ledger(session, group_id=group_id)
                    return await step(session, ledger, self._clock())

                try:
                    return await self._in_session(work)
                except StaleLedgerError:
                    attempt += 1
                    if attempt > self._write_retries:
                        raise
                    logger.info("Ledger %s changed concurrently, retrying (%d/%d)", group_id, attempt, self._write_retries)

    async def _save(self, session: AsyncSession, previous: GroupLedger, ledger: GroupLedger, now: datetime) -> GroupLedger:
        saved = await store.save_ledger(
            session, previous=previous, ledger=ledger, now=now, purge_after_days=self._purge_after_days
        )
        if saved.status is not previous.status:
            logger.info("Group %s is now %s", saved.group_id, saved.status.value)
        return saved

    async def _notify(self, requests: Sequence[NotificationRequest]) -> None:
        await dispatch(self._notifier, requests)

    def _build(self, raw: ExpenseInput, *, expense_id: Optional[str] = None) -> ExpenseRecord:
        if isinstance(raw, ExpenseRecord):
            return build_expense(
                name=raw.name,
                payer=raw.payer,
                payees=raw.payees,
                total_amount=raw.total_amount,
                epsilon=self._epsilon,
                expense_id=expense_id or raw.id,
                created_at=raw.created_at,
            )
        return expense_from_mapping(raw, epsilon=self._epsilon, expense_id=expense_id, created_at=self._clock())

    # groups

    async def create_group(self, name: str, *, group_id: Optional[str] = None) -> GroupLedger:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("group name is required")
        async with self._name_lock(name):
            return await self._insert_named_group(name, group_id or str(uuid.uuid4()))

    async def _insert_named_group(self, name: str, gid: str) -> GroupLedger:
        # Caller holds the name lock.
        async def work(session: AsyncSession) -> GroupLedger:
            if await store.find_group_id_by_name(session, name=name) is not None:
                raise ValidationError(f"group name {name.strip()!r} is taken")
            if await store.group_exists(session, group_id=gid):
                raise ValidationError(f"group {gid} already exists")
            return await store.insert_group(session, group_id=gid, name=name)

        async with self._lock(gid):
            try:
                return await self._in_session(work)
            except IntegrityError:
                raise ValidationError(f"group {gid} already exists") from None

    async def ensure_group(self, group_id: str, name: str) -> GroupLedger:
        """Load the group, creating it under ``name`` when absent."""

        async def work(session: AsyncSession) -> GroupLedger:
            if await store.group_exists(session, group_id=group_id):
                return await store.load_ledger(session, group_id=group_id)
            return await store.insert_group(session, group_id=group_id, name=name)

        async with self._lock(group_id):
            return await self._in_session(work)

    async def get_ledger(self, group_id: str) -> GroupLedger:
        async def work(session: AsyncSession) -> GroupLedger:
            return await store.load_ledger(session, group_id=group_id)

        return await self._in_session(work)

    async def complete_group(self, group_id: str) -> GroupLedger:
        async def step(session: AsyncSession, ledger: GroupLedger, now: datetime) -> GroupLedger:
            return await self._save(session, ledger, ledger.complete(), now)

        return await self._transact(group_id, step)

    async def delete_group(self, group_id: str, *, actor: str) -> GroupLedger:
        async def step(session: AsyncSession, ledger: GroupLedger, now: datetime) -> GroupLedger:
            saved = await self._save(session, ledger, ledger.mark_deleted(), now)
            await store.add_edit_log(session, ledger=saved, action=EditAction.DELETE_GROUP, action_by=actor, now=now)
            return saved

        return await self._transact(group_id, step)

    # expenses

    async def _apply(
        self,
        group_id: str,
        change: ExpenseChange,
        *,
        actor: str,
        log: Callable[[AsyncSession, GroupLedger, GroupLedger, datetime], Awaitable[None]],
    ) -> ExpenseOutcome:
        async def step(session: AsyncSession, ledger: GroupLedger, now: datetime) -> tuple[GroupLedger, MergeResult]:
            updated, result = ledger.apply_and_recompute(change, epsilon=self._epsilon)
            if result.warning is not None:
                logger.warning("Group %s: %s", group_id, result.warning)
            saved = await self._save(session, ledger, updated, now)
            await log(session, ledger, saved, now)
            return saved, result

        saved, result = await self._transact(group_id, step)
        await self._notify(
            new_debt_requests(
                result.pending,
                actor=actor,
                group_id=saved.group_id,
                group_name=saved.name,
                display_name=self._display_name,
            )
        )
        return ExpenseOutcome(
            group_id=saved.group_id,
            group_name=saved.name,
            all_expenses=list(saved.expenses),
            pending_edges=result.pending,
            warning=result.warning,
        )

    async def add_expenses(self, group_id: str, expenses: Sequence[ExpenseInput], *, actor: str) -> ExpenseOutcome:
        if not expenses:
            raise ValidationError("at least one expense is required")
        records = [self._build(e) for e in expenses]

        async def log(session: AsyncSession, before: GroupLedger, after: GroupLedger, now: datetime) -> None:
            for e in after.expenses[len(before.expenses):]:
                await store.add_edit_log(
                    session,
                    ledger=after,
                    action=EditAction.ADD_EXPENSE,
                    action_by=actor,
                    now=now,
                    expense_id=e.id,
                    expense_name=e.name,
                    new_amount=e.total_amount,
                )

        return await self._apply(group_id, AddExpenses(records), actor=actor, log=log)

    async def add_expense(self, group_id: str, expense: ExpenseInput, *, actor: str) -> ExpenseOutcome:
        return await self.add_expenses(group_id, [expense], actor=actor)

    async def edit_expense(self, group_id: str, expense_id: str, expense: ExpenseInput, *, actor: str) -> ExpenseOutcome:
        record = self._build(expense, expense_id=expense_id)

        async def log(session: AsyncSession, before: GroupLedger, after: GroupLedger, now: datetime) -> None:
            old = before.expense(expense_id)
            new = after.expense(expense_id)
            await store.add_edit_log(
                session,
                ledger=after,
                action=EditAction.EDIT_EXPENSE,
                action_by=actor,
                now=now,
                expense_id=expense_id,
                expense_name=new.name,
                old_amount=old.total_amount,
                new_amount=new.total_amount,
                changes=_describe_edit(old, new),
            )

        return await self._apply(group_id, EditExpense(record), actor=actor, log=log)

    async def delete_expense(self, group_id: str, expense_id: str, *, actor: str) -> ExpenseOutcome:
        async def log(session: AsyncSession, before: GroupLedger, after: GroupLedger, now: datetime) -> None:
            old = before.expense(expense_id)
            await store.add_edit_log(
                session,
                ledger=after,
                action=EditAction.DELETE_EXPENSE,
                action_by=actor,
                now=now,
                expense_id=expense_id,
                expense_name=old.name,
                old_amount=old.total_amount,
            )

        return await self._apply(group_id, DeleteExpense(expense_id), actor=actor, log=log)

    async def checkout(
        self,
        expenses: Sequence[ExpenseInput],
        *,
        actor: str,
        group_id: Optional[str] = None,
        group_name: Optional[str] = None,
    ) -> ExpenseOutcome:
        """Add expenses to a group given by id, or by name, creating it if needed."""
        if not expenses:
            raise ValidationError("at least one expense is required")
        records = [self._build(e) for e in expenses]

        is_new = False
        if group_id is None:
            if not group_name or not group_name.strip():
                raise ValidationError("group name is required for a new group")

            async def lookup(session: AsyncSession) -> Optional[str]:
                return await store.find_group_id_by_name(session, name=group_name)

            async with self._name_lock(group_name):
                group_id = await self._in_session(lookup)
                if group_id is None:
                    group_id = (await self._insert_named_group(group_name, str(uuid.uuid4()))).group_id
                    is_new = True

        outcome = await self.add_expenses(group_id, records, actor=actor)
        return replace(outcome, is_new_group=is_new)

    # settlement

    async def resolve(self, group_id: str, from_participant: str, to_participant: str, *, requested_by: str) -> ResolveOutcome:
        async def step(session: AsyncSession, ledger: GroupLedger, now: datetime) -> tuple[GroupLedger, SettledEdge]:
            updated, settled = ledger.resolve(from_participant, to_participant, requested_by=requested_by, now=now)
            await store.append_history(session, ledger=updated, settled=settled)
            saved = await self._save(session, ledger, updated, now)
            return saved, settled

        saved, settled = await self._transact(group_id, step)
        await self._notify(
            [
                payment_received_request(
                    settled, group_id=saved.group_id, group_name=saved.name, display_name=self._display_name
                )
            ]
        )
        return ResolveOutcome(
            group_id=saved.group_id,
            settled=settled,
            pending_edges=saved.pending_edges,
            resolved_edges=saved.resolved_edges,
            group_status=saved.status,
        )

    # queries

    async def history(self, group_id: str) -> HistoryDocument:
        async def work(session: AsyncSession) -> HistoryDocument:
            ledger = await store.load_ledger(session, group_id=group_id)
            return await store.load_history(session, group_id=group_id, group_name=ledger.name)

        return await self._in_session(work)

    async def edit_log(self, group_id: str, *, limit: int = 50) -> list[EditLogEntry]:
        async def work(session: AsyncSession) -> list[EditLogEntry]:
            if not await store.group_exists(session, group_id=group_id):
                raise NotFoundError(f"group {group_id} not found")
            return await store.list_edit_log(session, group_id=group_id, limit=limit)

        return await self._in_session(work)

    async def pending_for_participant(self, participant_id: str) -> list[ParticipantDebts]:
        pid = participant_id.strip().lower()

        async def work(session: AsyncSession) -> list[ParticipantDebts]:
            out: list[ParticipantDebts] = []
            for gid in await store.list_group_ids_with_debtor(session, participant_id=pid):
                ledger = await store.load_ledger(session, group_id=gid)
                pending = [e for e in ledger.pending_edges if e.from_participant == pid]
                if not pending:
                    continue
                out.append(
                    ParticipantDebts(
                        group_id=ledger.group_id,
                        group_name=ledger.name,
                        group_status=ledger.status,
                        pending_edges=pending,
                        resolved_edges=[e for e in ledger.resolved_edges if e.from_participant == pid],
                    )
                )
            return out

        return await self._in_session(work)
