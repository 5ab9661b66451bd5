from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


UTC_NOW = sa.func.now()

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
Money = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class GroupStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DELETED = "deleted"


class EditAction(str, enum.Enum):
    ADD_EXPENSE = "add_expense"
    EDIT_EXPENSE = "edit_expense"
    DELETE_EXPENSE = "delete_expense"
    DELETE_GROUP = "delete_group"


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[GroupStatus] = mapped_column(
        Enum(GroupStatus, name="group_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=GroupStatus.ACTIVE,
    )
    # Bumped on every committed write; a write carrying an older value is rejected.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Purge deadline for completed/deleted groups. Enforced by the storage layer, not here.
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=UTC_NOW, nullable=False)

    expenses: Mapped[list[Expense]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="Expense.position",
    )
    edges: Mapped[list[SettlementEdge]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="SettlementEdge.position",
    )


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        Index("ix_expenses_group_position", "group_id", "position"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    payer: Mapped[str] = mapped_column(String(255), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    group: Mapped[Group] = relationship(back_populates="expenses")
    payees: Mapped[list[ExpensePayee]] = relationship(
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpensePayee.position",
    )


class ExpensePayee(Base):
    __tablename__ = "expense_payees"
    __table_args__ = (
        UniqueConstraint("expense_id", "participant_id", name="uq_expense_payee"),
        Index("ix_expense_payees_expense_id", "expense_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    expense_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    participant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # NULL means an equal share of the expense total.
    amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    expense: Mapped[Expense] = relationship(back_populates="payees")


class SettlementEdge(Base):
    __tablename__ = "settlement_edges"
    __table_args__ = (
        Index("ix_settlement_edges_group_position", "group_id", "position"),
        Index("ix_settlement_edges_from", "from_participant"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    from_participant: Mapped[str] = mapped_column(String(255), nullable=False)
    to_participant: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa.false())

    group: Mapped[Group] = relationship(back_populates="edges")


class HistoryEntry(Base):
    """Append-only archive row, one per resolved edge."""

    __tablename__ = "history_entries"
    __table_args__ = (
        Index("ix_history_entries_group_settled_at", "group_id", "settled_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    # No FK: the archive outlives the group row until its own purge deadline.
    group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    group_name: Mapped[str] = mapped_column(String(255), nullable=False)
    from_participant: Mapped[str] = mapped_column(String(255), nullable=False)
    to_participant: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class EditLogEntry(Base):
    __tablename__ = "edit_log_entries"
    __table_args__ = (
        Index("ix_edit_log_group_created_at", "group_id", "created_at"),
        Index("ix_edit_log_action_by_created_at", "action_by", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    group_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[EditAction] = mapped_column(
        Enum(EditAction, name="edit_action", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    action_by: Mapped[str] = mapped_column(String(255), nullable=False)
    expense_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    expense_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    old_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    new_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    changes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
