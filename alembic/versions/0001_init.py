"""init tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


UTC_NOW = sa.func.now()
BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
MONEY = sa.Numeric(12, 2)

GROUP_STATUS = sa.Enum("active", "completed", "deleted", name="group_status")
EDIT_ACTION = sa.Enum("add_expense", "edit_expense", "delete_expense", "delete_group", name="edit_action")


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", GROUP_STATUS, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=UTC_NOW, nullable=False),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("payer", sa.String(length=255), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_expenses_group_position", "expenses", ["group_id", "position"])

    op.create_table(
        "expense_payees",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("expense_id", sa.String(length=64), sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.String(length=255), nullable=False),
        sa.Column("amount", MONEY, nullable=True),
        sa.UniqueConstraint("expense_id", "participant_id", name="uq_expense_payee"),
    )
    op.create_index("ix_expense_payees_expense_id", "expense_payees", ["expense_id"])

    op.create_table(
        "settlement_edges",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("from_participant", sa.String(length=255), nullable=False),
        sa.Column("to_participant", sa.String(length=255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("resolved", sa.Boolean(), server_default=sa.false(), nullable=False),
    )
    op.create_index("ix_settlement_edges_group_position", "settlement_edges", ["group_id", "position"])
    op.create_index("ix_settlement_edges_from", "settlement_edges", ["from_participant"])

    op.create_table(
        "history_entries",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(length=64), nullable=False),
        sa.Column("group_name", sa.String(length=255), nullable=False),
        sa.Column("from_participant", sa.String(length=255), nullable=False),
        sa.Column("to_participant", sa.String(length=255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_history_entries_group_settled_at", "history_entries", ["group_id", "settled_at"])

    op.create_table(
        "edit_log_entries",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("group_id", sa.String(length=64), nullable=False),
        sa.Column("group_name", sa.String(length=255), nullable=False),
        sa.Column("action", EDIT_ACTION, nullable=False),
        sa.Column("action_by", sa.String(length=255), nullable=False),
        sa.Column("expense_id", sa.String(length=64), nullable=True),
        sa.Column("expense_name", sa.String(length=255), nullable=True),
        sa.Column("old_amount", MONEY, nullable=True),
        sa.Column("new_amount", MONEY, nullable=True),
        sa.Column("changes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_edit_log_group_created_at", "edit_log_entries", ["group_id", "created_at"])
    op.create_index("ix_edit_log_action_by_created_at", "edit_log_entries", ["action_by", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_edit_log_action_by_created_at", table_name="edit_log_entries")
    op.drop_index("ix_edit_log_group_created_at", table_name="edit_log_entries")
    op.drop_table("edit_log_entries")

    op.drop_index("ix_history_entries_group_settled_at", table_name="history_entries")
    op.drop_table("history_entries")

    op.drop_index("ix_settlement_edges_from", table_name="settlement_edges")
    op.drop_index("ix_settlement_edges_group_position", table_name="settlement_edges")
    op.drop_table("settlement_edges")

    op.drop_index("ix_expense_payees_expense_id", table_name="expense_payees")
    op.drop_table("expense_payees")

    op.drop_index("ix_expenses_group_position", table_name="expenses")
    op.drop_table("expenses")

    op.drop_table("groups")

    bind = op.get_bind()
    EDIT_ACTION.drop(bind, checkfirst=True)
    GROUP_STATUS.drop(bind, checkfirst=True)
