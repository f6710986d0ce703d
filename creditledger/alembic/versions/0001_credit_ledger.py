"""credit_ledger_schema

Revision ID: 0001_credit_ledger
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_credit_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_value = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("cached_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("ref_id", sa.String(length=128), nullable=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("meta", json_value, nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount != 0", name="chk_credit_ledger_amount_nonzero"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_credit_ledger_user_id", "credit_ledger", ["user_id"], unique=False)
    op.create_index("idx_credit_ledger_user_created_at", "credit_ledger", ["user_id", "created_at"], unique=False)
    op.create_index(
        "uq_credit_ledger_user_ref_action",
        "credit_ledger",
        ["user_id", "ref_id", "action"],
        unique=True,
        postgresql_where=sa.text("ref_id IS NOT NULL"),
        sqlite_where=sa.text("ref_id IS NOT NULL"),
    )

    op.create_table(
        "redeem_codes",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_by", sa.String(length=64), nullable=True),
        sa.Column("used_at", sa.Integer(), nullable=True),
        sa.Column("disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("disabled_at", sa.Integer(), nullable=True),
        sa.Column("disabled_by", sa.String(length=64), nullable=True),
        sa.Column("expires_at", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount > 0", name="chk_redeem_codes_amount_positive"),
        sa.CheckConstraint("NOT (used AND disabled)", name="chk_redeem_codes_used_xor_disabled"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_redeem_codes_used_by", "redeem_codes", ["used_by"], unique=False)
    op.create_index("idx_redeem_codes_used_disabled", "redeem_codes", ["used", "disabled"], unique=False)
    op.create_index("idx_redeem_codes_created_at", "redeem_codes", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_redeem_codes_created_at", table_name="redeem_codes")
    op.drop_index("idx_redeem_codes_used_disabled", table_name="redeem_codes")
    op.drop_index("ix_redeem_codes_used_by", table_name="redeem_codes")
    op.drop_table("redeem_codes")
    op.drop_index("uq_credit_ledger_user_ref_action", table_name="credit_ledger")
    op.drop_index("idx_credit_ledger_user_created_at", table_name="credit_ledger")
    op.drop_index("ix_credit_ledger_user_id", table_name="credit_ledger")
    op.drop_table("credit_ledger")
    op.drop_table("users")
