"""SQLAlchemy ORM models for the credit ledger's relational database."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text, false, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base

JSON_VALUE = JSON().with_variant(JSONB, "postgresql")

LEDGER_REF_UNIQUE_INDEX = "uq_credit_ledger_user_ref_action"


class DbUser(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Mirror of SUM(credit_ledger.amount); never read for a business decision.
    cached_balance: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[int] = mapped_column(Integer)


class DbLedgerEntry(Base):
    """Append-only credit ledger. Rows are never updated or deleted."""

    __tablename__ = "credit_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String(64))
    ref_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True)
    balance_after: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(Text, default="")
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON_VALUE, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("amount != 0", name="chk_credit_ledger_amount_nonzero"),
        Index("idx_credit_ledger_user_created_at", "user_id", "created_at"),
        Index(
            LEDGER_REF_UNIQUE_INDEX,
            "user_id",
            "ref_id",
            "action",
            unique=True,
            postgresql_where=text("ref_id IS NOT NULL"),
            sqlite_where=text("ref_id IS NOT NULL"),
        ),
    )


class DbRedeemCode(Base):
    __tablename__ = "redeem_codes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True)
    amount: Mapped[int] = mapped_column(Integer)
    used: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    used_by: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    used_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    disabled_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disabled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_redeem_codes_amount_positive"),
        CheckConstraint("NOT (used AND disabled)", name="chk_redeem_codes_used_xor_disabled"),
        Index("idx_redeem_codes_used_disabled", "used", "disabled"),
        Index("idx_redeem_codes_created_at", "created_at"),
    )
