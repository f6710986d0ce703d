"""Append-only ledger storage primitives.

Every function here runs inside a session owned by the caller, so a whole
read-modify-write cycle (lock, sum, append, cache update) commits or rolls
back as one unit. Entries are never updated or deleted.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import InvalidRequest
from ..db.models import LEDGER_REF_UNIQUE_INDEX, DbLedgerEntry, DbUser

MAX_ACTION_LENGTH = 64
MAX_REF_ID_LENGTH = 128
MAX_USER_ID_LENGTH = 64


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    user_id: str
    amount: int
    action: str
    ref_id: str | None
    transaction_id: str
    balance_after: int
    description: str
    meta: dict[str, Any] | None
    created_at: int

    @classmethod
    def from_row(cls, row: DbLedgerEntry) -> "LedgerEntry":
        return cls(
            id=row.id,
            user_id=row.user_id,
            amount=row.amount,
            action=row.action,
            ref_id=row.ref_id,
            transaction_id=row.transaction_id,
            balance_after=row.balance_after,
            description=row.description,
            meta=row.meta,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": self.amount,
            "action": self.action,
            "refId": self.ref_id,
            "transactionId": self.transaction_id,
            "balanceAfter": self.balance_after,
            "description": self.description,
            "meta": self.meta,
            "createdAt": self.created_at,
        }


class DuplicateEntry(Exception):
    """An entry with the same (user_id, ref_id, action) already exists."""

    def __init__(self, user_id: str, ref_id: str, action: str) -> None:
        super().__init__(f"ledger entry already exists for user={user_id} ref_id={ref_id} action={action}")
        self.user_id = user_id
        self.ref_id = ref_id
        self.action = action


def now_ts() -> int:
    return int(time.time())


def utc_day_start(ts: int) -> int:
    """Unix timestamp of 00:00 UTC on the day containing ``ts``."""
    day = datetime.fromtimestamp(ts, tz=timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(day.timestamp())


def new_transaction_id(prefix: str = "txn") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


# --- Input validation (runs before any transaction opens) ---


def validate_user_id(user_id: str, field: str = "user_id") -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidRequest(field, "User id is required")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise InvalidRequest(field, "User id is too long")
    return user_id


def validate_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidRequest("amount", "Amount must be a positive integer")
    return amount


def validate_action(action: str) -> str:
    if not isinstance(action, str):
        raise InvalidRequest("action", "Action is required")
    cleaned = action.strip()
    if not cleaned:
        raise InvalidRequest("action", "Action is required")
    if len(cleaned) > MAX_ACTION_LENGTH:
        raise InvalidRequest("action", "Action is too long")
    return cleaned


def validate_ref_id(ref_id: str | None) -> str | None:
    if ref_id is None:
        return None
    if not isinstance(ref_id, str) or not ref_id.strip():
        raise InvalidRequest("ref_id", "Reference id must be a non-empty string")
    if len(ref_id) > MAX_REF_ID_LENGTH:
        raise InvalidRequest("ref_id", "Reference id is too long")
    return ref_id


def validate_meta(meta: dict[str, Any] | None) -> dict[str, Any] | None:
    if meta is not None and not isinstance(meta, dict):
        raise InvalidRequest("meta", "Meta must be a mapping")
    return meta


class LedgerStore:
    """Storage primitives for ledger entries and the cached balance."""

    def lock_user(self, session: Session, user_id: str) -> DbUser | None:
        # Row lock scope is exactly one user; other users never wait on it.
        return session.scalar(
            select(DbUser).where(DbUser.id == user_id).with_for_update()
        )

    def ensure_user(self, session: Session, user_id: str, *, now: int) -> bool:
        """Insert the user row if it does not exist. Returns True when created."""
        insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = (
            insert(DbUser)
            .values(id=user_id, cached_balance=0, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=[DbUser.id])
        )
        # Use RETURNING to reliably detect insertion
        return session.execute(stmt.returning(DbUser.id)).scalar_one_or_none() is not None

    def sum_entries(self, session: Session, user_id: str) -> int:
        total = session.scalar(
            select(func.coalesce(func.sum(DbLedgerEntry.amount), 0)).where(DbLedgerEntry.user_id == user_id)
        )
        return int(total or 0)

    def sum_debits_since(self, session: Session, user_id: str, since_ts: int) -> int:
        """Total debited since ``since_ts``, as a positive number."""
        total = session.scalar(
            select(func.coalesce(func.sum(DbLedgerEntry.amount), 0)).where(
                DbLedgerEntry.user_id == user_id,
                DbLedgerEntry.amount < 0,
                DbLedgerEntry.created_at >= since_ts,
            )
        )
        return -int(total or 0)

    def find_entry(self, session: Session, user_id: str, ref_id: str, action: str) -> LedgerEntry | None:
        row = session.scalar(
            select(DbLedgerEntry)
            .where(
                DbLedgerEntry.user_id == user_id,
                DbLedgerEntry.ref_id == ref_id,
                DbLedgerEntry.action == action,
            )
            .limit(1)
        )
        return LedgerEntry.from_row(row) if row is not None else None

    def append_entry(
        self,
        session: Session,
        *,
        user_id: str,
        amount: int,
        action: str,
        balance_after: int,
        description: str,
        now: int,
        ref_id: str | None = None,
        meta: dict[str, Any] | None = None,
        transaction_id: str | None = None,
    ) -> LedgerEntry:
        row = DbLedgerEntry(
            user_id=user_id,
            amount=amount,
            action=action,
            ref_id=ref_id,
            transaction_id=transaction_id or new_transaction_id(),
            balance_after=balance_after,
            description=description,
            meta=meta,
            created_at=now,
        )
        # SAVEPOINT so a constraint violation leaves the outer transaction usable.
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError as exc:
            if ref_id is not None and _is_ref_conflict(exc):
                raise DuplicateEntry(user_id, ref_id, action) from exc
            raise
        return LedgerEntry.from_row(row)

    def get_cached_balance(self, session: Session, user_id: str) -> int | None:
        cached = session.scalar(select(DbUser.cached_balance).where(DbUser.id == user_id).limit(1))
        return int(cached) if cached is not None else None

    def set_cached_balance(self, session: Session, user_id: str, balance: int, *, now: int) -> None:
        session.execute(
            update(DbUser)
            .where(DbUser.id == user_id)
            .values(cached_balance=balance, updated_at=now)
        )

    def count_entries(self, session: Session, user_id: str) -> int:
        total = session.scalar(
            select(func.count()).select_from(DbLedgerEntry).where(DbLedgerEntry.user_id == user_id)
        )
        return int(total or 0)

    def list_entries(self, session: Session, user_id: str, *, limit: int, offset: int) -> list[LedgerEntry]:
        rows = session.scalars(
            select(DbLedgerEntry)
            .where(DbLedgerEntry.user_id == user_id)
            .order_by(DbLedgerEntry.created_at.desc(), DbLedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        return [LedgerEntry.from_row(row) for row in rows]


def _is_ref_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    if LEDGER_REF_UNIQUE_INDEX in message:
        return True
    # SQLite reports the columns instead of the index name.
    return "credit_ledger.user_id, credit_ledger.ref_id, credit_ledger.action" in message
