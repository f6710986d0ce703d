"""Single-use redeem codes that credit a fixed amount to the first redeemer."""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..core.database import Database
from ..core.exceptions import (
    CodeAlreadyDisabled,
    CodeAlreadyUsed,
    CodeDisabled,
    CodeExpired,
    CodeNotFound,
    InvalidRequest,
)
from ..db.models import DbRedeemCode
from .ledger import LedgerStore, now_ts, validate_amount, validate_user_id
from .recharge import CreditResult, apply_credit

logger = logging.getLogger(__name__)

REDEEM_ACTION = "redeem_code"

# No 0/O or 1/I: codes are read off screens and typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
MAX_CODES_PER_BATCH = 100
MAX_GENERATION_ATTEMPTS = 10
MAX_CODE_LENGTH = 32
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class RedeemCodeInfo:
    code: str
    amount: int
    used: bool
    used_by: str | None
    used_at: int | None
    disabled: bool
    disabled_at: int | None
    disabled_by: str | None
    expires_at: int | None
    note: str | None
    created_at: int

    @classmethod
    def from_row(cls, row: DbRedeemCode) -> "RedeemCodeInfo":
        return cls(
            code=row.code,
            amount=row.amount,
            used=bool(row.used),
            used_by=row.used_by,
            used_at=row.used_at,
            disabled=bool(row.disabled),
            disabled_at=row.disabled_at,
            disabled_by=row.disabled_by,
            expires_at=row.expires_at,
            note=row.note,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "amount": self.amount,
            "used": self.used,
            "usedBy": self.used_by,
            "usedAt": self.used_at,
            "disabled": self.disabled,
            "disabledAt": self.disabled_at,
            "disabledBy": self.disabled_by,
            "expiresAt": self.expires_at,
            "note": self.note,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class CodePage:
    codes: list[RedeemCodeInfo] = field(default_factory=list)
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"codes": [info.to_dict() for info in self.codes], "total": self.total}


@dataclass(frozen=True)
class CodeStatistics:
    total: int
    used: int
    unused: int
    disabled: int
    total_amount: int
    used_amount: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "unused": self.unused,
            "disabled": self.disabled,
            "totalAmount": self.total_amount,
            "usedAmount": self.used_amount,
        }


def normalize_code(code: str) -> str:
    if not isinstance(code, str) or not code.strip():
        raise InvalidRequest("code", "Redeem code is required")
    cleaned = code.strip().upper()
    if len(cleaned) > MAX_CODE_LENGTH:
        raise InvalidRequest("code", "Redeem code is too long")
    return cleaned


def random_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _check_redeemable(row: DbRedeemCode, now: int) -> None:
    if row.used:
        raise CodeAlreadyUsed(row.code)
    if row.disabled:
        raise CodeDisabled(row.code)
    if row.expires_at is not None and row.expires_at <= now:
        raise CodeExpired(row.code, row.expires_at)


class RedeemCodeEngine:
    def __init__(self, db: Database, ledger: LedgerStore | None = None) -> None:
        self.db = db
        self.ledger = ledger or LedgerStore()

    def generate_codes(
        self,
        amount: int,
        count: int = 1,
        expires_at: int | None = None,
        note: str | None = None,
    ) -> list[RedeemCodeInfo]:
        validate_amount(amount)
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= MAX_CODES_PER_BATCH:
            raise InvalidRequest("count", f"Count must be between 1 and {MAX_CODES_PER_BATCH}")
        if expires_at is not None and (isinstance(expires_at, bool) or not isinstance(expires_at, int)):
            raise InvalidRequest("expires_at", "Expiry must be a unix timestamp")

        now = now_ts()
        with self.db.session() as session:
            rows: list[DbRedeemCode] = []
            taken: set[str] = set()
            for _ in range(count):
                code = self._unique_code(session, taken)
                taken.add(code)
                row = DbRedeemCode(
                    id=uuid.uuid4().hex,
                    code=code,
                    amount=amount,
                    used=False,
                    disabled=False,
                    expires_at=expires_at,
                    note=note or None,
                    created_at=now,
                )
                session.add(row)
                rows.append(row)
            session.flush()
            codes = [RedeemCodeInfo.from_row(row) for row in rows]

        logger.info(
            "Redeem codes generated",
            extra={"data": {"count": count, "amount": amount, "expires_at": expires_at}},
        )
        return codes

    def validate_code(self, code: str) -> RedeemCodeInfo:
        """Check a code is redeemable right now. Never modifies it."""
        code = normalize_code(code)
        with self.db.session() as session:
            row = session.scalar(select(DbRedeemCode).where(DbRedeemCode.code == code).limit(1))
            if row is None:
                raise CodeNotFound(code)
            _check_redeemable(row, now_ts())
            return RedeemCodeInfo.from_row(row)

    def redeem_code(self, code: str, user_id: str) -> CreditResult:
        code = normalize_code(code)
        validate_user_id(user_id)
        # Cheap rejection before taking any lock.
        self.validate_code(code)

        now = now_ts()
        with self.db.session() as session:
            # User lock first, in the same order as consume/recharge.
            self.ledger.ensure_user(session, user_id, now=now)
            self.ledger.lock_user(session, user_id)

            row = session.scalar(
                select(DbRedeemCode).where(DbRedeemCode.code == code).with_for_update()
            )
            if row is None:
                raise CodeNotFound(code)
            _check_redeemable(row, now)

            claimed = session.execute(
                update(DbRedeemCode)
                .where(
                    DbRedeemCode.id == row.id,
                    DbRedeemCode.used.is_(False),
                    DbRedeemCode.disabled.is_(False),
                )
                .values(used=True, used_by=user_id, used_at=now)
                .execution_options(synchronize_session=False)
            )
            if int(claimed.rowcount or 0) != 1:
                raise CodeAlreadyUsed(code)

            entry = apply_credit(
                self.ledger,
                session,
                user_id=user_id,
                amount=row.amount,
                action=REDEEM_ACTION,
                ref_id=code,
                description=code,
                meta={"redeem_code_id": row.id},
                now=now,
            )

        logger.info(
            "Redeem code used",
            extra={
                "data": {
                    "user_id": user_id,
                    "code": code,
                    "amount": entry.amount,
                    "transaction_id": entry.transaction_id,
                    "balance_after": entry.balance_after,
                }
            },
        )
        return CreditResult(balance=entry.balance_after, transaction_id=entry.transaction_id)

    def disable_code(self, code: str, admin_actor_id: str) -> None:
        code = normalize_code(code)
        if not isinstance(admin_actor_id, str) or not admin_actor_id.strip():
            raise InvalidRequest("admin_actor_id", "Admin actor id is required")

        now = now_ts()
        with self.db.session() as session:
            row = session.scalar(
                select(DbRedeemCode).where(DbRedeemCode.code == code).with_for_update()
            )
            if row is None:
                raise CodeNotFound(code)
            if row.disabled:
                raise CodeAlreadyDisabled(code)
            if row.used:
                raise CodeAlreadyUsed(code)
            row.disabled = True
            row.disabled_at = now
            row.disabled_by = admin_actor_id

        logger.info("Redeem code disabled", extra={"data": {"code": code, "admin_id": admin_actor_id}})

    def list_codes(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        *,
        used: bool | None = None,
        disabled: bool | None = None,
    ) -> CodePage:
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

        filters = []
        if used is not None:
            filters.append(DbRedeemCode.used.is_(used))
        if disabled is not None:
            filters.append(DbRedeemCode.disabled.is_(disabled))

        with self.db.session() as session:
            total = session.scalar(select(func.count()).select_from(DbRedeemCode).where(*filters))
            rows = session.scalars(
                select(DbRedeemCode)
                .where(*filters)
                .order_by(DbRedeemCode.created_at.desc(), DbRedeemCode.code.asc())
                .limit(page_size)
                .offset((page - 1) * page_size)
            ).all()
            codes = [RedeemCodeInfo.from_row(row) for row in rows]
        return CodePage(codes=codes, total=int(total or 0))

    def statistics(self) -> CodeStatistics:
        with self.db.session() as session:
            total, total_amount = session.execute(
                select(func.count(), func.coalesce(func.sum(DbRedeemCode.amount), 0))
            ).one()
            used, used_amount = session.execute(
                select(func.count(), func.coalesce(func.sum(DbRedeemCode.amount), 0)).where(
                    DbRedeemCode.used.is_(True)
                )
            ).one()
            disabled = session.scalar(
                select(func.count()).select_from(DbRedeemCode).where(DbRedeemCode.disabled.is_(True))
            )
        return CodeStatistics(
            total=int(total or 0),
            used=int(used or 0),
            unused=int(total or 0) - int(used or 0),
            disabled=int(disabled or 0),
            total_amount=int(total_amount or 0),
            used_amount=int(used_amount or 0),
        )

    def _unique_code(self, session: Session, taken: set[str]) -> str:
        for _ in range(MAX_GENERATION_ATTEMPTS):
            candidate = random_code()
            if candidate in taken:
                continue
            exists = session.scalar(select(DbRedeemCode.id).where(DbRedeemCode.code == candidate).limit(1))
            if exists is None:
                return candidate
        raise RuntimeError("Could not generate a unique redeem code")
