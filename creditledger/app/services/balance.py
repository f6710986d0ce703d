"""Authoritative balance reads and cache reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ..core.database import Database
from ..core.exceptions import UserNotFound
from .ledger import LedgerEntry, LedgerStore, now_ts, validate_user_id

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100


@dataclass(frozen=True)
class BalanceCheck:
    valid: bool
    ledger_balance: int
    cached_balance: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "ledgerBalance": self.ledger_balance,
            "cachedBalance": self.cached_balance,
        }


@dataclass(frozen=True)
class TransactionPage:
    transactions: list[LedgerEntry] = field(default_factory=list)
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactions": [entry.to_dict() for entry in self.transactions],
            "total": self.total,
        }


class BalanceCalculator:
    """The ledger sum is the balance; ``users.cached_balance`` only mirrors it."""

    def __init__(self, db: Database, ledger: LedgerStore | None = None) -> None:
        self.db = db
        self.ledger = ledger or LedgerStore()

    def get_balance(self, user_id: str) -> int:
        validate_user_id(user_id)
        with self.db.session() as session:
            balance = self.ledger.sum_entries(session, user_id)
            cached = self.ledger.get_cached_balance(session, user_id)

        if cached is not None and cached != balance:
            self._heal_cache(user_id, balance, cached)
        return balance

    def validate_balance(self, user_id: str) -> BalanceCheck:
        """Report cache divergence without correcting it (audit tooling)."""
        validate_user_id(user_id)
        with self.db.session() as session:
            cached = self.ledger.get_cached_balance(session, user_id)
            if cached is None:
                raise UserNotFound(user_id)
            balance = self.ledger.sum_entries(session, user_id)
        return BalanceCheck(valid=balance == cached, ledger_balance=balance, cached_balance=cached)

    def list_transactions(
        self,
        user_id: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
    ) -> TransactionPage:
        validate_user_id(user_id)
        limit = min(max(int(limit), 1), MAX_PAGE_LIMIT)
        offset = max(int(offset), 0)
        with self.db.session() as session:
            total = self.ledger.count_entries(session, user_id)
            entries = self.ledger.list_entries(session, user_id, limit=limit, offset=offset)
        return TransactionPage(transactions=entries, total=total)

    def _heal_cache(self, user_id: str, balance: int, cached: int) -> None:
        # Best effort: a failure here must not fail the read.
        try:
            with self.db.session() as session:
                # Re-sum under the row lock so a write that committed after our
                # read is not overwritten with a stale value.
                self.ledger.lock_user(session, user_id)
                fresh = self.ledger.sum_entries(session, user_id)
                self.ledger.set_cached_balance(session, user_id, fresh, now=now_ts())
        except SQLAlchemyError:
            logger.warning(
                "Balance cache repair failed",
                exc_info=True,
                extra={"data": {"user_id": user_id, "ledger_balance": balance, "cached_balance": cached}},
            )
            return
        logger.warning(
            "Balance cache diverged from ledger; repaired",
            extra={"data": {"user_id": user_id, "ledger_balance": balance, "cached_balance": cached}},
        )
