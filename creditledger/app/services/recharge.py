"""Credit-writing operations: self-service recharge, admin recharge and onboarding."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from ..core.config import BillingConfig, load_billing_config
from ..core.database import Database
from ..core.exceptions import InvalidRequest
from .ledger import LedgerEntry, LedgerStore, now_ts, validate_amount, validate_meta, validate_user_id

logger = logging.getLogger(__name__)

RECHARGE_ACTION = "recharge"
ADMIN_RECHARGE_ACTION = "admin_recharge"
INITIAL_BALANCE_ACTION = "initial_balance"


@dataclass(frozen=True)
class CreditResult:
    balance: int
    transaction_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"balance": self.balance, "transactionId": self.transaction_id}


def apply_credit(
    ledger: LedgerStore,
    session: Session,
    *,
    user_id: str,
    amount: int,
    action: str,
    description: str,
    now: int,
    ref_id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> LedgerEntry:
    """Lock the user row (creating it if needed), append a credit and sync the cache.

    Must run inside the caller's transaction.
    """
    ledger.ensure_user(session, user_id, now=now)
    ledger.lock_user(session, user_id)
    new_balance = ledger.sum_entries(session, user_id) + amount
    entry = ledger.append_entry(
        session,
        user_id=user_id,
        amount=amount,
        action=action,
        ref_id=ref_id,
        balance_after=new_balance,
        description=description,
        meta=meta,
        now=now,
    )
    ledger.set_cached_balance(session, user_id, new_balance, now=now)
    return entry


class RechargeEngine:
    """Credits with no limits and no idempotency key; callers are trusted."""

    def __init__(self, db: Database, ledger: LedgerStore | None = None) -> None:
        self.db = db
        self.ledger = ledger or LedgerStore()

    def recharge(
        self,
        user_id: str,
        amount: int,
        *,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> CreditResult:
        validate_user_id(user_id)
        validate_amount(amount)
        validate_meta(meta)
        return self._credit(
            user_id,
            amount,
            action=RECHARGE_ACTION,
            description=description or f"Recharge {amount} credits",
            meta=meta,
        )

    def admin_recharge(self, target_user_id: str, amount: int, admin_actor_id: str) -> CreditResult:
        validate_user_id(target_user_id, "target_user_id")
        validate_amount(amount)
        if not isinstance(admin_actor_id, str) or not admin_actor_id.strip():
            raise InvalidRequest("admin_actor_id", "Admin actor id is required")
        return self._credit(
            target_user_id,
            amount,
            action=ADMIN_RECHARGE_ACTION,
            description=f"Admin recharge by {admin_actor_id}",
            meta={"admin_id": admin_actor_id},
        )

    def ensure_account(
        self,
        user_id: str,
        *,
        opening_balance: int | None = None,
        config: BillingConfig | None = None,
    ) -> bool:
        """Create the user with its opening balance. Returns False if it already existed."""
        validate_user_id(user_id)
        if opening_balance is None:
            opening_balance = (config or load_billing_config()).initial_balance
        if isinstance(opening_balance, bool) or not isinstance(opening_balance, int) or opening_balance < 0:
            raise InvalidRequest("opening_balance", "Opening balance must be a non-negative integer")

        now = now_ts()
        with self.db.session() as session:
            created = self.ledger.ensure_user(session, user_id, now=now)
            if not created:
                return False
            if opening_balance > 0:
                self.ledger.lock_user(session, user_id)
                entry = self.ledger.append_entry(
                    session,
                    user_id=user_id,
                    amount=opening_balance,
                    action=INITIAL_BALANCE_ACTION,
                    balance_after=opening_balance,
                    description="Opening balance",
                    meta={"source": "ensure_account"},
                    now=now,
                )
                self.ledger.set_cached_balance(session, user_id, opening_balance, now=now)
                transaction_id = entry.transaction_id
            else:
                transaction_id = None

        logger.info(
            "Account created",
            extra={
                "data": {
                    "user_id": user_id,
                    "opening_balance": opening_balance,
                    "transaction_id": transaction_id,
                }
            },
        )
        return True

    def _credit(
        self,
        user_id: str,
        amount: int,
        *,
        action: str,
        description: str,
        meta: dict[str, Any] | None,
    ) -> CreditResult:
        now = now_ts()
        with self.db.session() as session:
            entry = apply_credit(
                self.ledger,
                session,
                user_id=user_id,
                amount=amount,
                action=action,
                description=description,
                meta=meta,
                now=now,
            )

        logger.info(
            "Credits added",
            extra={
                "data": {
                    "user_id": user_id,
                    "action": action,
                    "amount": amount,
                    "transaction_id": entry.transaction_id,
                    "balance_after": entry.balance_after,
                    "meta": meta,
                }
            },
        )
        return CreditResult(balance=entry.balance_after, transaction_id=entry.transaction_id)
