"""Exactly-once credit consumption.

A debit runs as: validate → (dry run?) → idempotent replay lookup → one
transaction holding the user's row lock in which the live ledger sum is
checked against the balance and the configured limits, one entry is
appended and the cached balance is updated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..core.config import BillingConfig, load_billing_config
from ..core.database import Database
from ..core.exceptions import (
    DailyLimitExceeded,
    InsufficientCredits,
    SingleTransactionLimitExceeded,
    UserNotFound,
)
from .ledger import (
    DuplicateEntry,
    LedgerEntry,
    LedgerStore,
    new_transaction_id,
    now_ts,
    utc_day_start,
    validate_action,
    validate_amount,
    validate_meta,
    validate_ref_id,
    validate_user_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumeResult:
    balance: int
    transaction_id: str
    idempotent: bool = False
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"balance": self.balance, "transactionId": self.transaction_id}
        if self.idempotent:
            payload["idempotent"] = True
        if self.dry_run:
            payload["dryRun"] = True
        return payload


def _replay(entry: LedgerEntry) -> ConsumeResult:
    return ConsumeResult(balance=entry.balance_after, transaction_id=entry.transaction_id, idempotent=True)


class ConsumptionEngine:
    def __init__(self, db: Database, ledger: LedgerStore | None = None) -> None:
        self.db = db
        self.ledger = ledger or LedgerStore()

    def consume(
        self,
        user_id: str,
        amount: int,
        action: str,
        ref_id: str | None = None,
        *,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
        config: BillingConfig | None = None,
    ) -> ConsumeResult:
        validate_user_id(user_id)
        validate_amount(amount)
        action = validate_action(action)
        validate_ref_id(ref_id)
        validate_meta(meta)
        config = config or load_billing_config()

        if not config.billing_enabled:
            return self._dry_run(user_id, amount, action)

        if ref_id is not None:
            with self.db.session() as session:
                existing = self.ledger.find_entry(session, user_id, ref_id, action)
            if existing is not None:
                self._log_replay(existing)
                return _replay(existing)

        now = now_ts()
        with self.db.session() as session:
            if self.ledger.lock_user(session, user_id) is None:
                raise UserNotFound(user_id)

            if ref_id is not None:
                # A concurrent call with the same key may have committed while we waited.
                existing = self.ledger.find_entry(session, user_id, ref_id, action)
                if existing is not None:
                    self._log_replay(existing)
                    return _replay(existing)

            current = self.ledger.sum_entries(session, user_id)
            if current < amount:
                raise InsufficientCredits(balance=current, required=amount)

            if config.max_single_amount > 0 and amount > config.max_single_amount:
                raise SingleTransactionLimitExceeded(limit=config.max_single_amount, requested=amount)

            if config.daily_limit > 0:
                today_consumed = self.ledger.sum_debits_since(session, user_id, utc_day_start(now))
                if today_consumed + amount > config.daily_limit:
                    raise DailyLimitExceeded(
                        daily_limit=config.daily_limit,
                        today_consumed=today_consumed,
                        requested=amount,
                    )

            new_balance = current - amount
            try:
                entry = self.ledger.append_entry(
                    session,
                    user_id=user_id,
                    amount=-amount,
                    action=action,
                    ref_id=ref_id,
                    balance_after=new_balance,
                    description=description or f"{action} consumed {amount} credits",
                    meta=meta,
                    now=now,
                )
            except DuplicateEntry:
                existing = self.ledger.find_entry(session, user_id, ref_id, action)  # type: ignore[arg-type]
                if existing is None:
                    raise
                self._log_replay(existing)
                return _replay(existing)

            self.ledger.set_cached_balance(session, user_id, new_balance, now=now)

        logger.info(
            "Credits consumed",
            extra={
                "data": {
                    "user_id": user_id,
                    "action": action,
                    "amount": amount,
                    "ref_id": ref_id,
                    "transaction_id": entry.transaction_id,
                    "balance_after": new_balance,
                }
            },
        )
        return ConsumeResult(balance=new_balance, transaction_id=entry.transaction_id)

    def _dry_run(self, user_id: str, amount: int, action: str) -> ConsumeResult:
        with self.db.session() as session:
            current = self.ledger.sum_entries(session, user_id)
        transaction_id = new_transaction_id("dry")
        logger.info(
            "Billing disabled; consumption simulated",
            extra={
                "data": {
                    "user_id": user_id,
                    "action": action,
                    "amount": amount,
                    "transaction_id": transaction_id,
                }
            },
        )
        return ConsumeResult(balance=current - amount, transaction_id=transaction_id, dry_run=True)

    def _log_replay(self, entry: LedgerEntry) -> None:
        logger.info(
            "Idempotent consumption replayed",
            extra={
                "data": {
                    "user_id": entry.user_id,
                    "action": entry.action,
                    "ref_id": entry.ref_id,
                    "transaction_id": entry.transaction_id,
                    "balance_after": entry.balance_after,
                }
            },
        )
