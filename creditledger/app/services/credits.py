"""Entry point for hosts: one ``Database`` bound to every ledger engine."""

from __future__ import annotations

from typing import Any

from ..core.config import BillingConfig
from ..core.database import Database
from .balance import DEFAULT_PAGE_LIMIT, BalanceCalculator, BalanceCheck, TransactionPage
from .consumption import ConsumeResult, ConsumptionEngine
from .ledger import LedgerStore
from .recharge import CreditResult, RechargeEngine
from .redeem_codes import DEFAULT_PAGE_SIZE, CodePage, CodeStatistics, RedeemCodeEngine, RedeemCodeInfo


class CreditService:
    def __init__(self, db: Database | None = None) -> None:
        self.db = db or Database()
        ledger = LedgerStore()
        self.balances = BalanceCalculator(self.db, ledger)
        self.consumption = ConsumptionEngine(self.db, ledger)
        self.recharges = RechargeEngine(self.db, ledger)
        self.redeem_codes = RedeemCodeEngine(self.db, ledger)

    # Balances

    def get_balance(self, user_id: str) -> int:
        return self.balances.get_balance(user_id)

    def validate_balance(self, user_id: str) -> BalanceCheck:
        return self.balances.validate_balance(user_id)

    def list_transactions(self, user_id: str, limit: int = DEFAULT_PAGE_LIMIT, offset: int = 0) -> TransactionPage:
        return self.balances.list_transactions(user_id, limit=limit, offset=offset)

    # Credits in and out

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
        return self.consumption.consume(
            user_id,
            amount,
            action,
            ref_id,
            description=description,
            meta=meta,
            config=config,
        )

    def recharge(
        self,
        user_id: str,
        amount: int,
        *,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> CreditResult:
        return self.recharges.recharge(user_id, amount, description=description, meta=meta)

    def admin_recharge(self, target_user_id: str, amount: int, admin_actor_id: str) -> CreditResult:
        return self.recharges.admin_recharge(target_user_id, amount, admin_actor_id)

    def ensure_account(
        self,
        user_id: str,
        *,
        opening_balance: int | None = None,
        config: BillingConfig | None = None,
    ) -> bool:
        return self.recharges.ensure_account(user_id, opening_balance=opening_balance, config=config)

    # Redeem codes

    def validate_redeem_code(self, code: str) -> RedeemCodeInfo:
        return self.redeem_codes.validate_code(code)

    def redeem_code(self, code: str, user_id: str) -> CreditResult:
        return self.redeem_codes.redeem_code(code, user_id)

    def generate_redeem_codes(
        self,
        amount: int,
        count: int = 1,
        expires_at: int | None = None,
        note: str | None = None,
    ) -> list[RedeemCodeInfo]:
        return self.redeem_codes.generate_codes(amount, count, expires_at=expires_at, note=note)

    def disable_redeem_code(self, code: str, admin_actor_id: str) -> None:
        self.redeem_codes.disable_code(code, admin_actor_id)

    def list_redeem_codes(
        self,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        *,
        used: bool | None = None,
        disabled: bool | None = None,
    ) -> CodePage:
        return self.redeem_codes.list_codes(page, page_size, used=used, disabled=disabled)

    def redeem_code_statistics(self) -> CodeStatistics:
        return self.redeem_codes.statistics()
