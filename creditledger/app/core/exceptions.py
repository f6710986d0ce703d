"""Typed error taxonomy for ledger operations.

Every rejected path raises a distinct subclass of :class:`LedgerError` that
carries a stable ``code``, a suggested HTTP ``status_code`` and the structured
fields a caller needs to decide what to do next. Callers match on the class
or on ``code``, never on the message text.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details()}


# --- Validation ---


class LedgerValidationError(LedgerError):
    """Bad input, rejected before any transaction opens."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidRequest(LedgerValidationError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def details(self) -> dict[str, Any]:
        return {"field": self.field}


# --- Business rules ---


class UserNotFound(LedgerError):
    code = "USER_NOT_FOUND"
    status_code = 404

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id

    def details(self) -> dict[str, Any]:
        return {"userId": self.user_id}


class InsufficientCredits(LedgerError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, balance: int, required: int) -> None:
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")
        self.balance = balance
        self.required = required

    def details(self) -> dict[str, Any]:
        return {"balance": self.balance, "required": self.required}


class SingleTransactionLimitExceeded(LedgerError):
    code = "SINGLE_TRANSACTION_LIMIT_EXCEEDED"
    status_code = 400

    def __init__(self, limit: int, requested: int) -> None:
        super().__init__(f"Amount {requested} exceeds the per-transaction limit of {limit}")
        self.limit = limit
        self.requested = requested

    def details(self) -> dict[str, Any]:
        return {"limit": self.limit, "requested": self.requested}


class DailyLimitExceeded(LedgerError):
    code = "DAILY_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, daily_limit: int, today_consumed: int, requested: int) -> None:
        super().__init__(
            f"Daily limit of {daily_limit} reached: {today_consumed} consumed today, {requested} requested"
        )
        self.daily_limit = daily_limit
        self.today_consumed = today_consumed
        self.requested = requested

    def details(self) -> dict[str, Any]:
        return {
            "dailyLimit": self.daily_limit,
            "todayConsumed": self.today_consumed,
            "requested": self.requested,
        }


# --- Redeem codes ---


class RedeemCodeError(LedgerError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.redeem_code = code

    def details(self) -> dict[str, Any]:
        return {"redeemCode": self.redeem_code}


class CodeNotFound(RedeemCodeError):
    code = "CODE_NOT_FOUND"
    status_code = 404

    def __init__(self, code: str) -> None:
        super().__init__(code, f"Redeem code {code} does not exist")


class CodeAlreadyUsed(RedeemCodeError):
    code = "CODE_ALREADY_USED"

    def __init__(self, code: str) -> None:
        super().__init__(code, f"Redeem code {code} has already been used")


class CodeDisabled(RedeemCodeError):
    code = "CODE_DISABLED"

    def __init__(self, code: str) -> None:
        super().__init__(code, f"Redeem code {code} is disabled")


class CodeExpired(RedeemCodeError):
    code = "CODE_EXPIRED"

    def __init__(self, code: str, expires_at: int) -> None:
        super().__init__(code, f"Redeem code {code} has expired")
        self.expires_at = expires_at

    def details(self) -> dict[str, Any]:
        return {**super().details(), "expiresAt": self.expires_at}


class CodeAlreadyDisabled(RedeemCodeError):
    code = "CODE_ALREADY_DISABLED"

    def __init__(self, code: str) -> None:
        super().__init__(code, f"Redeem code {code} is already disabled")
