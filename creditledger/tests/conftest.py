import os
from pathlib import Path

import pytest

# SQLite is only accepted in the dev environment
os.environ.setdefault("APP_ENV", "dev")

from creditledger.app.core.config import BillingConfig
from creditledger.app.core.database import Database
from creditledger.app.services import ledger as ledger_module
from creditledger.app.services.credits import CreditService

# 2025-10-09 08:53:20 UTC
FIXED_NOW = 1_760_000_000

_LEDGER_ENV_VARS = (
    "CREDITLEDGER_APP_ENV",
    "ENV",
    "CREDITLEDGER_DATABASE_URL",
    "DATABASE_URL",
    "CREDITLEDGER_BILLING_ENABLED",
    "BILLING_ENABLED",
    "CREDITLEDGER_MAX_SINGLE_TRANSACTION",
    "MAX_SINGLE_TRANSACTION",
    "MAX_SINGLE_CONSUME",
    "CREDITLEDGER_DAILY_LIMIT",
    "DAILY_COST_LIMIT",
    "CREDITLEDGER_INITIAL_CREDITS",
    "INITIAL_CREDITS",
)


class FakeClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def time(self) -> float:
        return float(self.now)


@pytest.fixture(autouse=True)
def _ledger_env(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    for name in _LEDGER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db(tmp_path: Path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def service(db: Database) -> CreditService:
    return CreditService(db)


@pytest.fixture
def billing() -> BillingConfig:
    """Billing on, no limits."""
    return BillingConfig(billing_enabled=True, max_single_amount=0, daily_limit=0, initial_balance=0)


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock(FIXED_NOW)
    monkeypatch.setattr(ledger_module, "time", fake)
    return fake
