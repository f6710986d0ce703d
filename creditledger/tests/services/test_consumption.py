from __future__ import annotations

import threading
from dataclasses import replace

import pytest
from sqlalchemy import func, select

from creditledger.app.core.config import BillingConfig
from creditledger.app.core.database import Database
from creditledger.app.core.exceptions import (
    DailyLimitExceeded,
    InsufficientCredits,
    InvalidRequest,
    SingleTransactionLimitExceeded,
    UserNotFound,
)
from creditledger.app.db.models import DbLedgerEntry, DbUser
from creditledger.app.services.credits import CreditService
from creditledger.app.services.ledger import utc_day_start


def _entry_count(db: Database, user_id: str, action: str | None = None) -> int:
    stmt = select(func.count()).select_from(DbLedgerEntry).where(DbLedgerEntry.user_id == user_id)
    if action is not None:
        stmt = stmt.where(DbLedgerEntry.action == action)
    with db.session() as session:
        return int(session.scalar(stmt) or 0)


def test_consume_debits_and_updates_cache(service: CreditService, billing: BillingConfig) -> None:
    service.recharge("u1", 100)

    result = service.consume("u1", 30, "chat", "req-1", config=billing)

    assert result.balance == 70
    assert result.idempotent is False
    assert result.dry_run is False
    assert result.to_dict() == {"balance": 70, "transactionId": result.transaction_id}
    assert service.get_balance("u1") == 70
    assert service.validate_balance("u1").valid is True


def test_consume_uses_default_description(service: CreditService, billing: BillingConfig) -> None:
    service.recharge("u1", 100)
    service.consume("u1", 4, "image", config=billing)

    newest = service.list_transactions("u1").transactions[0]
    assert newest.amount == -4
    assert newest.description == "image consumed 4 credits"


def test_sequential_retry_is_idempotent(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 100)

    first = service.consume("u1", 10, "x", "r1", config=billing)
    second = service.consume("u1", 10, "x", "r1", config=billing)

    assert second.transaction_id == first.transaction_id
    assert second.balance == first.balance == 90
    assert second.idempotent is True
    assert second.to_dict()["idempotent"] is True
    assert service.get_balance("u1") == 90
    assert _entry_count(db, "u1", "x") == 1


def test_same_ref_with_different_action_is_a_new_debit(service: CreditService, billing: BillingConfig) -> None:
    service.recharge("u1", 100)

    first = service.consume("u1", 10, "chat", "r1", config=billing)
    second = service.consume("u1", 10, "image", "r1", config=billing)

    assert second.transaction_id != first.transaction_id
    assert second.balance == 80


def test_consume_without_ref_is_never_deduplicated(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 100)

    service.consume("u1", 10, "chat", config=billing)
    service.consume("u1", 10, "chat", config=billing)

    assert service.get_balance("u1") == 80
    assert _entry_count(db, "u1", "chat") == 2


def test_insufficient_credits_writes_nothing(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 5)

    with pytest.raises(InsufficientCredits) as excinfo:
        service.consume("u1", 10, "chat", "r1", config=billing)

    assert excinfo.value.balance == 5
    assert excinfo.value.required == 10
    assert excinfo.value.status_code == 402
    assert _entry_count(db, "u1") == 1
    assert service.get_balance("u1") == 5


def test_consuming_the_exact_balance_reaches_zero(service: CreditService, billing: BillingConfig) -> None:
    service.recharge("u1", 10)
    assert service.consume("u1", 10, "chat", config=billing).balance == 0
    with pytest.raises(InsufficientCredits):
        service.consume("u1", 1, "chat", config=billing)


def test_single_transaction_limit(service: CreditService, billing: BillingConfig) -> None:
    service.recharge("u1", 1000)
    config = replace(billing, max_single_amount=50)

    with pytest.raises(SingleTransactionLimitExceeded) as excinfo:
        service.consume("u1", 60, "chat", config=config)
    assert excinfo.value.limit == 50
    assert excinfo.value.requested == 60

    assert service.consume("u1", 50, "chat", config=config).balance == 950


def test_daily_limit_counts_todays_debits(service: CreditService, billing: BillingConfig, clock) -> None:
    service.recharge("u1", 1000)
    config = replace(billing, daily_limit=100)

    service.consume("u1", 95, "chat", "r1", config=config)

    with pytest.raises(DailyLimitExceeded) as excinfo:
        service.consume("u1", 10, "chat", "r2", config=config)
    assert excinfo.value.daily_limit == 100
    assert excinfo.value.today_consumed == 95
    assert excinfo.value.requested == 10
    assert excinfo.value.to_dict()["todayConsumed"] == 95

    result = service.consume("u1", 5, "chat", "r3", config=config)
    assert result.balance == 900


def test_daily_limit_resets_at_utc_midnight(service: CreditService, billing: BillingConfig, clock) -> None:
    config = replace(billing, daily_limit=100)
    midnight = utc_day_start(clock.now)

    clock.now = midnight - 60
    service.recharge("u1", 1000)
    service.consume("u1", 100, "chat", config=config)
    with pytest.raises(DailyLimitExceeded):
        service.consume("u1", 1, "chat", config=config)

    clock.now = midnight
    assert service.consume("u1", 100, "chat", config=config).balance == 800


def test_recharges_do_not_count_toward_the_daily_limit(service: CreditService, billing: BillingConfig, clock) -> None:
    config = replace(billing, daily_limit=10)
    service.recharge("u1", 500)
    service.recharge("u1", 500)

    assert service.consume("u1", 10, "chat", config=config).balance == 990


def test_idempotent_replay_skips_limit_checks(service: CreditService, billing: BillingConfig, clock) -> None:
    service.recharge("u1", 100)
    first = service.consume("u1", 100, "chat", "r1", config=replace(billing, daily_limit=100))

    # Balance is now 0 and the daily limit is used up; the retry still replays.
    again = service.consume("u1", 100, "chat", "r1", config=replace(billing, daily_limit=100))
    assert again.idempotent is True
    assert again.transaction_id == first.transaction_id


def test_billing_disabled_is_a_dry_run(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 20)
    off = replace(billing, billing_enabled=False)

    result = service.consume("u1", 50, "chat", "r1", config=off)

    assert result.dry_run is True
    assert result.balance == -30
    assert result.transaction_id.startswith("dry-")
    assert result.to_dict()["dryRun"] is True
    assert service.get_balance("u1") == 20
    assert _entry_count(db, "u1") == 1

    # The dry run left no trace, so the same key debits for real once billing is on.
    service.recharge("u1", 100)
    real = service.consume("u1", 50, "chat", "r1", config=billing)
    assert real.idempotent is False
    assert real.balance == 70


def test_billing_switch_is_read_from_environment_per_call(service: CreditService, monkeypatch) -> None:
    service.recharge("u1", 20)

    monkeypatch.setenv("BILLING_ENABLED", "false")
    assert service.consume("u1", 5, "chat").dry_run is True

    monkeypatch.setenv("BILLING_ENABLED", "true")
    result = service.consume("u1", 5, "chat")
    assert result.dry_run is False
    assert result.balance == 15


def test_consume_for_unknown_user_raises(service: CreditService, db: Database, billing: BillingConfig) -> None:
    with pytest.raises(UserNotFound) as excinfo:
        service.consume("ghost", 1, "chat", config=billing)
    assert excinfo.value.user_id == "ghost"

    with db.session() as session:
        assert session.get(DbUser, "ghost") is None


@pytest.mark.parametrize(
    ("amount", "action", "ref_id", "field"),
    [
        (0, "chat", None, "amount"),
        (-1, "chat", None, "amount"),
        (2.5, "chat", None, "amount"),
        (True, "chat", None, "amount"),
        (1, "", None, "action"),
        (1, "chat", "", "ref_id"),
    ],
)
def test_invalid_input_is_rejected_before_any_write(
    service: CreditService, db: Database, billing: BillingConfig, amount, action, ref_id, field
) -> None:
    service.recharge("u1", 10)
    with pytest.raises(InvalidRequest) as excinfo:
        service.consume("u1", amount, action, ref_id, config=billing)
    assert excinfo.value.field == field
    assert excinfo.value.status_code == 400
    assert _entry_count(db, "u1") == 1


def test_constraint_race_resolves_to_replay(service: CreditService, db: Database, billing: BillingConfig, monkeypatch) -> None:
    service.recharge("u1", 100)
    first = service.consume("u1", 10, "chat", "r1", config=billing)

    store = service.consumption.ledger
    real_find = store.find_entry
    calls = {"n": 0}

    def blind_find(session, user_id, ref_id, action):
        calls["n"] += 1
        # Pretend both lookups ran before the competing insert committed.
        if calls["n"] <= 2:
            return None
        return real_find(session, user_id, ref_id, action)

    monkeypatch.setattr(store, "find_entry", blind_find)

    result = service.consume("u1", 10, "chat", "r1", config=billing)

    assert calls["n"] == 3
    assert result.idempotent is True
    assert result.transaction_id == first.transaction_id
    assert service.get_balance("u1") == 90
    assert _entry_count(db, "u1", "chat") == 1


def test_concurrent_retries_debit_once(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 100)
    barrier = threading.Barrier(4)
    results = []
    errors = []

    def worker() -> None:
        barrier.wait()
        try:
            results.append(service.consume("u1", 10, "chat", "same-ref", config=billing))
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len({result.transaction_id for result in results}) == 1
    assert sum(1 for result in results if not result.idempotent) == 1
    assert service.get_balance("u1") == 90
    assert _entry_count(db, "u1", "chat") == 1


def test_concurrent_debits_never_overdraw(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 50)
    barrier = threading.Barrier(8)
    outcomes = []

    def worker(idx: int) -> None:
        barrier.wait()
        try:
            service.consume("u1", 10, "chat", f"ref-{idx}", config=billing)
            outcomes.append("ok")
        except InsufficientCredits:
            outcomes.append("insufficient")

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 5
    assert outcomes.count("insufficient") == 3
    assert service.get_balance("u1") == 0
    check = service.validate_balance("u1")
    assert check.valid is True
    assert check.cached_balance == 0


def test_balance_after_is_a_running_sum(service: CreditService, db: Database, billing: BillingConfig) -> None:
    service.recharge("u1", 100)
    service.consume("u1", 30, "chat", "a", config=billing)
    service.admin_recharge("u1", 15, "ops")
    service.consume("u1", 5, "image", config=billing)

    with db.session() as session:
        rows = session.scalars(
            select(DbLedgerEntry).where(DbLedgerEntry.user_id == "u1").order_by(DbLedgerEntry.id)
        ).all()
        running = 0
        for row in rows:
            running += row.amount
            assert row.balance_after == running
    assert running == 80


def test_per_call_ceiling_defaults_to_100(service: CreditService) -> None:
    service.recharge("u1", 1000)

    with pytest.raises(SingleTransactionLimitExceeded) as excinfo:
        service.consume("u1", 150, "chat")
    assert excinfo.value.limit == 100

    assert service.consume("u1", 100, "chat").balance == 900


def test_per_call_ceiling_reads_max_single_consume(service: CreditService, monkeypatch) -> None:
    service.recharge("u1", 1000)
    monkeypatch.setenv("MAX_SINGLE_CONSUME", "20")

    with pytest.raises(SingleTransactionLimitExceeded) as excinfo:
        service.consume("u1", 21, "chat")
    assert excinfo.value.limit == 20
    assert service.get_balance("u1") == 1000


def test_blank_billing_switch_keeps_billing_on(service: CreditService, monkeypatch) -> None:
    service.recharge("u1", 50)
    monkeypatch.setenv("BILLING_ENABLED", "")

    result = service.consume("u1", 5, "chat")
    assert result.dry_run is False
    assert service.get_balance("u1") == 45
