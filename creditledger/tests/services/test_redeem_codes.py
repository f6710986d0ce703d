from __future__ import annotations

import threading

import pytest

from creditledger.app.core.exceptions import (
    CodeAlreadyDisabled,
    CodeAlreadyUsed,
    CodeDisabled,
    CodeExpired,
    CodeNotFound,
    InvalidRequest,
)
from creditledger.app.services.credits import CreditService
from creditledger.app.services.redeem_codes import CODE_ALPHABET, CODE_LENGTH


def _one_code(service: CreditService, amount: int = 50, **kwargs) -> str:
    return service.generate_redeem_codes(amount, 1, **kwargs)[0].code


def test_generated_codes_use_the_unambiguous_alphabet(service: CreditService) -> None:
    codes = service.generate_redeem_codes(30, 20, note="launch")

    assert len(codes) == 20
    assert len({info.code for info in codes}) == 20
    for info in codes:
        assert len(info.code) == CODE_LENGTH
        assert set(info.code) <= set(CODE_ALPHABET)
        assert info.amount == 30
        assert info.note == "launch"
        assert info.used is False
        assert info.disabled is False


@pytest.mark.parametrize(("amount", "count"), [(0, 1), (-5, 1), (10, 0), (10, 101)])
def test_generate_rejects_bad_arguments(service: CreditService, amount: int, count: int) -> None:
    with pytest.raises(InvalidRequest):
        service.generate_redeem_codes(amount, count)
    assert service.redeem_code_statistics().total == 0


def test_validate_does_not_modify_the_code(service: CreditService) -> None:
    code = _one_code(service, 75)

    info = service.validate_redeem_code(code.lower())
    assert info.code == code
    assert info.amount == 75
    assert info.to_dict()["expiresAt"] is None

    # Still redeemable afterwards.
    assert service.validate_redeem_code(code).used is False


def test_redeem_credits_the_user_once(service: CreditService) -> None:
    code = _one_code(service, 50)

    result = service.redeem_code(f"  {code.lower()} ", "u1")

    assert result.balance == 50
    entry = service.list_transactions("u1").transactions[0]
    assert entry.action == "redeem_code"
    assert entry.ref_id == code
    assert entry.description == code
    assert service.validate_balance("u1").valid is True

    with pytest.raises(CodeAlreadyUsed):
        service.redeem_code(code, "u1")
    with pytest.raises(CodeAlreadyUsed):
        service.redeem_code(code, "u2")
    with pytest.raises(CodeAlreadyUsed):
        service.validate_redeem_code(code)

    assert service.get_balance("u1") == 50
    assert service.get_balance("u2") == 0

    used = service.list_redeem_codes(used=True).codes[0]
    assert used.used_by == "u1"
    assert used.used_at is not None


def test_unknown_code(service: CreditService) -> None:
    with pytest.raises(CodeNotFound) as excinfo:
        service.redeem_code("NOPE2345", "u1")
    assert excinfo.value.status_code == 404
    assert excinfo.value.to_dict()["redeemCode"] == "NOPE2345"

    with pytest.raises(CodeNotFound):
        service.validate_redeem_code("nope2345")


def test_code_expires_at_its_timestamp(service: CreditService, clock) -> None:
    code = _one_code(service, 10, expires_at=clock.now + 60)

    clock.now += 59
    assert service.validate_redeem_code(code).expires_at == clock.now + 1

    clock.now += 1
    with pytest.raises(CodeExpired) as excinfo:
        service.redeem_code(code, "u1")
    assert excinfo.value.expires_at == clock.now
    assert service.get_balance("u1") == 0


def test_disable_is_terminal(service: CreditService) -> None:
    code = _one_code(service)

    service.disable_redeem_code(code, "admin-1")

    with pytest.raises(CodeDisabled):
        service.validate_redeem_code(code)
    with pytest.raises(CodeDisabled):
        service.redeem_code(code, "u1")
    with pytest.raises(CodeAlreadyDisabled):
        service.disable_redeem_code(code, "admin-1")

    info = service.list_redeem_codes(disabled=True).codes[0]
    assert info.disabled_by == "admin-1"
    assert info.used is False
    assert service.get_balance("u1") == 0


def test_used_code_cannot_be_disabled(service: CreditService) -> None:
    code = _one_code(service)
    service.redeem_code(code, "u1")

    with pytest.raises(CodeAlreadyUsed):
        service.disable_redeem_code(code, "admin-1")

    info = service.list_redeem_codes().codes[0]
    assert info.used is True
    assert info.disabled is False


def test_disable_unknown_code_and_missing_actor(service: CreditService) -> None:
    with pytest.raises(CodeNotFound):
        service.disable_redeem_code("ZZZZ2222", "admin-1")

    code = _one_code(service)
    with pytest.raises(InvalidRequest):
        service.disable_redeem_code(code, "")


def test_concurrent_redeem_has_one_winner(service: CreditService) -> None:
    code = _one_code(service, 40)
    barrier = threading.Barrier(5)
    winners = []
    losers = []

    def worker(user_id: str) -> None:
        barrier.wait()
        try:
            service.redeem_code(code, user_id)
            winners.append(user_id)
        except CodeAlreadyUsed:
            losers.append(user_id)

    threads = [threading.Thread(target=worker, args=(f"user-{idx}",)) for idx in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == 4
    assert sum(service.get_balance(f"user-{idx}") for idx in range(5)) == 40
    assert service.get_balance(winners[0]) == 40


def test_list_codes_filters_and_pages(service: CreditService) -> None:
    codes = [info.code for info in service.generate_redeem_codes(10, 5)]
    service.redeem_code(codes[0], "u1")
    service.disable_redeem_code(codes[1], "admin")

    assert service.list_redeem_codes().total == 5
    assert service.list_redeem_codes(used=True).total == 1
    assert service.list_redeem_codes(disabled=True).total == 1
    assert service.list_redeem_codes(used=False, disabled=False).total == 3

    first = service.list_redeem_codes(page=1, page_size=2)
    second = service.list_redeem_codes(page=2, page_size=2)
    third = service.list_redeem_codes(page=3, page_size=2)
    assert len(first.codes) == 2
    assert len(second.codes) == 2
    assert len(third.codes) == 1
    seen = {info.code for page in (first, second, third) for info in page.codes}
    assert seen == set(codes)

    assert len(service.list_redeem_codes(page=0, page_size=0).codes) == 1


def test_statistics(service: CreditService) -> None:
    codes = [info.code for info in service.generate_redeem_codes(10, 3)]
    service.generate_redeem_codes(25, 1)
    service.redeem_code(codes[0], "u1")
    service.disable_redeem_code(codes[1], "admin")

    stats = service.redeem_code_statistics()
    assert stats.total == 4
    assert stats.used == 1
    assert stats.unused == 3
    assert stats.disabled == 1
    assert stats.total_amount == 55
    assert stats.used_amount == 10
    assert stats.to_dict()["totalAmount"] == 55
