import threading

import pytest

from src.delivery_billing.errors import ConcurrencyExhausted, InsufficientCredits, ProfileNotFound
from src.delivery_billing.services.credits.ledger import CreditLedger


def _profile(fake_db, credits: int, account_id: str = "acct-1") -> None:
    fake_db.tables["profiles"] = [{"id": account_id, "credits_remaining": credits}]


def _balance(fake_db, account_id: str = "acct-1") -> int:
    return next(row["credits_remaining"] for row in fake_db.rows("profiles") if row["id"] == account_id)


def test_consume_decrements_balance(fake_db) -> None:
    _profile(fake_db, 10)

    CreditLedger().consume("acct-1", 4)

    assert _balance(fake_db) == 6


def test_consume_rejects_insufficient_balance(fake_db) -> None:
    _profile(fake_db, 3)

    with pytest.raises(InsufficientCredits) as excinfo:
        CreditLedger().consume("acct-1", 4)

    assert excinfo.value.required == 4
    assert excinfo.value.available == 3
    assert _balance(fake_db) == 3


def test_consume_unknown_account(fake_db) -> None:
    with pytest.raises(ProfileNotFound):
        CreditLedger().consume("ghost", 1)


def test_non_positive_amount_is_a_no_op(fake_db) -> None:
    CreditLedger().consume("ghost", 0)

    assert fake_db.calls == []


def test_lost_race_is_retried_once(fake_db, monkeypatch: pytest.MonkeyPatch) -> None:
    from src.delivery_billing.persistence import profiles

    _profile(fake_db, 10)
    original = profiles.compare_and_set_credits
    state = {"raced": False}

    def racing_cas(account_id: str, expected: int, new_value: int) -> bool:
        if not state["raced"]:
            state["raced"] = True
            # another request spends 2 credits between our read and our write
            fake_db.tables["profiles"][0]["credits_remaining"] = expected - 2
        return original(account_id, expected, new_value)

    monkeypatch.setattr(profiles, "compare_and_set_credits", racing_cas)

    CreditLedger(max_retries=1).consume("acct-1", 5)

    assert _balance(fake_db) == 3


def test_every_attempt_losing_raises_concurrency_exhausted(fake_db, monkeypatch: pytest.MonkeyPatch) -> None:
    from src.delivery_billing.persistence import profiles

    _profile(fake_db, 10)
    monkeypatch.setattr(profiles, "compare_and_set_credits", lambda *args, **kwargs: False)

    with pytest.raises(ConcurrencyExhausted):
        CreditLedger(max_retries=1).consume("acct-1", 5)

    assert _balance(fake_db) == 10


def test_concurrent_consumption_never_goes_negative(fake_db) -> None:
    _profile(fake_db, 10)
    ledger = CreditLedger(max_retries=50)
    outcomes: list[str] = []
    lock = threading.Lock()

    def spend() -> None:
        try:
            ledger.consume("acct-1", 3)
            result = "ok"
        except (InsufficientCredits, ConcurrencyExhausted) as exc:
            result = type(exc).__name__
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=spend) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    successes = outcomes.count("ok")
    assert successes == 3
    assert _balance(fake_db) == 10 - 3 * successes
    assert _balance(fake_db) >= 0
