import threading

from src.delivery_billing.services.processing.locks import DatabaseLeaseRegistry, InMemoryLeaseRegistry, Watchdog


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_second_acquire_is_refused_while_held() -> None:
    registry = InMemoryLeaseRegistry()

    first = registry.acquire("up-1", ttl_seconds=60)
    second = registry.acquire("up-1", ttl_seconds=60)

    assert first is not None
    assert second is None
    assert registry.is_held("up-1")


def test_distinct_keys_do_not_block_each_other() -> None:
    registry = InMemoryLeaseRegistry()

    assert registry.acquire("up-1", ttl_seconds=60) is not None
    assert registry.acquire("up-2", ttl_seconds=60) is not None


def test_release_requires_current_token() -> None:
    registry = InMemoryLeaseRegistry()
    lease = registry.acquire("up-1", ttl_seconds=60)

    assert registry.holds("up-1", lease.token)
    assert not registry.holds("up-1", "not-the-token")
    assert registry.release("up-1", "not-the-token") is False
    assert registry.release("up-1", lease.token) is True
    assert registry.release("up-1", lease.token) is False
    assert not registry.is_held("up-1")


def test_expired_lease_is_taken_over_and_old_holder_cancelled() -> None:
    clock = FakeClock()
    registry = InMemoryLeaseRegistry(clock=clock)
    stale = registry.acquire("up-1", ttl_seconds=10)

    clock.now += 11
    fresh = registry.acquire("up-1", ttl_seconds=10)

    assert fresh is not None
    assert stale.is_cancelled
    assert not registry.holds("up-1", stale.token)
    assert registry.release("up-1", stale.token) is False
    assert registry.is_held("up-1")


def test_database_registry_uses_lease_rows(fake_db) -> None:
    registry = DatabaseLeaseRegistry()

    lease = registry.acquire("up-1", ttl_seconds=60)

    assert lease is not None
    assert registry.acquire("up-1", ttl_seconds=60) is None
    assert registry.is_held("up-1")
    assert registry.holds("up-1", lease.token)
    assert not registry.holds("up-1", "other")
    assert registry.release("up-1", "other") is False
    assert registry.release("up-1", lease.token) is True
    assert fake_db.rows("processing_leases") == []


def test_database_registry_reclaims_expired_rows(fake_db) -> None:
    fake_db.tables["processing_leases"] = [
        {"id": "1", "upload_id": "up-1", "token": "old", "expires_at": "2000-01-01T00:00:00+00:00"}
    ]

    lease = DatabaseLeaseRegistry().acquire("up-1", ttl_seconds=60)

    assert lease is not None
    assert [row["token"] for row in fake_db.rows("processing_leases")] == [lease.token]


def test_watchdog_fires_once_armed() -> None:
    fired = threading.Event()

    watchdog = Watchdog(0.01, fired.set).arm()

    assert fired.wait(2)
    assert watchdog.fired


def test_disarmed_watchdog_never_fires() -> None:
    fired = threading.Event()

    watchdog = Watchdog(0.2, fired.set).arm()
    watchdog.disarm()

    assert not fired.wait(0.4)
    assert not watchdog.fired
