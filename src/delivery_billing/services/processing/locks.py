"""Exclusivity leases and watchdog timers for processing runs."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from ...persistence import leases as lease_rows

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Lease:
    key: str
    token: str
    expires_at: float
    cancelled: threading.Event = field(default_factory=threading.Event)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class LeaseRegistry(Protocol):
    def acquire(self, key: str, ttl_seconds: float) -> Optional[Lease]: ...

    def release(self, key: str, token: str) -> bool: ...

    def is_held(self, key: str) -> bool: ...

    def holds(self, key: str, token: str) -> bool: ...


class InMemoryLeaseRegistry:
    """Process-local leases keyed by upload id.

    An expired lease may be taken over. ``release`` only succeeds for the
    token that currently holds the key, so a task whose lease was revoked by
    its watchdog releases nothing.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._leases: dict[str, Lease] = {}
        self._mutex = threading.Lock()

    def acquire(self, key: str, ttl_seconds: float) -> Optional[Lease]:
        now = self._clock()
        with self._mutex:
            existing = self._leases.get(key)
            if existing is not None and existing.expires_at > now:
                return None
            if existing is not None:
                logger.warning(f"Lease for {key} expired; taking over")
                existing.cancelled.set()
            lease = Lease(key=key, token=uuid.uuid4().hex, expires_at=now + ttl_seconds)
            self._leases[key] = lease
            return lease

    def release(self, key: str, token: str) -> bool:
        with self._mutex:
            existing = self._leases.get(key)
            if existing is None or existing.token != token:
                return False
            del self._leases[key]
            return True

    def is_held(self, key: str) -> bool:
        with self._mutex:
            existing = self._leases.get(key)
            return existing is not None and existing.expires_at > self._clock()

    def holds(self, key: str, token: str) -> bool:
        with self._mutex:
            existing = self._leases.get(key)
            return existing is not None and existing.token == token


class DatabaseLeaseRegistry:
    """Leases stored as ``processing_leases`` rows with an expiry timestamp.

    Same semantics as :class:`InMemoryLeaseRegistry`, shared by every worker
    process that talks to the same database.
    """

    def __init__(self) -> None:
        self._local: dict[str, Lease] = {}
        self._mutex = threading.Lock()

    def acquire(self, key: str, ttl_seconds: float) -> Optional[Lease]:
        token = uuid.uuid4().hex
        if not lease_rows.try_insert_lease(key, token, ttl_seconds):
            return None
        lease = Lease(key=key, token=token, expires_at=time.monotonic() + ttl_seconds)
        with self._mutex:
            self._local[key] = lease
        return lease

    def release(self, key: str, token: str) -> bool:
        with self._mutex:
            local = self._local.get(key)
            if local is not None and local.token == token:
                del self._local[key]
        return lease_rows.delete_lease(key, token)

    def is_held(self, key: str) -> bool:
        return lease_rows.lease_exists(key)

    def holds(self, key: str, token: str) -> bool:
        return lease_rows.lease_exists(key, token=token)


class Watchdog:
    """One deferred action armed at run start and disarmed at run end."""

    def __init__(self, seconds: float, on_expire: Callable[[], None], name: str = "watchdog") -> None:
        self.seconds = seconds
        self._fired = threading.Event()

        def _fire() -> None:
            self._fired.set()
            on_expire()

        self._timer = threading.Timer(seconds, _fire)
        self._timer.name = name
        self._timer.daemon = True

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def arm(self) -> "Watchdog":
        self._timer.start()
        return self

    def disarm(self) -> None:
        self._timer.cancel()
