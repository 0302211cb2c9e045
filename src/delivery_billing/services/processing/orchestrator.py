"""Processing orchestration: from validated rows to persisted legs with distances."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ...config import settings
from ...errors import ConfigError, InvalidInput, RunCancelled
from ...models.domain import ClientGroup, LegInput, LegStatus, UploadStatus
from ...persistence import database
from .. import lifecycle
from ..distance.resolver import DistanceResolver
from ..perf import measure
from .addresses import build_full_address, client_key, parse_date, resolve_origin
from .locks import DatabaseLeaseRegistry, InMemoryLeaseRegistry, Lease, LeaseRegistry, Watchdog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcessingSummary:
    upload_id: str
    processed: int
    clients: int
    status_counts: dict[str, int] = field(default_factory=dict)
    already_done: bool = False


def group_by_client(
    legs: Sequence[LegInput],
    unknown_client: str | None = None,
    default_country: str | None = None,
) -> dict[str, ClientGroup]:
    """Bucket legs by client name, keeping first-seen order and address."""
    groups: dict[str, ClientGroup] = {}
    for leg in legs:
        name = client_key(leg.client_name, unknown_client)
        destination = build_full_address(leg, default_country)
        group = groups.get(name)
        if group is None:
            group = ClientGroup(
                name=name,
                address=destination,
                postal_code=(leg.postal_code or None),
                city=(leg.city or None),
                country=(leg.country or None),
            )
            groups[name] = group
        group.legs.append((leg, destination))
    return groups


def default_lease_registry() -> LeaseRegistry:
    if settings.lease_backend == "database":
        return DatabaseLeaseRegistry()
    return InMemoryLeaseRegistry()


class ProcessingOrchestrator:
    """Run the distance pipeline for one upload at a time per upload id.

    ``launch`` returns immediately and runs on a thread pool; ``run`` is the
    synchronous body. Both are guarded by a lease and a watchdog: when the
    watchdog fires the upload is forced to ``failed``, the lease is released
    and the run's cancellation event is set so the task stops at the next leg.
    """

    def __init__(
        self,
        resolver: DistanceResolver | None = None,
        locks: LeaseRegistry | None = None,
        *,
        watchdog_seconds: float | None = None,
        rate_limit_delay: float | None = None,
        batch_size: int | None = None,
        lease_grace_seconds: float | None = None,
        max_workers: int | None = None,
        sleep: Callable[[float], object] | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.resolver = resolver or DistanceResolver()
        self.locks = locks or default_lease_registry()
        self.watchdog_seconds = watchdog_seconds if watchdog_seconds is not None else settings.watchdog_seconds
        self.rate_limit_delay = rate_limit_delay if rate_limit_delay is not None else settings.rate_limit_delay_seconds
        self.batch_size = batch_size or settings.leg_batch_size
        self.lease_grace_seconds = (
            lease_grace_seconds if lease_grace_seconds is not None else settings.lease_grace_seconds
        )
        self.max_workers = max_workers or settings.processing_workers
        self._sleep = sleep
        self._executor: Executor | None = executor
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lease handling
    # ------------------------------------------------------------------

    def try_acquire(self, upload_id: str) -> Optional[Lease]:
        return self.locks.acquire(upload_id, self.watchdog_seconds + self.lease_grace_seconds)

    def release(self, upload_id: str, lease: Lease) -> bool:
        released = self.locks.release(upload_id, lease.token)
        if not released:
            logger.info(f"Lease for upload {upload_id} was no longer held by this run")
        return released

    def is_running(self, upload_id: str) -> bool:
        return self.locks.is_held(upload_id)

    def _on_watchdog(self, upload_id: str, lease: Lease) -> None:
        logger.error(f"WATCHDOG: upload {upload_id} still running after {self.watchdog_seconds}s -> failed")
        lease.cancelled.set()
        try:
            lifecycle.fail(upload_id, reason="watchdog timeout")
        except Exception:
            logger.exception(f"WATCHDOG: unable to mark upload {upload_id} as failed")
        finally:
            self.release(upload_id, lease)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _get_executor(self) -> Executor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="processing")
            return self._executor

    def launch(self, upload_id: str, legs: Sequence[LegInput], lease: Lease) -> Future:
        """Start ``run`` in the background with an already acquired lease."""

        def _background() -> Optional[ProcessingSummary]:
            try:
                return self.run(upload_id, legs, lease=lease)
            except Exception:
                # already logged and converted to 'failed' by run()
                return None

        return self._get_executor().submit(_background)

    def run(self, upload_id: str, legs: Sequence[LegInput], lease: Lease | None = None) -> Optional[ProcessingSummary]:
        """Process ``legs`` for ``upload_id``. Returns None if another run holds the upload."""
        if lease is None:
            lease = self.try_acquire(upload_id)
            if lease is None:
                logger.info(f"Upload {upload_id} is already being processed")
                return None

        watchdog = Watchdog(
            self.watchdog_seconds,
            lambda: self._on_watchdog(upload_id, lease),
            name=f"watchdog-{upload_id}",
        ).arm()
        try:
            return self._process(upload_id, legs, lease)
        except RunCancelled as exc:
            logger.warning(f"Processing of upload {upload_id} stopped: {exc}")
            return None
        except Exception as exc:
            logger.exception(f"Processing failed for upload {upload_id}: {exc}")
            try:
                lifecycle.fail(upload_id, reason=str(exc) or type(exc).__name__)
            except Exception:
                logger.exception(f"Unable to mark upload {upload_id} as failed")
            raise
        finally:
            watchdog.disarm()
            if not watchdog.fired:
                self.release(upload_id, lease)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _pause(self, lease: Lease) -> None:
        if self.rate_limit_delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(self.rate_limit_delay)
        else:
            lease.cancelled.wait(self.rate_limit_delay)

    @staticmethod
    def _check_cancelled(lease: Lease) -> None:
        if lease.is_cancelled:
            raise RunCancelled("Processing run cancelled by watchdog")

    def _resolve_leg(self, origin: str, destination: str, lease: Lease) -> tuple[Optional[float], LegStatus]:
        if not origin or not destination:
            return None, LegStatus.ADDRESS_NOT_FOUND
        try:
            result = self.resolver.resolve(origin, destination)
        except InvalidInput:
            return None, LegStatus.ADDRESS_NOT_FOUND
        except ConfigError:
            raise
        except Exception as exc:
            logger.info(f"Distance lookup failed ({origin!r} -> {destination!r}): {exc}")
            if not getattr(exc, "from_cache", False):
                self._pause(lease)
            return None, LegStatus.CALCULATION_ERROR

        if not result.from_cache:
            self._pause(lease)
        if result.km is None or result.km <= 0:
            return None, LegStatus.ADDRESS_NOT_FOUND
        return result.km, LegStatus.DISTANCE_OK

    def _process(self, upload_id: str, legs: Sequence[LegInput], lease: Lease) -> ProcessingSummary:
        logger.info(f"[PROCESS] START upload={upload_id} legs={len(legs)}")
        with measure("processing.total", upload_id=upload_id) as total_meta:
            upload = lifecycle.get_upload(upload_id)
            if upload.status == UploadStatus.DISTANCES_DONE:
                logger.info(f"[PROCESS] upload {upload_id} already processed")
                total_meta["already_done"] = True
                return ProcessingSummary(
                    upload_id=upload_id,
                    processed=upload.total_legs,
                    clients=upload.total_clients,
                    already_done=True,
                )
            lifecycle.transition(upload_id, UploadStatus.PROCESSING)

            with measure("processing.group_by_client", legs=len(legs)):
                groups = group_by_client(legs)
            logger.info(f"[PROCESS] {len(groups)} clients detected")

            with measure("processing.clients.upsert_batch", clients=len(groups)):
                database.upsert_clients(
                    [
                        {
                            "upload_id": upload_id,
                            "name": group.name,
                            "address": group.address,
                            "postal_code": group.postal_code,
                            "city": group.city,
                            "country": group.country,
                            "total_deliveries": 0,
                            "total_amount_ht": 0,
                            "total_amount_ttc": 0,
                        }
                        for group in groups.values()
                    ]
                )

            client_ids = {str(row["name"]): str(row["id"]) for row in database.get_clients(upload_id, "id, name")}

            rows: list[dict] = []
            ok_per_client: Counter[str] = Counter()
            status_counts: Counter[str] = Counter()

            with measure("processing.legs.resolve_all", legs=len(legs)) as resolve_meta:
                for name, group in groups.items():
                    client_id = client_ids.get(name)
                    if not client_id:
                        raise RuntimeError(f"Client id not found for '{name}'")
                    for leg, destination in group.legs:
                        self._check_cancelled(lease)
                        origin = resolve_origin(leg, upload.warehouse_address)
                        distance_km, status = self._resolve_leg(origin, destination, lease)
                        status_counts[status.value] += 1
                        if status == LegStatus.DISTANCE_OK:
                            ok_per_client[client_id] += 1
                        rows.append(
                            {
                                "upload_id": upload_id,
                                "client_id": client_id,
                                "task_id": (leg.task_id or "").strip() or None,
                                "service_type": (leg.service_type or "").strip() or None,
                                "delivery_date": parse_date(leg.date),
                                "origin_warehouse": leg.warehouse,
                                "origin_address": origin or None,
                                "destination_address": destination or None,
                                "distance_km": distance_km,
                                "price_ht": None,
                                "price_ttc": None,
                                "tva_amount": None,
                                "tva_rate": None,
                                "applied_range": None,
                                "status": status.value,
                            }
                        )
                resolve_meta.update(status_counts)

            self._check_cancelled(lease)
            with measure("processing.legs.replace", rows=len(rows)):
                database.delete_legs(upload_id)
                database.insert_legs(rows, batch_size=self.batch_size)

            with measure("processing.clients.update_counts", clients=len(ok_per_client)):
                database.update_clients_totals(
                    [
                        {
                            "id": client_ids[name],
                            "upload_id": upload_id,
                            "name": name,
                            "total_deliveries": ok_per_client[client_ids[name]],
                            "total_amount_ht": 0,
                            "total_amount_ttc": 0,
                        }
                        for name in groups
                        if ok_per_client[client_ids[name]]
                    ],
                    batch_size=self.batch_size,
                )

            self._check_cancelled(lease)
            if not self.locks.holds(upload_id, lease.token):
                raise RunCancelled(f"Lease on upload {upload_id} was lost before completion")
            if not lifecycle.complete(upload_id, total_legs=len(rows), total_clients=len(groups)):
                raise RunCancelled(f"Upload {upload_id} is no longer processing")

            try:
                database.delete_pending_legs(upload_id)
            except Exception as e:
                logger.warning(f"Unable to delete pending legs for upload {upload_id}: {e}")

            total_meta.update(processed=len(rows), clients=len(groups))
            logger.info(f"[PROCESS] DONE upload={upload_id} legs={len(rows)} clients={len(groups)}")
            return ProcessingSummary(
                upload_id=upload_id,
                processed=len(rows),
                clients=len(groups),
                status_counts=dict(status_counts),
            )
