"""Upload lifecycle state machine.

This module is the only writer of ``uploads.status``. Every write is
conditional on the status read just before it, so a late completion after a
watchdog failure (or two racing starts) cannot overwrite a newer state.

    ready ───────────────┐
    pending_validation ──┼──> processing ──> distances_done
    failed ──────────────┘         └───────> failed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import InvalidTransition, UploadNotFound
from ..models.domain import Upload, UploadStatus
from ..persistence import database

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.READY: frozenset({UploadStatus.PROCESSING}),
    UploadStatus.PENDING_VALIDATION: frozenset({UploadStatus.PENDING_VALIDATION, UploadStatus.PROCESSING}),
    UploadStatus.PROCESSING: frozenset({UploadStatus.DISTANCES_DONE, UploadStatus.FAILED}),
    UploadStatus.FAILED: frozenset({UploadStatus.PROCESSING}),
    UploadStatus.DISTANCES_DONE: frozenset(),
}

IDEMPOTENT_STATES = frozenset({UploadStatus.PROCESSING, UploadStatus.DISTANCES_DONE})


@dataclass(slots=True)
class ValidationState:
    invalid_count: int

    @property
    def clear(self) -> bool:
        return self.invalid_count == 0


def initial_status(invalid_count: int) -> UploadStatus:
    return UploadStatus.PENDING_VALIDATION if invalid_count > 0 else UploadStatus.READY


def can_transition(current: UploadStatus, target: UploadStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def get_upload(upload_id: str) -> Upload:
    row = database.get_upload(upload_id)
    if not row:
        raise UploadNotFound(upload_id)
    return Upload.from_row(row)


def evaluate_validation(upload_id: str) -> ValidationState:
    """Count rows still flagged invalid. Zero means the upload is clear to start."""
    return ValidationState(invalid_count=len(database.get_invalid_pending_legs(upload_id)))


def transition(upload_id: str, target: UploadStatus, *, extra: dict | None = None) -> Upload:
    """Move an upload to ``target`` or raise :class:`InvalidTransition`.

    Re-entering ``processing`` or ``distances_done`` is a no-op that returns
    the current upload.
    """
    upload = get_upload(upload_id)
    current = upload.status
    if current == target and target in IDEMPOTENT_STATES:
        return upload
    if not can_transition(current, target):
        raise InvalidTransition(upload_id, current.value, target.value)
    if current == UploadStatus.PENDING_VALIDATION and target == UploadStatus.PROCESSING:
        state = evaluate_validation(upload_id)
        if not state.clear:
            raise InvalidTransition(upload_id, current.value, target.value)

    row = database.update_upload_status(upload_id, target.value, expected=[current.value], extra=extra)
    if row is None:
        latest = get_upload(upload_id)
        raise InvalidTransition(upload_id, latest.status.value, target.value)
    logger.info(f"Upload {upload_id}: {current.value} -> {target.value}")
    return Upload.from_row(row)


def complete(upload_id: str, *, total_legs: int, total_clients: int) -> bool:
    """``processing -> distances_done``. False when the run no longer owns the upload."""
    row = database.update_upload_status(
        upload_id,
        UploadStatus.DISTANCES_DONE.value,
        expected=[UploadStatus.PROCESSING.value],
        extra={"total_deliveries": total_legs, "total_clients": total_clients, "total_amount": 0},
    )
    if row is None:
        logger.warning(f"Upload {upload_id} left 'processing' before completion; result not recorded as done")
        return False
    logger.info(f"Upload {upload_id}: processing -> distances_done ({total_legs} legs, {total_clients} clients)")
    return True


def fail(upload_id: str, reason: str) -> bool:
    """``processing -> failed``. No-op (False) if the upload is not processing."""
    row = database.update_upload_status(
        upload_id,
        UploadStatus.FAILED.value,
        expected=[UploadStatus.PROCESSING.value],
    )
    if row is None:
        logger.info(f"Upload {upload_id} not in 'processing'; failure ({reason}) not recorded")
        return False
    logger.error(f"Upload {upload_id}: processing -> failed ({reason})")
    return True


def register(owner_id: str, filename: str | None, *, invalid_count: int, warehouse_address: str | None = None) -> Upload:
    """Create the upload row in its initial state (``ready`` or ``pending_validation``)."""
    status = initial_status(invalid_count)
    row = database.create_upload(owner_id, filename, status.value, warehouse_address)
    logger.info(f"Upload {row['id']} created as {status.value} ({invalid_count} invalid rows)")
    return Upload.from_row(row)
