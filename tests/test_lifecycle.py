import pytest

from src.delivery_billing.errors import InvalidTransition, UploadNotFound
from src.delivery_billing.models.domain import UploadStatus
from src.delivery_billing.services import lifecycle


def _upload(fake_db, status: str, upload_id: str = "up-1") -> str:
    fake_db.tables.setdefault("uploads", []).append({"id": upload_id, "user_id": "acct-1", "status": status})
    return upload_id


def _status(fake_db, upload_id: str = "up-1") -> str:
    return next(row["status"] for row in fake_db.rows("uploads") if row["id"] == upload_id)


def test_initial_status_depends_on_invalid_rows() -> None:
    assert lifecycle.initial_status(0) is UploadStatus.READY
    assert lifecycle.initial_status(2) is UploadStatus.PENDING_VALIDATION


def test_register_creates_upload_in_initial_state(fake_db) -> None:
    upload = lifecycle.register("acct-1", "march.xlsx", invalid_count=1)

    assert upload.status is UploadStatus.PENDING_VALIDATION
    assert upload.owner_id == "acct-1"
    assert _status(fake_db, upload.id) == "pending_validation"


@pytest.mark.parametrize("start", ["ready", "failed"])
def test_startable_states_move_to_processing(fake_db, start: str) -> None:
    _upload(fake_db, start)

    upload = lifecycle.transition("up-1", UploadStatus.PROCESSING)

    assert upload.status is UploadStatus.PROCESSING
    assert _status(fake_db) == "processing"


def test_pending_validation_with_invalid_rows_cannot_start(fake_db) -> None:
    _upload(fake_db, "pending_validation")
    fake_db.tables["pending_deliveries"] = [{"id": "p1", "upload_id": "up-1", "is_valid": False}]

    with pytest.raises(InvalidTransition):
        lifecycle.transition("up-1", UploadStatus.PROCESSING)

    assert _status(fake_db) == "pending_validation"


def test_pending_validation_once_clear_can_start(fake_db) -> None:
    _upload(fake_db, "pending_validation")
    fake_db.tables["pending_deliveries"] = [{"id": "p1", "upload_id": "up-1", "is_valid": True}]

    assert lifecycle.evaluate_validation("up-1").clear
    assert lifecycle.transition("up-1", UploadStatus.PROCESSING).status is UploadStatus.PROCESSING


def test_reentering_processing_is_idempotent(fake_db) -> None:
    _upload(fake_db, "processing")
    calls_before = len(fake_db.calls)

    upload = lifecycle.transition("up-1", UploadStatus.PROCESSING)

    assert upload.status is UploadStatus.PROCESSING
    assert ("uploads", "update") not in fake_db.calls[calls_before:]


def test_done_upload_cannot_restart(fake_db) -> None:
    _upload(fake_db, "distances_done")

    with pytest.raises(InvalidTransition):
        lifecycle.transition("up-1", UploadStatus.PROCESSING)


def test_late_completion_after_failure_is_a_no_op(fake_db) -> None:
    _upload(fake_db, "processing")

    assert lifecycle.fail("up-1", reason="watchdog timeout") is True
    assert lifecycle.complete("up-1", total_legs=3, total_clients=1) is False

    assert _status(fake_db) == "failed"


def test_complete_records_totals(fake_db) -> None:
    _upload(fake_db, "processing")

    assert lifecycle.complete("up-1", total_legs=3, total_clients=2) is True

    row = fake_db.rows("uploads")[0]
    assert row["status"] == "distances_done"
    assert row["total_deliveries"] == 3
    assert row["total_clients"] == 2
    assert row["total_amount"] == 0


def test_fail_outside_processing_is_ignored(fake_db) -> None:
    _upload(fake_db, "distances_done")

    assert lifecycle.fail("up-1", reason="late error") is False
    assert _status(fake_db) == "distances_done"


def test_unknown_upload(fake_db) -> None:
    with pytest.raises(UploadNotFound):
        lifecycle.get_upload("missing")
