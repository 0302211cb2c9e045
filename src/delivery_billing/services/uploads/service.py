"""Upload intake, address correction and start-processing."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping, Optional, Sequence

from ...config import settings
from ...errors import (
    AccessDenied,
    ConcurrencyExhausted,
    InsufficientCredits,
    InvalidTransition,
    PendingLegNotFound,
    ProfileNotFound,
)
from ...models.domain import LegInput, Upload, UploadStatus
from ...persistence import database
from .. import lifecycle
from ..credits.ledger import CreditLedger
from ..perf import measure
from ..pricing.engine import round2
from ..processing.orchestrator import ProcessingOrchestrator
from .address_validator import AddressValidation, validate_address

logger = logging.getLogger(__name__)


class StartOutcome(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"
    ALREADY_DONE = "already_done"
    REJECTED = "rejected"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    PROFILE_NOT_FOUND = "profile_not_found"


@dataclass(slots=True)
class StartResult:
    outcome: StartOutcome
    upload_id: str
    message: str
    invalid_count: int = 0
    total_legs: int = 0
    required: Optional[int] = None
    available: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.outcome in (StartOutcome.ACCEPTED, StartOutcome.ALREADY_RUNNING, StartOutcome.ALREADY_DONE)


@dataclass(slots=True)
class IntakeResult:
    upload_id: str
    total: int
    valid_count: int
    invalid_count: int

    @property
    def needs_validation(self) -> bool:
        return self.invalid_count > 0


@dataclass(slots=True)
class CorrectionResult:
    success: bool
    issues: list[str] = field(default_factory=list)
    remaining_invalid: int = 0

    @property
    def all_valid(self) -> bool:
        return self.success and self.remaining_invalid == 0


@lru_cache
def get_orchestrator() -> ProcessingOrchestrator:
    return ProcessingOrchestrator()


@lru_cache
def get_ledger() -> CreditLedger:
    return CreditLedger()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_owned_upload(upload_id: str, account_id: str | None) -> Upload:
    """Load an upload, raising :class:`AccessDenied` when ``account_id`` is not its owner."""
    upload = lifecycle.get_upload(upload_id)
    if account_id is not None and upload.owner_id != account_id:
        raise AccessDenied(upload_id)
    return upload


def get_status(upload_id: str, account_id: str | None = None) -> dict:
    get_owned_upload(upload_id, account_id)
    return database.get_upload(upload_id) or {}


def list_uploads(account_id: str) -> list[dict]:
    return database.list_uploads_for_owner(account_id)


def _parse_issues(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        return [str(item) for item in parsed] if isinstance(parsed, list) else [str(parsed)]
    return [str(item) for item in value]


def get_invalid_addresses(upload_id: str) -> list[dict]:
    return [{**row, "issues": _parse_issues(row.get("issues"))} for row in database.get_invalid_pending_legs(upload_id)]


def list_clients_with_totals(upload_id: str) -> list[dict]:
    """Clients of an upload with counts and amounts summed from their legs."""
    clients = database.get_clients(upload_id, "id, name, address, postal_code, city, country")
    legs = database.get_legs(upload_id, "client_id, price_ht, price_ttc")
    totals: dict[str, list] = defaultdict(lambda: [0, Decimal(0), Decimal(0)])
    for leg in legs:
        entry = totals[str(leg.get("client_id"))]
        entry[0] += 1
        entry[1] += Decimal(str(leg.get("price_ht") or 0))
        entry[2] += Decimal(str(leg.get("price_ttc") or 0))

    result = []
    for client in clients:
        count, ht, ttc = totals.get(str(client["id"]), (0, Decimal(0), Decimal(0)))
        result.append(
            {
                **client,
                "total_deliveries": count,
                "total_amount_ht": round2(ht),
                "total_amount_ttc": round2(ttc),
            }
        )
    return result


def list_legs(upload_id: str) -> list[dict]:
    """Legs of an upload, each tagged with its client's name."""
    names = {str(row["id"]): row["name"] for row in database.get_clients(upload_id, "id, name")}
    legs = database.get_legs(upload_id)
    return [{**leg, "client_name": names.get(str(leg.get("client_id")))} for leg in legs]


# ---------------------------------------------------------------------------
# Intake and address correction
# ---------------------------------------------------------------------------


def _pending_row(upload_id: str, leg: LegInput, validation: AddressValidation) -> dict:
    return {
        "upload_id": upload_id,
        "client_name": leg.client_name,
        "original_number": leg.number,
        "original_street": leg.street,
        "original_postal_code": leg.postal_code,
        "original_city": leg.city,
        "original_country": leg.country,
        "full_address": validation.cleaned_address,
        "issues": validation.issues,
        "is_valid": validation.is_valid,
        "delivery_date": leg.date,
        "warehouse": leg.warehouse,
        "warehouse_address": leg.warehouse_address,
        "driver": leg.driver,
        "task_id": leg.task_id,
        "service_type": leg.service_type,
        "status": leg.status,
    }


def create_upload(
    owner_id: str,
    filename: str | None,
    rows: Sequence[LegInput],
    warehouse_address: str | None = None,
) -> IntakeResult:
    """Register parsed spreadsheet rows as a new upload awaiting processing."""
    with measure("intake.total", rows=len(rows)) as meta:
        checks = [validate_address(r.number, r.street, r.postal_code, r.city, r.country) for r in rows]
        invalid_count = sum(1 for check in checks if not check.is_valid)

        upload = lifecycle.register(
            owner_id, filename, invalid_count=invalid_count, warehouse_address=warehouse_address
        )
        pending = [_pending_row(upload.id, leg, check) for leg, check in zip(rows, checks)]
        database.insert_pending_legs(pending, batch_size=settings.leg_batch_size)
        database.update_upload_totals(upload.id, {"total_deliveries": len(rows)})
        meta.update(upload_id=upload.id, invalid=invalid_count)

    return IntakeResult(
        upload_id=upload.id,
        total=len(rows),
        valid_count=len(rows) - invalid_count,
        invalid_count=invalid_count,
    )


def correct_address(
    upload_id: str,
    pending_id: str,
    correction: Mapping[str, Any],
    account_id: str | None = None,
) -> CorrectionResult:
    """Store a corrected address for one pending row once it passes the rule checks."""
    upload = get_owned_upload(upload_id, account_id)
    if upload.status not in (UploadStatus.READY, UploadStatus.PENDING_VALIDATION, UploadStatus.FAILED):
        raise InvalidTransition(upload_id, upload.status.value, UploadStatus.PENDING_VALIDATION.value)

    pending = database.get_pending_leg(pending_id)
    if not pending or str(pending.get("upload_id")) != str(upload_id):
        raise PendingLegNotFound(pending_id)

    values = {key: correction.get(key) for key in ("number", "street", "postal_code", "city", "country")}
    validation = validate_address(**values)
    if not validation.is_valid:
        return CorrectionResult(success=False, issues=validation.issues)

    database.update_pending_leg(
        pending_id,
        {
            "corrected_number": values["number"],
            "corrected_street": values["street"],
            "corrected_postal_code": values["postal_code"],
            "corrected_city": values["city"],
            "corrected_country": values["country"],
            "full_address": validation.cleaned_address,
            "is_valid": True,
            "issues": [],
        },
    )
    state = lifecycle.evaluate_validation(upload_id)
    logger.info(f"Address {pending_id} corrected for upload {upload_id}; {state.invalid_count} invalid left")
    return CorrectionResult(success=True, remaining_invalid=state.invalid_count)


def leg_from_pending(row: Mapping[str, Any]) -> LegInput:
    """Corrected address fields win over the original ones."""

    def pick(name: str) -> str:
        value = row.get(f"corrected_{name}") or row.get(f"original_{name}")
        return "" if value is None else str(value)

    return LegInput(
        client_name=row.get("client_name") or "",
        number=pick("number"),
        street=pick("street"),
        postal_code=pick("postal_code"),
        city=pick("city"),
        country=pick("country"),
        date=row.get("delivery_date"),
        warehouse=row.get("warehouse"),
        warehouse_address=row.get("warehouse_address"),
        driver=row.get("driver"),
        task_id=row.get("task_id"),
        service_type=row.get("service_type"),
        status=row.get("status"),
    )


# ---------------------------------------------------------------------------
# Start processing
# ---------------------------------------------------------------------------


def start_processing(
    upload_id: str,
    account_id: str,
    *,
    orchestrator: ProcessingOrchestrator | None = None,
    ledger: CreditLedger | None = None,
) -> StartResult:
    """Consume credits and launch the processing run in the background.

    Expected outcomes (already running, invalid rows left, not enough
    credits...) come back as a :class:`StartResult`. Unknown uploads and
    foreign owners raise.
    """
    orchestrator = orchestrator or get_orchestrator()
    ledger = ledger or get_ledger()

    lease = orchestrator.try_acquire(upload_id)
    if lease is None:
        return StartResult(StartOutcome.ALREADY_RUNNING, upload_id, "Processing already in progress.")

    launched = False
    try:
        upload = get_owned_upload(upload_id, account_id)
        if upload.status == UploadStatus.PROCESSING:
            return StartResult(StartOutcome.ALREADY_RUNNING, upload_id, "Processing already in progress.")
        if upload.status == UploadStatus.DISTANCES_DONE:
            return StartResult(StartOutcome.ALREADY_DONE, upload_id, "Processing already completed.")

        validation = lifecycle.evaluate_validation(upload_id)
        if not validation.clear:
            return StartResult(
                StartOutcome.REJECTED,
                upload_id,
                f"{validation.invalid_count} invalid addresses remaining.",
                invalid_count=validation.invalid_count,
            )

        legs = [leg_from_pending(row) for row in database.get_pending_legs(upload_id)]

        try:
            ledger.consume(account_id, len(legs))
        except InsufficientCredits as exc:
            return StartResult(
                StartOutcome.INSUFFICIENT_CREDITS,
                upload_id,
                str(exc),
                required=exc.required,
                available=exc.available,
            )
        except ProfileNotFound as exc:
            return StartResult(StartOutcome.PROFILE_NOT_FOUND, upload_id, str(exc))
        except ConcurrencyExhausted as exc:
            return StartResult(StartOutcome.CONCURRENCY_CONFLICT, upload_id, str(exc))

        lifecycle.transition(upload_id, UploadStatus.PROCESSING)
        orchestrator.launch(upload_id, legs, lease)
        launched = True
        logger.info(f"Processing launched for upload {upload_id} ({len(legs)} legs)")
        return StartResult(StartOutcome.ACCEPTED, upload_id, "Processing started.", total_legs=len(legs))
    finally:
        if not launched:
            orchestrator.release(upload_id, lease)
