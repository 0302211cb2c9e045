"""Database persistence for uploads, clients, pending legs and legs."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from ..db.supabase import require_supabase_client

logger = logging.getLogger(__name__)

UPLOADS = "uploads"
CLIENTS = "clients"
LEGS = "deliveries"
PENDING_LEGS = "pending_deliveries"


def chunked(rows: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


def create_upload(owner_id: str, filename: str | None, status: str, warehouse_address: str | None = None) -> dict:
    supabase = require_supabase_client()
    record: dict[str, Any] = {
        "user_id": owner_id,
        "filename": filename,
        "status": status,
        "total_deliveries": 0,
        "total_clients": 0,
        "total_amount": 0,
    }
    if warehouse_address:
        record["warehouse_address"] = warehouse_address
    response = supabase.table(UPLOADS).insert(record).execute()
    rows = response.data or []
    if not rows:
        raise RuntimeError("Upload insert returned no row.")
    return rows[0]


def get_upload(upload_id: str) -> dict | None:
    supabase = require_supabase_client()
    response = supabase.table(UPLOADS).select("*").eq("id", upload_id).limit(1).execute()
    rows = response.data or []
    return rows[0] if rows else None


def list_uploads_for_owner(owner_id: str) -> list[dict]:
    supabase = require_supabase_client()
    response = (
        supabase.table(UPLOADS)
        .select("id, filename, status, total_deliveries, total_clients, total_amount, created_at")
        .eq("user_id", owner_id)
        .order("created_at", desc=True)
        .execute()
    )
    return list(response.data or [])


def update_upload_totals(upload_id: str, totals: dict[str, Any]) -> None:
    """Write aggregate columns. Status is owned by the lifecycle module."""
    if "status" in totals:
        raise ValueError("Upload status must be changed through the lifecycle module.")
    supabase = require_supabase_client()
    supabase.table(UPLOADS).update(totals).eq("id", upload_id).execute()


def update_upload_status(
    upload_id: str,
    status: str,
    *,
    expected: Sequence[str] | None = None,
    extra: dict[str, Any] | None = None,
) -> dict | None:
    """Set ``status`` only while the current status is one of ``expected``.

    Returns the updated row, or None when the guard did not match.
    """
    supabase = require_supabase_client()
    payload: dict[str, Any] = {**(extra or {}), "status": status}
    query = supabase.table(UPLOADS).update(payload).eq("id", upload_id)
    if expected:
        query = query.in_("status", list(expected))
    response = query.execute()
    rows = response.data or []
    return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Pending legs (parsed rows awaiting processing)
# ---------------------------------------------------------------------------


def insert_pending_legs(rows: Sequence[dict], batch_size: int = 200) -> int:
    if not rows:
        return 0
    supabase = require_supabase_client()
    inserted = 0
    for batch in chunked(rows, batch_size):
        supabase.table(PENDING_LEGS).insert(list(batch)).execute()
        inserted += len(batch)
    logger.info(f"Inserted {inserted} pending legs")
    return inserted


def get_pending_legs(upload_id: str) -> list[dict]:
    supabase = require_supabase_client()
    response = supabase.table(PENDING_LEGS).select("*").eq("upload_id", upload_id).execute()
    return list(response.data or [])


def get_pending_leg(pending_id: str) -> dict | None:
    supabase = require_supabase_client()
    response = supabase.table(PENDING_LEGS).select("*").eq("id", pending_id).limit(1).execute()
    rows = response.data or []
    return rows[0] if rows else None


def get_invalid_pending_legs(upload_id: str) -> list[dict]:
    supabase = require_supabase_client()
    response = (
        supabase.table(PENDING_LEGS)
        .select("*")
        .eq("upload_id", upload_id)
        .eq("is_valid", False)
        .execute()
    )
    return list(response.data or [])


def update_pending_leg(pending_id: str, fields: dict[str, Any]) -> None:
    supabase = require_supabase_client()
    supabase.table(PENDING_LEGS).update(fields).eq("id", pending_id).execute()


def delete_pending_legs(upload_id: str) -> None:
    supabase = require_supabase_client()
    supabase.table(PENDING_LEGS).delete().eq("upload_id", upload_id).execute()


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def upsert_clients(rows: Sequence[dict]) -> None:
    """Upsert clients in one call (requires UNIQUE(upload_id, name))."""
    if not rows:
        return
    supabase = require_supabase_client()
    supabase.table(CLIENTS).upsert(list(rows), on_conflict="upload_id,name").execute()


def get_clients(upload_id: str, columns: str = "*") -> list[dict]:
    supabase = require_supabase_client()
    response = (
        supabase.table(CLIENTS)
        .select(columns)
        .eq("upload_id", upload_id)
        .order("name")
        .execute()
    )
    return list(response.data or [])


def update_clients_totals(rows: Sequence[dict], batch_size: int = 200) -> None:
    """Batch-update client aggregates keyed by client id."""
    if not rows:
        return
    supabase = require_supabase_client()
    for batch in chunked(rows, batch_size):
        supabase.table(CLIENTS).upsert(list(batch), on_conflict="id").execute()


# ---------------------------------------------------------------------------
# Legs
# ---------------------------------------------------------------------------


def delete_legs(upload_id: str) -> None:
    supabase = require_supabase_client()
    supabase.table(LEGS).delete().eq("upload_id", upload_id).execute()


def insert_legs(rows: Sequence[dict], batch_size: int = 200) -> int:
    if not rows:
        return 0
    supabase = require_supabase_client()
    inserted = 0
    for batch in chunked(rows, batch_size):
        supabase.table(LEGS).insert(list(batch)).execute()
        inserted += len(batch)
    return inserted


def get_legs(upload_id: str, columns: str = "*") -> list[dict]:
    supabase = require_supabase_client()
    response = supabase.table(LEGS).select(columns).eq("upload_id", upload_id).execute()
    return list(response.data or [])


def update_leg_prices(rows: Sequence[dict], batch_size: int = 200) -> None:
    """Write price fields for many legs at once (upsert keyed by leg id)."""
    if not rows:
        return
    supabase = require_supabase_client()
    for batch in chunked(rows, batch_size):
        supabase.table(LEGS).upsert(list(batch), on_conflict="id").execute()
