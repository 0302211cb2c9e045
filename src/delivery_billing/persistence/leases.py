"""Row-based processing leases for multi-process deployments."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from postgrest.exceptions import APIError

from ..db.supabase import require_supabase_client

logger = logging.getLogger(__name__)

PROCESSING_LEASES = "processing_leases"


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


def try_insert_lease(key: str, token: str, ttl_seconds: float) -> bool:
    """Claim ``key`` unless a live lease row exists. Expired rows are reclaimed."""
    supabase = require_supabase_client()
    now = datetime.now(timezone.utc)
    supabase.table(PROCESSING_LEASES).delete().eq("upload_id", key).lt("expires_at", _iso(now)).execute()
    try:
        supabase.table(PROCESSING_LEASES).insert(
            {
                "upload_id": key,
                "token": token,
                "expires_at": _iso(now + timedelta(seconds=ttl_seconds)),
            }
        ).execute()
    except APIError as exc:
        logger.info(f"Lease for {key} is held elsewhere: {exc}")
        return False
    return True


def delete_lease(key: str, token: str) -> bool:
    supabase = require_supabase_client()
    response = (
        supabase.table(PROCESSING_LEASES)
        .delete()
        .eq("upload_id", key)
        .eq("token", token)
        .execute()
    )
    return bool(response.data)


def lease_exists(key: str, token: Optional[str] = None) -> bool:
    """True while a live lease row exists for ``key`` (held by ``token`` if given)."""
    supabase = require_supabase_client()
    query = (
        supabase.table(PROCESSING_LEASES)
        .select("upload_id")
        .eq("upload_id", key)
        .gte("expires_at", _iso(datetime.now(timezone.utc)))
    )
    if token is not None:
        query = query.eq("token", token)
    response = query.limit(1).execute()
    return bool(response.data)
