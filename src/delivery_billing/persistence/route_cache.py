"""Persistence for the normalised origin/destination distance cache."""

from __future__ import annotations

from typing import Optional

from ..db.supabase import require_supabase_client
from ..models.domain import CacheStatus, RouteCacheEntry

ROUTE_CACHE = "route_cache"


def fetch_entry(origin_norm: str, destination_norm: str) -> Optional[RouteCacheEntry]:
    supabase = require_supabase_client()
    response = (
        supabase.table(ROUTE_CACHE)
        .select("origin_norm, destination_norm, distance_meters, duration_seconds, status, error_message")
        .eq("origin_norm", origin_norm)
        .eq("destination_norm", destination_norm)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    if not rows:
        return None
    row = rows[0]
    try:
        status = CacheStatus(row.get("status"))
    except ValueError:
        return None
    return RouteCacheEntry(
        origin_norm=row["origin_norm"],
        destination_norm=row["destination_norm"],
        status=status,
        distance_meters=row.get("distance_meters"),
        duration_seconds=row.get("duration_seconds"),
        error_message=row.get("error_message"),
    )


def upsert_entry(entry: RouteCacheEntry) -> None:
    supabase = require_supabase_client()
    supabase.table(ROUTE_CACHE).upsert(
        {
            "origin_norm": entry.origin_norm,
            "destination_norm": entry.destination_norm,
            "distance_meters": entry.distance_meters,
            "duration_seconds": entry.duration_seconds,
            "status": entry.status.value,
            "error_message": entry.error_message,
        },
        on_conflict="origin_norm,destination_norm",
    ).execute()
