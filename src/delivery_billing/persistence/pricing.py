"""Persistence for per-upload price lists."""

from __future__ import annotations

from typing import Sequence

from ..db.supabase import require_supabase_client
from ..models.domain import PricingTier

PRICING_CONFIG = "pricing_config"


def replace_tiers(upload_id: str, tiers: Sequence[PricingTier]) -> None:
    """Delete the upload's tier list and insert the new one."""
    supabase = require_supabase_client()
    supabase.table(PRICING_CONFIG).delete().eq("upload_id", upload_id).execute()
    if not tiers:
        return
    supabase.table(PRICING_CONFIG).insert(
        [
            {
                "upload_id": upload_id,
                "range_start": tier.range_start,
                "range_end": tier.range_end,
                "price_ht": tier.unit_price,
                "tva_rate": tier.tax_rate,
            }
            for tier in tiers
        ]
    ).execute()


def get_tiers(upload_id: str) -> list[PricingTier]:
    supabase = require_supabase_client()
    response = (
        supabase.table(PRICING_CONFIG)
        .select("range_start, range_end, price_ht, tva_rate")
        .eq("upload_id", upload_id)
        .order("range_start")
        .execute()
    )
    tiers = [
        PricingTier(
            range_start=float(row["range_start"]),
            range_end=float(row["range_end"]) if row.get("range_end") is not None else None,
            unit_price=float(row["price_ht"]),
            tax_rate=float(row.get("tva_rate") or 0.0),
        )
        for row in (response.data or [])
    ]
    return sorted(tiers, key=lambda tier: tier.range_start)
