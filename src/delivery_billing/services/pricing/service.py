"""Apply a price list to an upload's legs and keep aggregates in sync."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ...config import settings
from ...errors import UploadNotFound
from ...models.domain import PricingTier
from ...persistence import database
from ...persistence import pricing as pricing_rows
from ..perf import measure
from .engine import calculate_price, normalize_tiers, round2, to_number

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BillingSummary:
    upload: dict
    clients: list[dict] = field(default_factory=list)


@dataclass(slots=True)
class PricingSummary:
    upload_id: str
    total_legs: int
    updated_legs: int
    non_priced: int
    summary: BillingSummary


def _require_upload(upload_id: str) -> dict:
    row = database.get_upload(upload_id)
    if not row:
        raise UploadNotFound(upload_id)
    return row


def _unpriced(leg: Mapping[str, Any]) -> dict:
    return {
        **leg,
        "price_ht": None,
        "price_ttc": None,
        "tva_amount": None,
        "tva_rate": None,
        "applied_range": None,
    }


def recompute_client_totals(upload_id: str) -> int:
    """Rebuild every client's leg count and HT/TTC totals from the legs table."""
    legs = database.get_legs(upload_id, "client_id, price_ht, price_ttc")
    totals: dict[str, dict[str, Decimal | int]] = defaultdict(
        lambda: {"count": 0, "ht": Decimal(0), "ttc": Decimal(0)}
    )
    for leg in legs:
        client_id = leg.get("client_id")
        if not client_id:
            continue
        entry = totals[str(client_id)]
        entry["count"] += 1
        entry["ht"] += Decimal(str(leg.get("price_ht") or 0))
        entry["ttc"] += Decimal(str(leg.get("price_ttc") or 0))

    clients = database.get_clients(upload_id, "id, upload_id, name")
    payload = []
    for client in clients:
        entry = totals.get(str(client["id"]), {"count": 0, "ht": Decimal(0), "ttc": Decimal(0)})
        payload.append(
            {
                "id": client["id"],
                "upload_id": client.get("upload_id", upload_id),
                "name": client["name"],
                "total_deliveries": entry["count"],
                "total_amount_ht": round2(entry["ht"]),
                "total_amount_ttc": round2(entry["ttc"]),
            }
        )
    database.update_clients_totals(payload, batch_size=settings.leg_batch_size)
    return len(payload)


def recompute_upload_totals(upload_id: str) -> None:
    """Leg count, client count and TTC total of the upload, read back from storage."""
    legs = database.get_legs(upload_id, "id, price_ttc")
    clients = database.get_clients(upload_id, "id")
    total_amount = round2(sum((Decimal(str(leg.get("price_ttc") or 0)) for leg in legs), Decimal(0)))
    database.update_upload_totals(
        upload_id,
        {
            "total_deliveries": len(legs),
            "total_clients": len(clients),
            "total_amount": total_amount,
        },
    )


def apply_pricing(upload_id: str, raw_tiers: Iterable[Mapping[str, Any] | PricingTier]) -> PricingSummary:
    """Store ``raw_tiers`` as the upload's price list and price every leg.

    Raises :class:`InvalidTierList` before any write when no tier is usable.
    Applying the same list twice yields the same prices and totals.
    """
    tiers = normalize_tiers(raw_tiers)
    _require_upload(upload_id)

    with measure("pricing.apply", upload_id=upload_id, tiers=len(tiers)) as meta:
        pricing_rows.replace_tiers(upload_id, tiers)

        legs = database.get_legs(upload_id)
        updates: list[dict] = []
        non_priced = 0
        for leg in legs:
            distance = to_number(leg.get("distance_km"))
            if distance is None:
                non_priced += 1
                updates.append(_unpriced(leg))
                continue
            calc = calculate_price(distance, tiers)
            updates.append(
                {
                    **leg,
                    "price_ht": calc.price_ht,
                    "price_ttc": calc.price_ttc,
                    "tva_amount": calc.tax_amount,
                    "tva_rate": calc.tax_rate,
                    "applied_range": calc.applied_tier,
                }
            )

        database.update_leg_prices(updates, batch_size=settings.leg_batch_size)
        recompute_client_totals(upload_id)
        recompute_upload_totals(upload_id)
        meta.update(legs=len(legs), non_priced=non_priced)

    logger.info(f"Pricing applied to upload {upload_id}: {len(updates)} legs, {non_priced} without distance")
    return PricingSummary(
        upload_id=upload_id,
        total_legs=len(legs),
        updated_legs=len(updates),
        non_priced=non_priced,
        summary=get_billing_summary(upload_id),
    )


def get_pricing_config(upload_id: str) -> list[PricingTier]:
    return pricing_rows.get_tiers(upload_id)


def get_billing_summary(upload_id: str) -> BillingSummary:
    upload = _require_upload(upload_id)
    clients = database.get_clients(upload_id, "id, name, total_deliveries, total_amount_ht, total_amount_ttc")
    return BillingSummary(
        upload={
            key: upload.get(key)
            for key in ("id", "status", "total_deliveries", "total_clients", "total_amount", "created_at")
        },
        clients=clients,
    )
