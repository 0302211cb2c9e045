"""Distance-tiered pricing: tier normalisation, matching and price computation."""

from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from ...errors import InvalidTierList, NoTierMatched
from ...models.domain import PriceCalculation, PricingTier

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def to_number(value: Any) -> Optional[float]:
    """Parse ints, floats and strings such as ``"12,5"``. Returns None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(" ", "").replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _field(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in row and row[name] not in (None, ""):
            return row[name]
    return None


def normalize_tiers(raw_tiers: Iterable[Mapping[str, Any] | PricingTier]) -> list[PricingTier]:
    """Drop unusable rows, default the tax rate to 0 and sort by range start.

    Accepts both the stored column names (``price_ht``, ``tva_rate``) and the
    domain names (``unit_price``, ``tax_rate``).
    """
    tiers: list[PricingTier] = []
    for raw in raw_tiers:
        if isinstance(raw, PricingTier):
            row: Mapping[str, Any] = {
                "range_start": raw.range_start,
                "range_end": raw.range_end,
                "unit_price": raw.unit_price,
                "tax_rate": raw.tax_rate,
            }
        else:
            row = raw
        start = to_number(_field(row, "range_start", "start"))
        price = to_number(_field(row, "unit_price", "price_ht", "price"))
        if start is None or price is None or start < 0 or price < 0:
            logger.debug(f"Ignoring unusable pricing row: {dict(row)}")
            continue
        end = to_number(_field(row, "range_end", "end"))
        tax_rate = to_number(_field(row, "tax_rate", "tva_rate", "tva")) or 0.0
        tiers.append(PricingTier(range_start=start, range_end=end, unit_price=price, tax_rate=tax_rate))

    if not tiers:
        raise InvalidTierList("Price list is empty or contains no valid tier.")

    tiers.sort(key=lambda tier: tier.range_start)
    for previous, current in zip(tiers, tiers[1:]):
        if previous.range_end is None or previous.range_end > current.range_start:
            logger.warning(
                f"Pricing tiers overlap: {tier_label(previous)} and {tier_label(current)}; first match wins"
            )
    return tiers


def _format_km(value: float) -> str:
    return f"{value:g}"


def tier_label(tier: PricingTier) -> str:
    if tier.range_end is None:
        return f"{_format_km(tier.range_start)}+ km"
    return f"{_format_km(tier.range_start)}-{_format_km(tier.range_end)} km"


def match_tier(distance_km: float, tiers: Sequence[PricingTier]) -> PricingTier:
    """First tier with ``start <= d`` and ``d < end`` (open end = no upper bound)."""
    for tier in tiers:
        if tier.range_start <= distance_km and (tier.range_end is None or distance_km < tier.range_end):
            return tier
    raise NoTierMatched(distance_km)


def round2(value: float | Decimal) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def calculate_price(distance_km: float, tiers: Sequence[PricingTier]) -> PriceCalculation:
    """Price one leg. Falls back to the lowest tier when nothing matches."""
    if not tiers:
        raise InvalidTierList("Price list is empty or contains no valid tier.")
    try:
        tier = match_tier(distance_km, tiers)
    except NoTierMatched as exc:
        tier = min(tiers, key=lambda item: item.range_start)
        logger.warning(f"{exc} Falling back to lowest tier {tier_label(tier)}")

    price_ht = round2(tier.unit_price)
    tax_amount = round2(Decimal(str(price_ht)) * Decimal(str(tier.tax_rate)) / Decimal(100))
    price_ttc = round2(Decimal(str(price_ht)) + Decimal(str(tax_amount)))
    return PriceCalculation(
        price_ht=price_ht,
        tax_amount=tax_amount,
        price_ttc=price_ttc,
        tax_rate=tier.tax_rate,
        applied_tier=tier_label(tier),
    )
