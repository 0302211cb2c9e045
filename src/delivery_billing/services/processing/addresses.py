"""Address and date helpers used when turning rows into legs."""

from __future__ import annotations

from typing import Optional

from ...config import settings
from ...models.domain import LegInput


def _clean(value: object) -> str:
    return "" if value is None else str(value).strip()


def build_full_address(leg: LegInput, default_country: str | None = None) -> str:
    """Join number/street, postal code/city and country into one line.

    ``FRA`` is spelled out, spreadsheet numbers such as ``12.0`` lose their
    decimal part, and the default country is appended when none is given.
    """
    default_country = default_country if default_country is not None else settings.default_country
    number = _clean(leg.number)
    if number.endswith(".0"):
        number = number[:-2]

    raw_country = _clean(leg.country)
    country = "France" if raw_country.upper() == "FRA" else raw_country

    parts = [
        " ".join(part for part in (number, _clean(leg.street)) if part),
        " ".join(part for part in (_clean(leg.postal_code), _clean(leg.city)) if part),
        country,
    ]
    joined = ", ".join(part for part in parts if part)
    if not country and joined and default_country:
        return f"{joined}, {default_country}"
    return joined


def resolve_origin(leg: LegInput, upload_warehouse_address: str | None) -> str:
    """Leg warehouse address, else the upload's, else the warehouse label."""
    for candidate in (leg.warehouse_address, upload_warehouse_address, leg.warehouse):
        text = _clean(candidate)
        if text:
            return text
    return ""


def client_key(name: str | None, unknown: str | None = None) -> str:
    """Grouping key for a client: trimmed, case-sensitive, never empty."""
    return _clean(name) or (unknown if unknown is not None else settings.unknown_client_name)


def parse_date(value: str | None) -> Optional[str]:
    """``dd/mm/yyyy`` -> ``yyyy-mm-dd``. Any other format is kept as is."""
    if not value:
        return None
    parts = str(value).strip().split("/")
    if len(parts) == 3:
        day, month, year = parts
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return str(value).strip()
