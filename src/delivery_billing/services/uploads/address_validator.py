"""Rule checks on French postal addresses entered in delivery spreadsheets."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_NUMBER_PATTERN = re.compile(r"^\d+")
_POSTAL_CODE_PATTERN = re.compile(r"^\d{5}$")
_DIGITS_ONLY = re.compile(r"^\d+$")
_GENERIC_STREETS = frozenset({"rue", "avenue", "av", "boulevard", "bd", "route", "chemin", "impasse"})


@dataclass(slots=True)
class AddressValidation:
    is_valid: bool
    cleaned_address: str
    issues: list[str] = field(default_factory=list)


def _clean(value: object) -> str:
    return "" if value is None else str(value).strip()


def validate_address(
    number: object,
    street: object,
    postal_code: object,
    city: object,
    country: object = None,
) -> AddressValidation:
    """Return the issue codes for one address.

    The street number must start with digits ("10", "10 bis" and "5A" pass),
    postal codes are five digits, and the country is optional. The cleaned
    address is built even when the address is invalid so it can be shown
    for correction.
    """
    n, s, pc, c, co = (_clean(part) for part in (number, street, postal_code, city, country))
    issues: list[str] = []

    if not n:
        issues.append("NUMERO_MANQUANT")
    elif not _NUMBER_PATTERN.match(n):
        issues.append("NUMERO_INVALIDE")

    if not s:
        issues.append("RUE_MANQUANTE")
    else:
        if len(s) < 3:
            issues.append("RUE_TROP_COURTE")
        if _DIGITS_ONLY.match(s):
            issues.append("RUE_INVALIDE")
        if s.lower().replace(".", "").strip() in _GENERIC_STREETS:
            issues.append("RUE_TROP_GENERIQUE")

    if not pc:
        issues.append("CODE_POSTAL_MANQUANT")
    elif not _POSTAL_CODE_PATTERN.match(pc):
        issues.append("CODE_POSTAL_INVALIDE")

    if not c:
        issues.append("VILLE_MANQUANTE")
    elif len(c) < 2:
        issues.append("VILLE_TROP_COURTE")

    cleaned = ", ".join(part for part in (n, s, pc, c, co) if part)
    return AddressValidation(is_valid=not issues, cleaned_address=cleaned, issues=issues)
