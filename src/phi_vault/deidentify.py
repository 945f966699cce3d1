"""Derive a coarse demographic profile from the structured vault."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Optional

from .models import DeidentifiedProfile, StructuredVaultDocument


def _parse_dob(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    candidate = value.strip()
    try:
        return date.fromisoformat(candidate[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%B %d, %Y", "%b %d, %Y"):
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None


def _age_on(dob: date, today: date) -> int:
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def _as_mapping(document: StructuredVaultDocument | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(document, StructuredVaultDocument):
        return document.model_dump()
    return document


def derive_profile(
    document: StructuredVaultDocument | Mapping[str, Any] | None,
    *,
    today: Optional[date] = None,
) -> DeidentifiedProfile:
    """Return age, birth year, sex and state/country location only."""

    if not document:
        return DeidentifiedProfile()

    data = _as_mapping(document)
    today = today or date.today()
    dob = _parse_dob(data.get("full_dob"))

    stored_year = data.get("birth_year")
    birth_year: Optional[int] = stored_year if isinstance(stored_year, int) and stored_year else None
    if birth_year is None and dob is not None:
        birth_year = dob.year

    age: Optional[int] = None
    if dob is not None:
        age = _age_on(dob, today)
    elif birth_year is not None:
        age = today.year - birth_year

    sex = data.get("sex") or None

    location = None
    address = data.get("address")
    if isinstance(address, Mapping):
        parts = [
            str(address[key]).strip()
            for key in ("state", "country")
            if address.get(key) and str(address[key]).strip()
        ]
        location = ", ".join(parts) or None

    return DeidentifiedProfile(age=age, birth_year=birth_year, sex=sex, location=location)


__all__ = ["derive_profile"]
