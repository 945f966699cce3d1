"""Helpers for the per-dependent structured demographic vault."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .constants import NESTED_PHI_KEY, STRUCTURED_PHI_FIELDS
from .errors import PhiValidationError, validation_error
from .models import PhiPayload, SeparatedRecord


def has_any_value(value: Any) -> bool:
    """Return True when ``value`` holds anything beyond blanks and empty containers."""

    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Mapping):
        return any(has_any_value(item) for item in value.values())
    if isinstance(value, (list, tuple, set)):
        return any(has_any_value(item) for item in value)
    return True


def has_phi_payload(payload: Any) -> bool:
    return isinstance(payload, Mapping) and has_any_value(payload)


def validate_phi_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate ``payload`` against the structured vault schema.

    Returns the payload with unset and ``None`` fields dropped so a merge
    never erases stored values it did not mention.
    """

    if not isinstance(payload, Mapping):
        raise PhiValidationError(
            "PHI payload must be an object", details={"phi": type(payload).__name__}
        )
    try:
        model = PhiPayload.model_validate(dict(payload))
    except ValidationError as exc:
        raise validation_error(exc, message="Invalid PHI payload") from exc
    return model.model_dump(exclude_none=True)


def separate_phi_payload(record: Mapping[str, Any]) -> SeparatedRecord:
    """Split structured demographic PHI out of a dependent record.

    Both the nested ``phi`` object and top-level demographic keys are lifted
    out; top-level keys win over nested ones with the same name. The returned
    ``sanitized`` record is a copy and never contains either.
    """

    if not isinstance(record, Mapping):
        raise PhiValidationError("Record must be an object")

    sanitized = copy.deepcopy(dict(record))
    combined: dict[str, Any] = {}

    nested = sanitized.pop(NESTED_PHI_KEY, None)
    if nested is not None:
        if not isinstance(nested, Mapping):
            raise PhiValidationError(
                "PHI payload must be an object", details={NESTED_PHI_KEY: type(nested).__name__}
            )
        combined.update(nested)

    for key in STRUCTURED_PHI_FIELDS:
        if key in sanitized:
            combined[key] = sanitized.pop(key)

    if not has_phi_payload(combined):
        return SeparatedRecord(sanitized=sanitized, phi_payload=None)
    return SeparatedRecord(sanitized=sanitized, phi_payload=validate_phi_payload(combined))


__all__ = [
    "has_any_value",
    "has_phi_payload",
    "separate_phi_payload",
    "validate_phi_payload",
]
