"""Registry of free-text fields that may carry PHI, per resource type."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Dict, Tuple

from .models import PhiFieldSpec

DEFAULT_PHI_FIELDS: Mapping[str, Tuple[str, ...]] = {
    "visit": ("reason", "notes"),
    "condition": ("notes",),
    "medication": ("notes",),
    "allergy": ("notes",),
    "immunization": ("notes",),
    "imaging": ("findings", "impression", "notes"),
    "lab": ("notes",),
    "procedure": ("notes",),
    "journal": ("content",),
}


def coerce_field_specs(fields: Iterable[Any]) -> Tuple[PhiFieldSpec, ...]:
    """Accept specs, mappings or bare dotted paths; drop repeated paths."""

    specs: Dict[str, PhiFieldSpec] = {}
    for item in fields:
        if isinstance(item, PhiFieldSpec):
            spec = item
        elif isinstance(item, str):
            spec = PhiFieldSpec(path=item)
        else:
            spec = PhiFieldSpec.model_validate(item)
        specs.setdefault(spec.path, spec)
    return tuple(specs.values())


class PhiFieldRegistry:
    """Maps resource types to the fields scanned on write."""

    def __init__(self, fields: Mapping[str, Iterable[Any]] | None = None) -> None:
        source = DEFAULT_PHI_FIELDS if fields is None else fields
        self._fields: Dict[str, Tuple[PhiFieldSpec, ...]] = {
            resource_type.lower(): coerce_field_specs(specs)
            for resource_type, specs in source.items()
        }

    def register(self, resource_type: str, fields: Iterable[Any]) -> None:
        self._fields[resource_type.lower()] = coerce_field_specs(fields)

    def phi_fields(self, resource_type: str) -> Tuple[PhiFieldSpec, ...]:
        return self._fields.get(resource_type.lower(), ())

    def resource_types(self) -> Tuple[str, ...]:
        return tuple(sorted(self._fields))

    def __contains__(self, resource_type: object) -> bool:
        return isinstance(resource_type, str) and resource_type.lower() in self._fields


__all__ = ["DEFAULT_PHI_FIELDS", "PhiFieldRegistry", "coerce_field_specs"]
