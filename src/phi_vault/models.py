# ruff: noqa: UP007
"""Pydantic models describing spans, vault records and derived profiles."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Span(BaseModel):
    """One detected PHI-like occurrence inside a string."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)
    score: float = 0.0
    entity_type: str = Field(min_length=1)
    text: Optional[str] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: Span) -> bool:
        return self.start < other.end and other.start < self.end


class PhiFieldSpec(BaseModel):
    """Declares a record field scanned for PHI and how it is redacted."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(min_length=1)
    strategy: Literal["substring", "whole-field"] = "substring"


class VaultContext(BaseModel):
    """Identifies the resource field a vaulted value belongs to."""

    model_config = ConfigDict(frozen=True)

    resource_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    dependent_id: str = Field(min_length=1)
    field_path: str = Field(min_length=1)


class PhiEntryInput(BaseModel):
    """Unstructured vault entry as submitted to the store (no id or timestamps)."""

    model_config = ConfigDict(frozen=True)

    dependent_id: str
    resource_type: str
    resource_id: str
    field_path: str
    value: str
    phi_type: Optional[str] = None

    def dedup_key(self) -> tuple[str, str, str, str, Optional[str]]:
        return (self.dependent_id, self.resource_id, self.field_path, self.value, self.phi_type)


class UnstructuredVaultEntry(PhiEntryInput):
    """Persisted free-text PHI occurrence tied to one resource field."""

    id: str
    created_at: datetime
    updated_at: datetime


class LegalName(BaseModel):
    model_config = ConfigDict(extra="forbid")

    given: Optional[str] = None
    family: Optional[str] = None


class Contact(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone: Optional[str] = None
    email: Optional[str] = None


class Address(BaseModel):
    model_config = ConfigDict(extra="forbid")

    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class PhiPayload(BaseModel):
    """Demographic PHI accepted for the structured vault."""

    model_config = ConfigDict(extra="forbid")

    legal_name: Optional[LegalName] = None
    preferred_name: Optional[str] = None
    relationship_note: Optional[str] = None
    full_dob: Optional[str] = None
    birth_year: Optional[int] = Field(default=None, ge=1850, le=2200)
    sex: Optional[str] = None
    contact: Optional[Contact] = None
    address: Optional[Address] = None


class StructuredVaultDocument(PhiPayload):
    """Per-dependent structured vault document as read back from the store."""

    model_config = ConfigDict(extra="ignore")

    id: str
    dependent_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


class DeidentifiedProfile(BaseModel):
    """Coarse demographic summary safe to attach to general read responses."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    age: Optional[int] = None
    birth_year: Optional[int] = None
    sex: Optional[str] = None
    location: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Substitution(BaseModel):
    """A single span replaced by a vault token during redaction."""

    model_config = ConfigDict(frozen=True)

    field_path: str
    entry_id: str
    entity_type: str
    token: str
    start: int
    end: int


class SeparatedRecord(BaseModel):
    """Result of splitting demographic PHI out of a dependent record."""

    sanitized: dict[str, Any] = Field(default_factory=dict)
    phi_payload: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _drop_empty_payload(self) -> SeparatedRecord:
        if self.phi_payload is not None and not self.phi_payload:
            self.phi_payload = None
        return self


__all__ = [
    "Address",
    "Contact",
    "DeidentifiedProfile",
    "LegalName",
    "PhiEntryInput",
    "PhiFieldSpec",
    "PhiPayload",
    "SeparatedRecord",
    "Span",
    "StructuredVaultDocument",
    "Substitution",
    "UnstructuredVaultEntry",
    "VaultContext",
]
