"""Contracts and handler for the sanitize_fields tool."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import PhiFieldSpec
from ..service import PhiProtectionService


class SanitizeFieldsRequest(BaseModel):
    """Payload for tokenising PHI in a record before it is persisted."""

    model_config = ConfigDict(populate_by_name=True)

    resource_type: str = Field(alias="resourceType", min_length=1, max_length=64)
    resource_id: str = Field(alias="resourceId", min_length=1)
    dependent_id: str = Field(alias="dependentId", min_length=1)
    payload: dict[str, Any]
    phi_fields: Optional[list[PhiFieldSpec]] = Field(default=None, alias="phiFields")
    known_identifiers: Optional[list[str]] = Field(default=None, alias="knownIdentifiers")

    @field_validator("resource_type")
    @classmethod
    def _normalise_type(cls, value: str) -> str:
        resource_type = value.strip().lower()
        if not resource_type:
            raise ValueError("resourceType must be provided")
        return resource_type


class SanitizeFieldsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_id: str = Field(alias="resourceId")
    payload: dict[str, Any]


async def sanitize_fields(
    service: PhiProtectionService, payload: SanitizeFieldsRequest
) -> SanitizeFieldsResponse:
    if payload.phi_fields is None:
        sanitized = await service.vault_and_sanitize(
            payload.resource_type,
            payload.resource_id,
            payload.dependent_id,
            payload.payload,
            payload.known_identifiers,
        )
    else:
        sanitized = await service.vault_and_sanitize_fields(
            payload.resource_type,
            payload.resource_id,
            payload.dependent_id,
            payload.payload,
            payload.phi_fields,
            payload.known_identifiers,
        )
    return SanitizeFieldsResponse(resource_id=payload.resource_id, payload=sanitized)


__all__ = ["SanitizeFieldsRequest", "SanitizeFieldsResponse", "sanitize_fields"]
