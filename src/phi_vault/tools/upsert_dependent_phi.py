"""Contracts and handler for the upsert_dependent_phi tool."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import VAULT_ID_KEY
from ..service import PhiProtectionService


class UpsertDependentPhiRequest(BaseModel):
    """Payload carrying a dependent record whose demographics must be vaulted."""

    model_config = ConfigDict(populate_by_name=True)

    dependent_id: str = Field(alias="dependentId", min_length=1)
    record: dict[str, Any]
    phi_vault_id: Optional[str] = Field(default=None, alias="phiVaultId", min_length=1)


class UpsertDependentPhiResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dependent_id: str = Field(alias="dependentId")
    record: dict[str, Any]
    phi_vault_id: Optional[str] = Field(default=None, alias="phiVaultId")
    has_phi: bool = Field(alias="hasPhi")


async def upsert_dependent_phi(
    service: PhiProtectionService, payload: UpsertDependentPhiRequest
) -> UpsertDependentPhiResponse:
    record = await service.upsert_dependent_phi(
        payload.dependent_id, payload.record, payload.phi_vault_id
    )
    vault_id = record.get(VAULT_ID_KEY)
    return UpsertDependentPhiResponse(
        dependent_id=payload.dependent_id,
        record=record,
        phi_vault_id=vault_id,
        has_phi=bool(vault_id),
    )


__all__ = ["UpsertDependentPhiRequest", "UpsertDependentPhiResponse", "upsert_dependent_phi"]
