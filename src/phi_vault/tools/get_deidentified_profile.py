"""Contracts and handler for the get_deidentified_profile tool."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import PhiErrorCode, PhiVaultError
from ..models import DeidentifiedProfile
from ..service import PhiProtectionService


class GetDeidentifiedProfileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dependent_id: str = Field(alias="dependentId", min_length=1)


class GetDeidentifiedProfileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dependent_id: str = Field(alias="dependentId")
    profile: Optional[DeidentifiedProfile] = None


class ProfileNotFoundError(PhiVaultError):
    """Raised when a dependent has no structured demographic vault."""

    default_code = PhiErrorCode.NOT_FOUND


async def get_deidentified_profile(
    service: PhiProtectionService, payload: GetDeidentifiedProfileRequest
) -> GetDeidentifiedProfileResponse:
    profile = await service.get_deidentified_profile(payload.dependent_id)
    if profile is None:
        raise ProfileNotFoundError(
            "No demographic vault exists for this dependent",
            details={"dependentId": payload.dependent_id},
        )
    return GetDeidentifiedProfileResponse(dependent_id=payload.dependent_id, profile=profile)


__all__ = [
    "GetDeidentifiedProfileRequest",
    "GetDeidentifiedProfileResponse",
    "ProfileNotFoundError",
    "get_deidentified_profile",
]
