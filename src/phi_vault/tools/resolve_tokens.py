"""Contracts and handler for the resolve_tokens tool."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..service import PhiProtectionService


class ResolveTokensRequest(BaseModel):
    """Payload for substituting vault tokens in text or a fetched record."""

    model_config = ConfigDict(populate_by_name=True)

    resource_ids: list[str] = Field(alias="resourceIds", min_length=1)
    text: Optional[str] = None
    record: Optional[dict[str, Any]] = None
    mode: Literal["resolve", "mask"] = "resolve"

    @model_validator(mode="after")
    def _require_target(self) -> ResolveTokensRequest:
        if (self.text is None) == (self.record is None):
            raise ValueError("Provide exactly one of text or record")
        if self.mode == "mask" and self.text is None:
            raise ValueError("mask mode only applies to text")
        return self


class ResolveTokensResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    record: Optional[dict[str, Any]] = None
    resolved_tokens: int = Field(default=0, alias="resolvedTokens")
    unresolved_tokens: int = Field(default=0, alias="unresolvedTokens")


async def resolve_tokens(
    service: PhiProtectionService, payload: ResolveTokensRequest
) -> ResolveTokensResponse:
    if payload.record is not None:
        tree = await service.reidentify_records([payload.record], payload.resource_ids)
        return ResolveTokensResponse(
            record=tree.value[0],
            resolved_tokens=tree.resolved,
            unresolved_tokens=tree.unresolved,
        )

    text = payload.text or ""
    if payload.mode == "mask":
        return ResolveTokensResponse(text=await service.mask_text(text, payload.resource_ids))

    result = await service.resolve_text(text, payload.resource_ids)
    return ResolveTokensResponse(
        text=result.text,
        resolved_tokens=result.resolved,
        unresolved_tokens=result.unresolved,
    )


__all__ = ["ResolveTokensRequest", "ResolveTokensResponse", "resolve_tokens"]
