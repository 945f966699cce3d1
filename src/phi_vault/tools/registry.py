"""Central registry describing the PHI tools exposed to the record store."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from ..errors import PhiErrorCode, PhiVaultError, error_payload, validation_error
from ..logging import get_logger
from ..service import PhiProtectionService
from .get_deidentified_profile import (
    GetDeidentifiedProfileRequest,
    GetDeidentifiedProfileResponse,
    get_deidentified_profile,
)
from .resolve_tokens import ResolveTokensRequest, ResolveTokensResponse, resolve_tokens
from .sanitize_fields import SanitizeFieldsRequest, SanitizeFieldsResponse, sanitize_fields
from .upsert_dependent_phi import (
    UpsertDependentPhiRequest,
    UpsertDependentPhiResponse,
    upsert_dependent_phi,
)

logger = get_logger(__name__)

ToolHandler = Callable[[PhiProtectionService, Any], Awaitable[BaseModel]]


@dataclass(frozen=True)
class ToolDescriptor:
    """Metadata describing a single PHI tool."""

    name: str
    description: str
    request_model: Type[BaseModel]
    response_model: Optional[Type[BaseModel]]
    handler: ToolHandler
    writes: bool = False

    def input_schema(self) -> Dict[str, Any]:
        return self.request_model.model_json_schema()

    def output_schema(self) -> Optional[Dict[str, Any]]:
        if self.response_model is None:
            return None
        return self.response_model.model_json_schema(by_alias=True)


def get_tool_registry() -> Dict[str, ToolDescriptor]:
    """Return the PHI tool registry keyed by tool name."""

    return {
        "sanitize_fields": ToolDescriptor(
            name="sanitize_fields",
            description=(
                "Detect PHI in a record's free-text fields, vault the originals and "
                "return the record with vault tokens in their place."
            ),
            request_model=SanitizeFieldsRequest,
            response_model=SanitizeFieldsResponse,
            handler=sanitize_fields,
            writes=True,
        ),
        "resolve_tokens": ToolDescriptor(
            name="resolve_tokens",
            description=(
                "Replace vault tokens in text or a fetched record with the original "
                "values, or with coarse placeholders in mask mode."
            ),
            request_model=ResolveTokensRequest,
            response_model=ResolveTokensResponse,
            handler=resolve_tokens,
        ),
        "upsert_dependent_phi": ToolDescriptor(
            name="upsert_dependent_phi",
            description="Move a dependent's demographic PHI into its structured vault document.",
            request_model=UpsertDependentPhiRequest,
            response_model=UpsertDependentPhiResponse,
            handler=upsert_dependent_phi,
            writes=True,
        ),
        "get_deidentified_profile": ToolDescriptor(
            name="get_deidentified_profile",
            description="Return age, birth year, sex and state/country for a dependent.",
            request_model=GetDeidentifiedProfileRequest,
            response_model=GetDeidentifiedProfileResponse,
            handler=get_deidentified_profile,
        ),
    }


async def invoke_tool(
    service: PhiProtectionService,
    name: str,
    arguments: Mapping[str, Any],
    *,
    registry: Optional[Dict[str, ToolDescriptor]] = None,
) -> Dict[str, Any]:
    """Validate ``arguments``, run the tool and return its JSON-ready result.

    Engine errors are rendered with :func:`error_payload` instead of raised.
    """

    tools = registry or get_tool_registry()
    descriptor = tools.get(name)
    if descriptor is None:
        return error_payload(
            PhiVaultError(f"Unknown tool '{name}'", code=PhiErrorCode.NOT_FOUND)
        )

    try:
        request = descriptor.request_model.model_validate(dict(arguments))
    except ValidationError as exc:
        return error_payload(validation_error(exc, message=f"Invalid arguments for {name}"))

    try:
        response = await descriptor.handler(service, request)
    except PhiVaultError as exc:
        logger.warning("phi.tool.failed", tool=name, code=exc.code.value)
        return error_payload(exc)
    return response.model_dump(by_alias=True, mode="json")


__all__ = ["ToolDescriptor", "get_tool_registry", "invoke_tool"]
