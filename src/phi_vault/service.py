"""Inbound entry points of the PHI protection engine."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any, Callable, Optional

from .adapter.interface import PhiVaultAdapter
from .constants import PROFILE_KEY, VAULT_ID_KEY
from .deidentify import derive_profile
from .detection.detector import PhiDetector
from .detection.filter import SpanFilter, validate_known_identifiers
from .errors import DetectorError, PhiValidationError, PhiVaultError, VaultStoreError
from .logging import get_logger
from .models import (
    DeidentifiedProfile,
    PhiFieldSpec,
    SeparatedRecord,
    Span,
    StructuredVaultDocument,
    UnstructuredVaultEntry,
    VaultContext,
)
from .paths import get_path, set_path
from .reconstruct import (
    POLICY_PASSTHROUGH,
    ResolveResult,
    TreeResolveResult,
    mask_string,
    resolve,
    resolve_tree,
)
from .redactor import Redactor
from .resources import PhiFieldRegistry, coerce_field_specs
from .structured import has_phi_payload, separate_phi_payload, validate_phi_payload

logger = get_logger(__name__)


def _require_id(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PhiValidationError(f"{name} must be a non-empty string", details={name: "invalid"})
    return value


def _require_ids(name: str, values: Any) -> list[str]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise PhiValidationError(f"{name} must be a list of ids", details={name: "invalid"})
    return [_require_id(name, value) for value in dict.fromkeys(values)]


class PhiProtectionService:
    """Detects, vaults and resolves PHI for the record store.

    Writes fail closed: every declared field is analysed before anything is
    vaulted, and any detector or store error propagates without returning a
    partially sanitized payload.
    """

    def __init__(
        self,
        adapter: PhiVaultAdapter,
        detector: PhiDetector,
        *,
        span_filter: SpanFilter | None = None,
        registry: PhiFieldRegistry | None = None,
        unresolved_token_policy: str = POLICY_PASSTHROUGH,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.adapter = adapter
        self.detector = detector
        self.span_filter = span_filter or SpanFilter()
        self.registry = registry or PhiFieldRegistry()
        self.unresolved_token_policy = unresolved_token_policy
        self._redactor = Redactor(adapter)
        self._today = today

    # ------------------------------------------------------------------ #
    # Write path
    # ------------------------------------------------------------------ #
    async def vault_and_sanitize_fields(
        self,
        resource_type: str,
        resource_id: str,
        dependent_id: str,
        payload: Mapping[str, Any],
        phi_fields: Iterable[PhiFieldSpec | Mapping[str, Any] | str],
        known_identifiers: Optional[Sequence[str]] = None,
    ) -> dict[str, Any]:
        """Return a copy of ``payload`` with PHI in ``phi_fields`` tokenised."""

        _require_id("resource_type", resource_type)
        _require_id("resource_id", resource_id)
        _require_id("dependent_id", dependent_id)
        if not isinstance(payload, Mapping):
            raise PhiValidationError("payload must be an object")
        identifiers = validate_known_identifiers(known_identifiers)
        specs = coerce_field_specs(phi_fields)

        sanitized = copy.deepcopy(dict(payload))
        planned: list[tuple[PhiFieldSpec, str, list[Span]]] = []
        for spec in specs:
            value = get_path(payload, spec.path)
            if not isinstance(value, str) or not value:
                continue
            spans = await self._detect(value, spec.path)
            kept = self.span_filter.apply(value, spans, identifiers)
            logger.debug(
                "phi.sanitize.detected",
                field_path=spec.path,
                detected=len(spans),
                kept=len(kept),
            )
            if kept:
                planned.append((spec, value, kept))

        for spec, value, kept in planned:
            context = VaultContext(
                resource_type=resource_type,
                resource_id=resource_id,
                dependent_id=dependent_id,
                field_path=spec.path,
            )
            try:
                result = await self._redactor.redact(value, kept, context)
            except PhiVaultError:
                raise
            except Exception as exc:
                logger.error("phi.store.failed", field_path=spec.path, error=type(exc).__name__)
                raise VaultStoreError(
                    "PHI vault store failed", details={"field_path": spec.path}
                ) from exc
            set_path(sanitized, spec.path, result.text)
            logger.info(
                "phi.sanitize.field",
                resource_type=resource_type,
                resource_id=resource_id,
                field_path=spec.path,
                substitutions=len(result.substitutions),
            )
        return sanitized

    async def vault_and_sanitize(
        self,
        resource_type: str,
        resource_id: str,
        dependent_id: str,
        payload: Mapping[str, Any],
        known_identifiers: Optional[Sequence[str]] = None,
    ) -> dict[str, Any]:
        """Sanitize using the fields registered for ``resource_type``."""

        specs = self.registry.phi_fields(resource_type)
        if not specs:
            validate_known_identifiers(known_identifiers)
            return copy.deepcopy(dict(payload))
        return await self.vault_and_sanitize_fields(
            resource_type, resource_id, dependent_id, payload, specs, known_identifiers
        )

    async def _detect(self, text: str, field_path: str) -> list[Span]:
        try:
            return await self.detector.analyze_text(text)
        except DetectorError:
            logger.error("phi.detector.failed", field_path=field_path)
            raise
        except Exception as exc:
            logger.error("phi.detector.failed", field_path=field_path, error=type(exc).__name__)
            raise DetectorError(
                "PHI detection failed", details={"field_path": field_path}
            ) from exc

    # ------------------------------------------------------------------ #
    # Unstructured read path
    # ------------------------------------------------------------------ #
    async def get_unstructured_phi_vault_entries(
        self, resource_ids: Iterable[str]
    ) -> list[UnstructuredVaultEntry]:
        ids = _require_ids("resource_ids", resource_ids)
        if not ids:
            return []
        return await self.adapter.get_unstructured_phi_vault_entries(ids)

    def deidentify_string(self, text: str, entries: Iterable[UnstructuredVaultEntry]) -> str:
        return resolve(text, entries, policy=self.unresolved_token_policy).text

    async def resolve_text(self, text: str, resource_ids: Iterable[str]) -> ResolveResult:
        """Resolve tokens in free text (e.g. a narrative summary) for ``resource_ids``."""

        entries = await self.get_unstructured_phi_vault_entries(resource_ids)
        return resolve(text, entries, policy=self.unresolved_token_policy)

    async def mask_text(self, text: str, resource_ids: Iterable[str]) -> str:
        entries = await self.get_unstructured_phi_vault_entries(resource_ids)
        return mask_string(text, entries)

    async def reidentify_record(
        self, record: Mapping[str, Any], resource_id: str
    ) -> TreeResolveResult:
        entries = await self.get_unstructured_phi_vault_entries([resource_id])
        return resolve_tree(dict(record), entries, policy=self.unresolved_token_policy)

    async def reidentify_records(
        self, records: Sequence[Mapping[str, Any]], resource_ids: Iterable[str]
    ) -> TreeResolveResult:
        """Fetch entries once for all ``resource_ids`` and resolve every record."""

        entries = await self.get_unstructured_phi_vault_entries(resource_ids)
        return resolve_tree(
            [dict(record) for record in records], entries, policy=self.unresolved_token_policy
        )

    # ------------------------------------------------------------------ #
    # Structured vault
    # ------------------------------------------------------------------ #
    def separate_phi_payload(self, record: Mapping[str, Any]) -> SeparatedRecord:
        return separate_phi_payload(record)

    async def upsert_structured_phi_vault(
        self,
        dependent_id: str,
        payload: Mapping[str, Any],
        existing_vault_id: Optional[str] = None,
    ) -> str:
        _require_id("dependent_id", dependent_id)
        if existing_vault_id is not None:
            _require_id("existing_vault_id", existing_vault_id)
        validated = validate_phi_payload(payload)
        if not has_phi_payload(validated):
            raise PhiValidationError("PHI payload has no values", details={"phi": "empty"})
        vault_id = await self.adapter.upsert_structured_phi_vault(
            dependent_id, validated, existing_vault_id
        )
        logger.info(
            "phi.structured.upserted",
            dependent_id=dependent_id,
            vault_id=vault_id,
            fields=sorted(validated),
        )
        return vault_id

    async def upsert_dependent_phi(
        self,
        dependent_id: str,
        record: Mapping[str, Any],
        existing_vault_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Split demographics out of a dependent record and vault them.

        Returns the sanitized record carrying ``phi_vault_id`` when a
        structured document exists for the dependent.
        """

        separated = self.separate_phi_payload(record)
        sanitized = separated.sanitized
        existing = existing_vault_id or sanitized.get(VAULT_ID_KEY)
        if separated.phi_payload is not None:
            existing = await self.upsert_structured_phi_vault(
                dependent_id, separated.phi_payload, existing
            )
        if existing:
            sanitized[VAULT_ID_KEY] = existing
        return sanitized

    async def get_structured_phi_vault(self, vault_id: str) -> Optional[StructuredVaultDocument]:
        return await self.adapter.get_structured_phi_vault(_require_id("vault_id", vault_id))

    async def get_structured_phi_vaults(
        self, vault_ids: Iterable[str]
    ) -> dict[str, StructuredVaultDocument]:
        ids = _require_ids("vault_ids", vault_ids)
        if not ids:
            return {}
        return await self.adapter.get_structured_phi_vaults(ids)

    async def get_structured_phi_vault_by_dependent_id(
        self, dependent_id: str
    ) -> Optional[StructuredVaultDocument]:
        return await self.adapter.get_structured_phi_vault_by_dependent_id(
            _require_id("dependent_id", dependent_id)
        )

    # ------------------------------------------------------------------ #
    # Derived profile
    # ------------------------------------------------------------------ #
    def derive_profile(
        self, document: StructuredVaultDocument | Mapping[str, Any] | None
    ) -> DeidentifiedProfile:
        return derive_profile(document, today=self._today())

    async def get_deidentified_profile(self, dependent_id: str) -> Optional[DeidentifiedProfile]:
        document = await self.get_structured_phi_vault_by_dependent_id(dependent_id)
        if document is None:
            return None
        return self.derive_profile(document)

    async def attach_deidentified_profile(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``record`` with ``deidentified_profile`` attached.

        The structured document is located through ``phi_vault_id``, falling
        back to ``dependent_id``. Records without a document are returned
        unchanged.
        """

        output = copy.deepcopy(dict(record))
        vault_id = output.get(VAULT_ID_KEY)
        document: Optional[StructuredVaultDocument] = None
        if isinstance(vault_id, str) and vault_id:
            document = await self.adapter.get_structured_phi_vault(vault_id)
        elif isinstance(output.get("dependent_id"), str) and output["dependent_id"]:
            document = await self.adapter.get_structured_phi_vault_by_dependent_id(
                output["dependent_id"]
            )
        if document is not None:
            output[PROFILE_KEY] = self.derive_profile(document).to_payload()
        return output

    async def attach_deidentified_profiles(
        self, records: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        outputs = [copy.deepcopy(dict(record)) for record in records]
        vault_ids = [
            item[VAULT_ID_KEY]
            for item in outputs
            if isinstance(item.get(VAULT_ID_KEY), str) and item[VAULT_ID_KEY]
        ]
        documents = await self.get_structured_phi_vaults(vault_ids) if vault_ids else {}
        for item in outputs:
            document = documents.get(item.get(VAULT_ID_KEY, ""))
            if document is not None:
                item[PROFILE_KEY] = self.derive_profile(document).to_payload()
        return outputs


__all__ = ["PhiProtectionService"]
