"""Replace detected PHI spans with vault tokens."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .adapter.interface import PhiVaultAdapter
from .errors import VaultStoreError
from .logging import get_logger
from .models import PhiEntryInput, Span, Substitution, VaultContext
from .tokens import make_token, normalise_entity_type

logger = get_logger(__name__)


@dataclass
class RedactionResult:
    text: str
    substitutions: list[Substitution] = field(default_factory=list)

    @property
    def entry_ids(self) -> list[str]:
        return [item.entry_id for item in self.substitutions]


class Redactor:
    """Vaults span values and splices tokens into the text.

    Spans are replaced from the highest start offset down, so earlier
    offsets stay valid while the string is rewritten. Entries for one field
    are upserted in a single store call before any text is touched; a store
    failure therefore leaves nothing half-substituted.
    """

    def __init__(self, adapter: PhiVaultAdapter) -> None:
        self._adapter = adapter

    async def redact(
        self, text: str, spans: Sequence[Span], context: VaultContext
    ) -> RedactionResult:
        if not text or not spans:
            return RedactionResult(text=text)

        ordered = sorted(spans, key=lambda span: span.start, reverse=True)
        entries = [
            PhiEntryInput(
                dependent_id=context.dependent_id,
                resource_type=context.resource_type,
                resource_id=context.resource_id,
                field_path=context.field_path,
                value=text[span.start : span.end],
                phi_type=normalise_entity_type(span.entity_type),
            )
            for span in ordered
        ]
        entry_ids = await self._adapter.upsert_phi_entries(entries)
        if len(entry_ids) != len(entries):
            raise VaultStoreError(
                "Vault store returned an unexpected number of entry ids",
                details={"field_path": context.field_path},
            )

        sanitized = text
        substitutions: list[Substitution] = []
        for span, entry, entry_id in zip(ordered, entries, entry_ids):
            token = make_token(entry_id, entry.phi_type)
            sanitized = sanitized[: span.start] + token + sanitized[span.end :]
            substitutions.append(
                Substitution(
                    field_path=context.field_path,
                    entry_id=entry_id,
                    entity_type=entry.phi_type or "UNKNOWN",
                    token=token,
                    start=span.start,
                    end=span.end,
                )
            )

        logger.debug(
            "phi.redact.field",
            field_path=context.field_path,
            resource_id=context.resource_id,
            substitutions=len(substitutions),
        )
        return RedactionResult(text=sanitized, substitutions=substitutions)


__all__ = ["RedactionResult", "Redactor"]
