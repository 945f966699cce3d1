"""In-memory PHI vault store for tests and single-process deployments."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from ..constants import AUDIT_ACTOR
from ..errors import StructuredVaultConflictError
from ..models import PhiEntryInput, StructuredVaultDocument, UnstructuredVaultEntry
from ..tokens import new_entry_id
from .interface import PhiVaultAdapter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPhiVaultAdapter(PhiVaultAdapter):
    def __init__(self) -> None:
        self._entries: dict[str, UnstructuredVaultEntry] = {}
        self._entry_index: dict[tuple[Any, ...], str] = {}
        self._documents: dict[str, dict[str, Any]] = {}
        self._dependent_index: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # Unstructured entries ---------------------------------------------
    async def upsert_phi_entries(self, entries: Sequence[PhiEntryInput]) -> list[str]:
        ids: list[str] = []
        async with self._lock:
            for entry in entries:
                now = _utcnow()
                key = entry.dedup_key()
                entry_id = self._entry_index.get(key)
                if entry_id is not None:
                    existing = self._entries[entry_id]
                    self._entries[entry_id] = existing.model_copy(
                        update={"resource_type": entry.resource_type, "updated_at": now}
                    )
                else:
                    entry_id = new_entry_id()
                    self._entries[entry_id] = UnstructuredVaultEntry(
                        id=entry_id,
                        created_at=now,
                        updated_at=now,
                        **entry.model_dump(),
                    )
                    self._entry_index[key] = entry_id
                ids.append(entry_id)
        return ids

    async def get_unstructured_phi_vault_entries(
        self, resource_ids: Sequence[str]
    ) -> list[UnstructuredVaultEntry]:
        wanted = set(resource_ids)
        if not wanted:
            return []
        return [entry for entry in self._entries.values() if entry.resource_id in wanted]

    # Structured vault -------------------------------------------------
    async def get_structured_phi_vault(self, vault_id: str) -> Optional[StructuredVaultDocument]:
        document = self._documents.get(vault_id)
        if document is None:
            return None
        return StructuredVaultDocument.model_validate({**document, "id": vault_id})

    async def get_structured_phi_vaults(
        self, vault_ids: Sequence[str]
    ) -> dict[str, StructuredVaultDocument]:
        found: dict[str, StructuredVaultDocument] = {}
        for vault_id in vault_ids:
            document = await self.get_structured_phi_vault(vault_id)
            if document is not None:
                found[vault_id] = document
        return found

    async def get_structured_phi_vault_by_dependent_id(
        self, dependent_id: str
    ) -> Optional[StructuredVaultDocument]:
        vault_id = self._dependent_index.get(dependent_id)
        if vault_id is None:
            return None
        return await self.get_structured_phi_vault(vault_id)

    async def _find_structured_id(self, dependent_id: str) -> Optional[str]:
        return self._dependent_index.get(dependent_id)

    async def _insert_structured(self, dependent_id: str, payload: Mapping[str, Any]) -> str:
        async with self._lock:
            existing = self._dependent_index.get(dependent_id)
            if existing is not None:
                raise StructuredVaultConflictError(dependent_id, existing)
            now = _utcnow()
            vault_id = new_entry_id()
            self._documents[vault_id] = {
                "dependent_id": dependent_id,
                **copy.deepcopy(dict(payload)),
                "created_at": now,
                "updated_at": now,
                "created_by": AUDIT_ACTOR,
                "updated_by": AUDIT_ACTOR,
            }
            self._dependent_index[dependent_id] = vault_id
            return vault_id

    async def _merge_structured(self, vault_id: str, payload: Mapping[str, Any]) -> bool:
        async with self._lock:
            document = self._documents.get(vault_id)
            if document is None:
                return False
            document.update(copy.deepcopy(dict(payload)))
            document["updated_at"] = _utcnow()
            document["updated_by"] = AUDIT_ACTOR
            return True

    # Introspection ----------------------------------------------------
    def entry_count(self) -> int:
        return len(self._entries)

    def structured_count(self, dependent_id: str | None = None) -> int:
        if dependent_id is None:
            return len(self._documents)
        return sum(
            1 for document in self._documents.values() if document["dependent_id"] == dependent_id
        )

    def clear(self) -> None:
        self._entries.clear()
        self._entry_index.clear()
        self._documents.clear()
        self._dependent_index.clear()


__all__ = ["InMemoryPhiVaultAdapter"]
