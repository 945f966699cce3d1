"""Typed interface for PHI vault store implementations."""

from __future__ import annotations

import abc
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from ..errors import StructuredVaultConflictError, VaultStoreError
from ..logging import get_logger
from ..models import PhiEntryInput, StructuredVaultDocument, UnstructuredVaultEntry

logger = get_logger(__name__)


class PhiVaultAdapter(abc.ABC):
    """Abstract persistence contract required by the PHI engine.

    Implementations must make :meth:`upsert_phi_entries` an atomic
    find-or-create per dedup key and must enforce uniqueness of
    ``dependent_id`` in :meth:`_insert_structured` by raising
    :class:`StructuredVaultConflictError`.
    """

    # Unstructured entries ---------------------------------------------
    @abc.abstractmethod
    async def upsert_phi_entries(self, entries: Sequence[PhiEntryInput]) -> list[str]:
        """Find-or-create each entry by its dedup key; return ids in input order."""

    @abc.abstractmethod
    async def get_unstructured_phi_vault_entries(
        self, resource_ids: Sequence[str]
    ) -> list[UnstructuredVaultEntry]:
        """Return every entry whose ``resource_id`` is in ``resource_ids``."""

    # Structured vault -------------------------------------------------
    async def upsert_structured_phi_vault(
        self,
        dependent_id: str,
        payload: Mapping[str, Any],
        existing_vault_id: Optional[str] = None,
    ) -> str:
        """Merge ``payload`` into the dependent's document, creating it if needed.

        Two concurrent first writes for the same dependent both reach
        :meth:`_insert_structured`; the loser gets a conflict and is merged
        into the winner, so exactly one document exists per dependent.
        """

        if existing_vault_id:
            if await self._merge_structured(existing_vault_id, payload):
                return existing_vault_id
            logger.warning(
                "phi.structured.stale_vault_id",
                dependent_id=dependent_id,
                vault_id=existing_vault_id,
            )

        current = await self._find_structured_id(dependent_id)
        if current and await self._merge_structured(current, payload):
            return current

        try:
            return await self._insert_structured(dependent_id, payload)
        except StructuredVaultConflictError as exc:
            winner = exc.existing_id or await self._find_structured_id(dependent_id)
            if not winner or not await self._merge_structured(winner, payload):
                raise VaultStoreError(
                    "Structured PHI vault conflict could not be resolved",
                    details={"dependent_id": dependent_id},
                ) from exc
            logger.info(
                "phi.structured.conflict_recovered", dependent_id=dependent_id, vault_id=winner
            )
            return winner

    @abc.abstractmethod
    async def get_structured_phi_vault(self, vault_id: str) -> Optional[StructuredVaultDocument]:
        """Return the structured document with ``vault_id`` or ``None``."""

    @abc.abstractmethod
    async def get_structured_phi_vaults(
        self, vault_ids: Sequence[str]
    ) -> dict[str, StructuredVaultDocument]:
        """Return found documents keyed by vault id; misses are omitted."""

    @abc.abstractmethod
    async def get_structured_phi_vault_by_dependent_id(
        self, dependent_id: str
    ) -> Optional[StructuredVaultDocument]:
        """Return the dependent's structured document or ``None``."""

    # Store primitives -------------------------------------------------
    @abc.abstractmethod
    async def _find_structured_id(self, dependent_id: str) -> Optional[str]:
        """Return the structured document id owned by ``dependent_id``."""

    @abc.abstractmethod
    async def _insert_structured(self, dependent_id: str, payload: Mapping[str, Any]) -> str:
        """Insert a new document or raise :class:`StructuredVaultConflictError`."""

    @abc.abstractmethod
    async def _merge_structured(self, vault_id: str, payload: Mapping[str, Any]) -> bool:
        """Set top-level ``payload`` keys on ``vault_id``; ``False`` if it does not exist."""

    # Lifecycle --------------------------------------------------------
    async def health(self) -> dict[str, object]:
        return {"status": "ok", "backend": type(self).__name__}

    async def aclose(self) -> None:
        return None


__all__ = ["PhiVaultAdapter"]
