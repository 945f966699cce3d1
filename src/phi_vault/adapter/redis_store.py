"""Redis-backed PHI vault store for multi-process deployments."""

from __future__ import annotations

import contextlib
import hashlib
import json
from collections.abc import Iterator, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..constants import AUDIT_ACTOR
from ..errors import StructuredVaultConflictError, VaultStoreError
from ..logging import get_logger
from ..models import PhiEntryInput, StructuredVaultDocument, UnstructuredVaultEntry
from ..tokens import new_entry_id
from .interface import PhiVaultAdapter

logger = get_logger(__name__)

_AUDIT_FIELDS = ("created_at", "updated_at", "created_by", "updated_by")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisPhiVaultAdapter(PhiVaultAdapter):
    """Persists vault entries and structured documents in Redis.

    Key layout (``prefix`` defaults to ``phi:vault-store``)::

        {prefix}:entry:{id}                   JSON entry
        {prefix}:entry-key:{sha256}           dedup key -> entry id (SET NX)
        {prefix}:resource:{resource_id}       set of entry ids
        {prefix}:structured:{id}              hash, field -> JSON value
        {prefix}:structured-dependent:{dep}   dependent -> document id (SET NX)

    Uniqueness relies on ``SET NX`` claims: a document is written first and
    only becomes reachable once its claim succeeds, so a losing writer
    deletes its orphan and adopts the winner's id.
    """

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        client: redis.Redis | None = None,
        key_prefix: str = "phi:vault-store",
    ) -> None:
        if client is None:
            if not redis_url:
                raise VaultStoreError("redis_url must be provided when client is not supplied")
            client = redis.Redis.from_url(redis_url)
        self._client = client
        self._prefix = key_prefix.rstrip(":")

    # ------------------------------------------------------------------ #
    # Keys
    # ------------------------------------------------------------------ #
    def _entry_key(self, entry_id: str) -> str:
        return f"{self._prefix}:entry:{entry_id}"

    def _claim_key(self, entry: PhiEntryInput) -> str:
        digest = hashlib.sha256(
            json.dumps(list(entry.dedup_key()), separators=(",", ":")).encode("utf-8")
        ).hexdigest()
        return f"{self._prefix}:entry-key:{digest}"

    def _resource_key(self, resource_id: str) -> str:
        return f"{self._prefix}:resource:{resource_id}"

    def _structured_key(self, vault_id: str) -> str:
        return f"{self._prefix}:structured:{vault_id}"

    def _dependent_key(self, dependent_id: str) -> str:
        return f"{self._prefix}:structured-dependent:{dependent_id}"

    @contextlib.contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.error("phi.store.redis_error", operation=operation, error=type(exc).__name__)
            raise VaultStoreError(
                "PHI vault store operation failed", details={"operation": operation}
            ) from exc

    # ------------------------------------------------------------------ #
    # Unstructured entries
    # ------------------------------------------------------------------ #
    async def upsert_phi_entries(self, entries: Sequence[PhiEntryInput]) -> list[str]:
        ids: list[str] = []
        with self._store_errors("upsert_phi_entries"):
            for entry in entries:
                ids.append(await self._upsert_entry(entry))
        return ids

    async def _upsert_entry(self, entry: PhiEntryInput) -> str:
        claim_key = self._claim_key(entry)
        existing_id = await self._client.get(claim_key)
        if existing_id is not None:
            entry_id = _text(existing_id)
            await self._touch_entry(entry_id, entry)
        else:
            entry_id = await self._create_entry(claim_key, entry)
        # Re-added every time: an earlier upsert may have failed after its claim.
        await self._client.sadd(self._resource_key(entry.resource_id), entry_id)
        return entry_id

    async def _create_entry(self, claim_key: str, entry: PhiEntryInput) -> str:
        entry_id = new_entry_id()
        await self._write_entry(entry_id, entry)
        if await self._client.set(claim_key, entry_id, nx=True):
            return entry_id

        await self._client.delete(self._entry_key(entry_id))
        winner = await self._client.get(claim_key)
        if winner is None:
            raise VaultStoreError("PHI vault entry claim vanished during upsert")
        return _text(winner)

    async def _write_entry(self, entry_id: str, entry: PhiEntryInput) -> None:
        now = _utcnow()
        record = {**entry.model_dump(mode="json"), "id": entry_id, "created_at": now, "updated_at": now}
        await self._client.set(self._entry_key(entry_id), json.dumps(record, separators=(",", ":")))

    async def _touch_entry(self, entry_id: str, entry: PhiEntryInput) -> None:
        raw = await self._client.get(self._entry_key(entry_id))
        if raw is None:
            await self._write_entry(entry_id, entry)
            return
        record = json.loads(raw)
        record["resource_type"] = entry.resource_type
        record["updated_at"] = _utcnow()
        await self._client.set(self._entry_key(entry_id), json.dumps(record, separators=(",", ":")))

    async def get_unstructured_phi_vault_entries(
        self, resource_ids: Sequence[str]
    ) -> list[UnstructuredVaultEntry]:
        entries: list[UnstructuredVaultEntry] = []
        with self._store_errors("get_unstructured_phi_vault_entries"):
            for resource_id in dict.fromkeys(resource_ids):
                members = await self._client.smembers(self._resource_key(resource_id))
                for member in sorted(_text(item) for item in members):
                    raw = await self._client.get(self._entry_key(member))
                    if raw is not None:
                        entries.append(UnstructuredVaultEntry.model_validate_json(raw))
        return entries

    # ------------------------------------------------------------------ #
    # Structured vault
    # ------------------------------------------------------------------ #
    def _decode_document(self, vault_id: str, raw: Mapping[Any, Any]) -> StructuredVaultDocument:
        data: dict[str, Any] = {}
        for key, value in raw.items():
            data[_text(key)] = json.loads(value)
        data["id"] = vault_id
        return StructuredVaultDocument.model_validate(data)

    @staticmethod
    def _encode_fields(payload: Mapping[str, Any]) -> dict[str, str]:
        return {key: json.dumps(value, separators=(",", ":")) for key, value in payload.items()}

    async def get_structured_phi_vault(self, vault_id: str) -> Optional[StructuredVaultDocument]:
        with self._store_errors("get_structured_phi_vault"):
            raw = await self._client.hgetall(self._structured_key(vault_id))
        if not raw:
            return None
        return self._decode_document(vault_id, raw)

    async def get_structured_phi_vaults(
        self, vault_ids: Sequence[str]
    ) -> dict[str, StructuredVaultDocument]:
        found: dict[str, StructuredVaultDocument] = {}
        for vault_id in dict.fromkeys(vault_ids):
            document = await self.get_structured_phi_vault(vault_id)
            if document is not None:
                found[vault_id] = document
        return found

    async def get_structured_phi_vault_by_dependent_id(
        self, dependent_id: str
    ) -> Optional[StructuredVaultDocument]:
        vault_id = await self._find_structured_id(dependent_id)
        if vault_id is None:
            return None
        return await self.get_structured_phi_vault(vault_id)

    async def _find_structured_id(self, dependent_id: str) -> Optional[str]:
        with self._store_errors("find_structured"):
            raw = await self._client.get(self._dependent_key(dependent_id))
        return _text(raw) if raw is not None else None

    async def _insert_structured(self, dependent_id: str, payload: Mapping[str, Any]) -> str:
        now = _utcnow()
        vault_id = new_entry_id()
        fields = self._encode_fields(
            {
                **payload,
                "dependent_id": dependent_id,
                "created_at": now,
                "updated_at": now,
                "created_by": AUDIT_ACTOR,
                "updated_by": AUDIT_ACTOR,
            }
        )
        with self._store_errors("insert_structured"):
            await self._client.hset(self._structured_key(vault_id), mapping=fields)
            if await self._client.set(self._dependent_key(dependent_id), vault_id, nx=True):
                return vault_id
            await self._client.delete(self._structured_key(vault_id))
            winner = await self._client.get(self._dependent_key(dependent_id))
        raise StructuredVaultConflictError(
            dependent_id, _text(winner) if winner is not None else None
        )

    async def _merge_structured(self, vault_id: str, payload: Mapping[str, Any]) -> bool:
        key = self._structured_key(vault_id)
        fields = self._encode_fields(
            {
                **{k: v for k, v in payload.items() if k not in _AUDIT_FIELDS},
                "updated_at": _utcnow(),
                "updated_by": AUDIT_ACTOR,
            }
        )
        with self._store_errors("merge_structured"):
            if not await self._client.exists(key):
                return False
            await self._client.hset(key, mapping=fields)
        return True

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def health(self) -> dict[str, object]:
        with self._store_errors("health"):
            await self._client.ping()
        return {"status": "ok", "backend": "redis", "prefix": self._prefix}

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["RedisPhiVaultAdapter"]
