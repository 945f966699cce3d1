from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from phi_vault.adapter.redis_store import RedisPhiVaultAdapter
from phi_vault.errors import VaultStoreError
from phi_vault.models import PhiEntryInput
from phi_vault.service import PhiProtectionService

fakeredis = pytest.importorskip("fakeredis")
fakeredis_aio = pytest.importorskip("fakeredis.aioredis")

PREFIX = "test:vault"


def _make_client():
    return fakeredis_aio.FakeRedis(server=fakeredis.FakeServer())


def _entry(value: str = "John Doe", resource_id: str = "visit-1") -> PhiEntryInput:
    return PhiEntryInput(
        dependent_id="dep-1",
        resource_type="visit",
        resource_id=resource_id,
        field_path="notes",
        value=value,
        phi_type="PERSON",
    )


@pytest.mark.asyncio
async def test_entries_are_deduplicated() -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)

    first = await adapter.upsert_phi_entries([_entry(), _entry("Jane Roe")])
    second = await adapter.upsert_phi_entries([_entry()])

    assert second[0] == first[0]
    assert first[0] != first[1]
    entries = await adapter.get_unstructured_phi_vault_entries(["visit-1"])
    assert sorted(entry.value for entry in entries) == ["Jane Roe", "John Doe"]
    assert all(entry.dependent_id == "dep-1" for entry in entries)


@pytest.mark.asyncio
async def test_concurrent_entry_upserts_converge() -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)

    results = await asyncio.gather(*(adapter.upsert_phi_entries([_entry()]) for _ in range(5)))

    assert len({ids[0] for ids in results}) == 1
    assert len(await client.keys(f"{PREFIX}:entry:*")) == 1


@pytest.mark.asyncio
async def test_entries_are_scoped_by_resource() -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)
    await adapter.upsert_phi_entries([_entry(resource_id="visit-1"), _entry(resource_id="visit-2")])

    entries = await adapter.get_unstructured_phi_vault_entries(["visit-2", "visit-9"])

    assert [entry.resource_id for entry in entries] == ["visit-2"]


@pytest.mark.asyncio
async def test_structured_document_round_trip_and_merge() -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)

    vault_id = await adapter.upsert_structured_phi_vault(
        "dep-1",
        {"legal_name": {"given": "John", "family": "Doe"}, "address": {"state": "TX"}},
    )
    again = await adapter.upsert_structured_phi_vault("dep-1", {"birth_year": 1990})

    assert again == vault_id
    document = await adapter.get_structured_phi_vault_by_dependent_id("dep-1")
    assert document is not None
    assert document.id == vault_id
    assert document.legal_name is not None and document.legal_name.given == "John"
    assert document.address is not None and document.address.state == "TX"
    assert document.birth_year == 1990
    assert document.created_by == "mcp"
    assert document.created_at is not None


@pytest.mark.asyncio
async def test_concurrent_structured_writes_leave_one_document() -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)

    ids = await asyncio.gather(
        *(adapter.upsert_structured_phi_vault("dep-1", {"sex": "female"}) for _ in range(5))
    )

    assert len(set(ids)) == 1
    assert len(await client.keys(f"{PREFIX}:structured:*")) == 1


@pytest.mark.asyncio
async def test_structured_bulk_lookup_omits_misses() -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)
    vault_id = await adapter.upsert_structured_phi_vault("dep-1", {"sex": "female"})

    found = await adapter.get_structured_phi_vaults([vault_id, "0" * 24])

    assert list(found) == [vault_id]
    assert await adapter.get_structured_phi_vault_by_dependent_id("dep-2") is None


@pytest.mark.asyncio
async def test_redis_failures_become_vault_store_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)

    async def _boom(*args, **kwargs):
        raise RedisConnectionError("connection lost")

    monkeypatch.setattr(client, "get", _boom)

    with pytest.raises(VaultStoreError):
        await adapter.upsert_phi_entries([_entry()])


@pytest.mark.asyncio
async def test_health_pings_the_server() -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)

    health = await adapter.health()

    assert health == {"status": "ok", "backend": "redis", "prefix": PREFIX}
    await adapter.aclose()


def test_requires_url_or_client() -> None:
    with pytest.raises(VaultStoreError):
        RedisPhiVaultAdapter()


@pytest.mark.asyncio
async def test_retry_after_failed_index_write_keeps_entry_resolvable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)
    real_sadd = client.sadd
    calls = {"count": 0}

    async def _flaky_sadd(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RedisConnectionError("connection lost")
        return await real_sadd(*args, **kwargs)

    monkeypatch.setattr(client, "sadd", _flaky_sadd)

    with pytest.raises(VaultStoreError):
        await adapter.upsert_phi_entries([_entry()])
    [entry_id] = await adapter.upsert_phi_entries([_entry()])

    entries = await adapter.get_unstructured_phi_vault_entries(["visit-1"])
    assert [entry.id for entry in entries] == [entry_id]
    assert entries[0].value == "John Doe"


@pytest.mark.asyncio
async def test_missing_entry_document_is_rewritten_on_upsert() -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)
    [entry_id] = await adapter.upsert_phi_entries([_entry()])
    await client.delete(f"{PREFIX}:entry:{entry_id}")

    assert await adapter.upsert_phi_entries([_entry()]) == [entry_id]
    entries = await adapter.get_unstructured_phi_vault_entries(["visit-1"])
    assert [(entry.id, entry.value) for entry in entries] == [(entry_id, "John Doe")]


@pytest.mark.asyncio
async def test_service_round_trip_on_redis(detector) -> None:
    adapter = RedisPhiVaultAdapter(client=_make_client(), key_prefix=PREFIX)
    service = PhiProtectionService(adapter, detector)
    record = {
        "notes": "Call John Doe at 555-123-4567",
        "details": {"summary": "Lives at 123 Main St"},
        "count": 2,
    }

    sanitized = await service.vault_and_sanitize_fields(
        "visit", "visit-1", "dep-1", record, ["notes", "details.summary"]
    )
    restored = await service.reidentify_record(sanitized, "visit-1")

    assert "John Doe" not in str(sanitized)
    assert "123 Main St" not in str(sanitized)
    assert restored.value == record
    assert restored.unresolved == 0


@pytest.mark.asyncio
async def test_service_round_trip_survives_store_failure_then_retry(
    detector, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = _make_client()
    adapter = RedisPhiVaultAdapter(client=client, key_prefix=PREFIX)
    service = PhiProtectionService(adapter, detector)
    record = {"notes": "John Doe called"}
    real_sadd = client.sadd
    calls = {"count": 0}

    async def _flaky_sadd(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RedisConnectionError("connection lost")
        return await real_sadd(*args, **kwargs)

    monkeypatch.setattr(client, "sadd", _flaky_sadd)

    with pytest.raises(VaultStoreError):
        await service.vault_and_sanitize_fields("visit", "visit-1", "dep-1", record, ["notes"])
    sanitized = await service.vault_and_sanitize_fields(
        "visit", "visit-1", "dep-1", record, ["notes"]
    )
    restored = await service.reidentify_record(sanitized, "visit-1")

    assert sanitized["notes"].startswith("phi:vault:PERSON:")
    assert restored.value == record
    assert restored.unresolved == 0
