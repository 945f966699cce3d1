"""Vault store adapters."""

from .interface import PhiVaultAdapter
from .memory import InMemoryPhiVaultAdapter
from .redis_store import RedisPhiVaultAdapter

__all__ = ["InMemoryPhiVaultAdapter", "PhiVaultAdapter", "RedisPhiVaultAdapter"]
