"""Factories for building runtime components from configuration."""

from __future__ import annotations

from typing import Optional

import pybreaker

from ..adapter.interface import PhiVaultAdapter
from ..adapter.memory import InMemoryPhiVaultAdapter
from ..adapter.redis_store import RedisPhiVaultAdapter
from ..config import AppConfig, ConfigError
from ..detection.detector import BREAKER_NAME, PhiDetector, PresidioAnalyzerDetector
from ..detection.filter import SpanFilter
from ..logging import get_logger
from ..resources import PhiFieldRegistry
from ..service import PhiProtectionService

logger = get_logger(__name__)


def build_vault_adapter(config: AppConfig) -> PhiVaultAdapter:
    """Create the vault store backend based on configuration."""

    backend = config.vault_backend
    if backend == "memory":
        return InMemoryPhiVaultAdapter()
    if backend == "redis":
        if not config.vault_redis_url:
            raise ConfigError("PHI_VAULT_REDIS_URL must be set when PHI_VAULT_BACKEND=redis")
        return RedisPhiVaultAdapter(
            redis_url=config.vault_redis_url, key_prefix=config.vault_redis_prefix
        )
    raise ConfigError(f"Unsupported vault backend '{backend}'")


def build_detector(config: AppConfig) -> PresidioAnalyzerDetector:
    breaker = pybreaker.CircuitBreaker(
        fail_max=config.breaker_fail_max,
        reset_timeout=config.breaker_reset_seconds,
        name=BREAKER_NAME,
    )
    return PresidioAnalyzerDetector(
        config.detector_url,
        language=config.detector_language,
        timeout_seconds=config.detector_timeout_ms / 1000,
        max_retries=config.detector_max_retries,
        backoff_seconds=config.detector_backoff_seconds,
        breaker=breaker,
    )


def build_span_filter(config: AppConfig) -> SpanFilter:
    return SpanFilter(
        min_score=config.detector_min_score,
        excluded_entity_types=config.excluded_entity_types,
        gated_entity_types=config.gated_entity_types,
    )


def build_service(
    config: AppConfig,
    *,
    adapter: Optional[PhiVaultAdapter] = None,
    detector: Optional[PhiDetector] = None,
    registry: Optional[PhiFieldRegistry] = None,
) -> PhiProtectionService:
    """Wire the protection service; explicit collaborators override config."""

    service = PhiProtectionService(
        adapter or build_vault_adapter(config),
        detector or build_detector(config),
        span_filter=build_span_filter(config),
        registry=registry,
        unresolved_token_policy=config.unresolved_token_policy,
    )
    logger.info(
        "service.startup",
        service=config.service_name,
        version=config.service_version,
        environment=config.environment,
        vault_backend=type(service.adapter).__name__,
    )
    return service


__all__ = ["build_detector", "build_service", "build_span_filter", "build_vault_adapter"]
