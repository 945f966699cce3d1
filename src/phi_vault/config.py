"""Application configuration management."""

from __future__ import annotations

import os
from typing import Any, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import __version__
from .constants import SERVICE_NAME
from .logging import DEFAULT_LOG_LEVEL


class ConfigError(RuntimeError):
    """Raised when application configuration is invalid."""


class AppConfig(BaseModel):
    """Validated engine configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    log_level: str = Field(default=DEFAULT_LOG_LEVEL, description="Root log level")
    service_name: str = Field(default=SERVICE_NAME, description="Service identifier")
    service_version: str = Field(default=__version__, description="Service version override")
    environment: str = Field(default="development", description="Deployment environment tag")
    detector_url: str = Field(
        default="http://localhost:5002", description="Base URL of the Presidio analyzer service"
    )
    detector_language: str = Field(
        default="en", min_length=2, description="Language code sent to the analyzer"
    )
    detector_timeout_ms: int = Field(
        default=5000, ge=100, description="Per-request timeout for analyzer calls in milliseconds"
    )
    detector_min_score: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Minimum confidence score for detected spans"
    )
    detector_max_retries: int = Field(
        default=2, ge=0, le=10, description="Retry attempts after a failed analyzer call"
    )
    detector_backoff_seconds: float = Field(
        default=0.2, ge=0.0, description="Base delay for exponential retry backoff"
    )
    breaker_fail_max: int = Field(
        default=5, ge=1, description="Consecutive analyzer failures before the breaker opens"
    )
    breaker_reset_seconds: float = Field(
        default=30.0, gt=0.0, description="Seconds the breaker stays open before a trial call"
    )
    vault_backend: str = Field(default="memory", description="Vault store backend (memory or redis)")
    vault_redis_url: Optional[str] = Field(
        default=None, description="Redis URL used when the vault backend is redis"
    )
    vault_redis_prefix: str = Field(
        default="phi:vault-store", description="Redis key prefix for vault records"
    )
    unresolved_token_policy: str = Field(
        default="passthrough",
        description="How unknown vault tokens are rendered on read (passthrough or mask)",
    )
    excluded_entity_types: Tuple[str, ...] = Field(
        default=("MEDICAL_CONDITION",),
        description="Detector entity types that are never vaulted",
    )
    gated_entity_types: Optional[Tuple[str, ...]] = Field(
        default=None,
        description="Entity types the known-identifier gate applies to (all when unset)",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        from logging import getLevelName

        candidate = value.upper()
        resolved = getLevelName(candidate)
        if isinstance(resolved, int):
            return candidate
        raise ValueError(f"Unsupported log level '{value}'")

    @field_validator("detector_url")
    @classmethod
    def _normalise_detector_url(cls, value: str) -> str:
        url = value.strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported analyzer URL '{value}'")
        return url

    @field_validator("vault_backend")
    @classmethod
    def _normalise_vault_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend not in {"memory", "redis"}:
            raise ValueError(f"Unsupported vault backend '{value}'")
        return backend

    @field_validator("unresolved_token_policy")
    @classmethod
    def _normalise_token_policy(cls, value: str) -> str:
        policy = value.lower()
        if policy not in {"passthrough", "mask"}:
            raise ValueError(f"Unsupported unresolved token policy '{value}'")
        return policy

    @field_validator("excluded_entity_types", "gated_entity_types")
    @classmethod
    def _coerce_entity_types(cls, value: Optional[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
        if value is None:
            return None
        return tuple(item.strip().upper() for item in value if item.strip())

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables (respecting .env)."""
        load_dotenv()
        try:
            raw: dict[str, Any] = {
                "log_level": os.getenv("LOG_LEVEL", cls.model_fields["log_level"].default),
                "service_name": os.getenv("SERVICE_NAME", cls.model_fields["service_name"].default),
                "service_version": os.getenv(
                    "SERVICE_VERSION", cls.model_fields["service_version"].default
                ),
                "environment": os.getenv("ENVIRONMENT", cls.model_fields["environment"].default),
                "detector_url": os.getenv(
                    "PRESIDIO_ANALYZER_URL", cls.model_fields["detector_url"].default
                ),
                "detector_language": os.getenv(
                    "PHI_DETECTOR_LANGUAGE", cls.model_fields["detector_language"].default
                ),
                "detector_timeout_ms": cls._env_to_int(
                    "PHI_DETECTOR_TIMEOUT_MS", cls.model_fields["detector_timeout_ms"].default
                ),
                "detector_min_score": cls._env_to_float(
                    "PHI_DETECTOR_MIN_SCORE", cls.model_fields["detector_min_score"].default
                ),
                "detector_max_retries": cls._env_to_int(
                    "PHI_DETECTOR_MAX_RETRIES", cls.model_fields["detector_max_retries"].default
                ),
                "detector_backoff_seconds": cls._env_to_float(
                    "PHI_DETECTOR_BACKOFF_SECONDS",
                    cls.model_fields["detector_backoff_seconds"].default,
                ),
                "breaker_fail_max": cls._env_to_int(
                    "PHI_BREAKER_FAIL_MAX", cls.model_fields["breaker_fail_max"].default
                ),
                "breaker_reset_seconds": cls._env_to_float(
                    "PHI_BREAKER_RESET_SECONDS", cls.model_fields["breaker_reset_seconds"].default
                ),
                "vault_backend": os.getenv(
                    "PHI_VAULT_BACKEND", cls.model_fields["vault_backend"].default
                ),
                "vault_redis_url": os.getenv("PHI_VAULT_REDIS_URL"),
                "vault_redis_prefix": os.getenv(
                    "PHI_VAULT_REDIS_PREFIX", cls.model_fields["vault_redis_prefix"].default
                ),
                "unresolved_token_policy": os.getenv(
                    "PHI_UNRESOLVED_TOKEN_POLICY",
                    cls.model_fields["unresolved_token_policy"].default,
                ),
                "excluded_entity_types": cls._env_to_list(
                    os.getenv("PHI_EXCLUDED_ENTITY_TYPES"),
                    cls.model_fields["excluded_entity_types"].default,
                ),
                "gated_entity_types": cls._env_to_optional_list(
                    os.getenv("PHI_GATED_ENTITY_TYPES")
                ),
            }
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        try:
            config = cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError("Invalid application configuration") from exc
        if config.vault_backend == "redis" and not config.vault_redis_url:
            raise ConfigError("PHI_VAULT_REDIS_URL must be set when PHI_VAULT_BACKEND=redis")
        return config

    @staticmethod
    def _env_to_int(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be an integer") from exc

    @staticmethod
    def _env_to_float(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be a number") from exc

    @staticmethod
    def _env_to_list(value: str | None, default: Tuple[str, ...]) -> Tuple[str, ...]:
        if value is None:
            return default
        return tuple(item.strip() for item in value.split(",") if item.strip())

    @staticmethod
    def _env_to_optional_list(value: str | None) -> Optional[Tuple[str, ...]]:
        if value is None or not value.strip():
            return None
        return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config() -> AppConfig:
    """Convenience helper to load configuration with error propagation."""
    return AppConfig.from_env()
