"""Runtime wiring helpers."""

from .factory import build_detector, build_service, build_span_filter, build_vault_adapter

__all__ = ["build_detector", "build_service", "build_span_filter", "build_vault_adapter"]
