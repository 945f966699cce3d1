"""Global test fixtures and environment setup."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date

import pytest

from phi_vault.adapter.memory import InMemoryPhiVaultAdapter
from phi_vault.detection.filter import SpanFilter
from phi_vault.errors import DetectorError
from phi_vault.models import Span
from phi_vault.service import PhiProtectionService

# Phrases the scripted detector recognises, with the entity type and score
# a real analyzer would report for them.
DEFAULT_SCRIPT: Mapping[str, tuple[str, float]] = {
    "John Doe": ("PERSON", 0.85),
    "555-123-4567": ("PHONE_NUMBER", 0.75),
    "123 Main St": ("ADDRESS", 0.8),
    "INS-98765": ("ID", 0.7),
    "Tylenol": ("PERSON", 0.6),
    "diabetes": ("MEDICAL_CONDITION", 0.9),
    "Polymyalgia Rheumatica": ("PERSON", 0.65),
    "bid": ("DATE_TIME", 0.6),
}


class ScriptedDetector:
    """Finds every occurrence of the scripted phrases; records each call."""

    def __init__(self, script: Mapping[str, tuple[str, float]] | None = None) -> None:
        self.script = dict(DEFAULT_SCRIPT if script is None else script)
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    async def analyze_text(self, text: str) -> list[Span]:
        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        spans: list[Span] = []
        for phrase, (entity_type, score) in self.script.items():
            start = text.find(phrase)
            while start != -1:
                end = start + len(phrase)
                spans.append(
                    Span(start=start, end=end, score=score, entity_type=entity_type, text=phrase)
                )
                start = text.find(phrase, end)
        return spans


@pytest.fixture()
def detector() -> ScriptedDetector:
    return ScriptedDetector()


@pytest.fixture()
def failing_detector() -> ScriptedDetector:
    scripted = ScriptedDetector()
    scripted.fail_with = DetectorError("analyzer unreachable")
    return scripted


@pytest.fixture()
def adapter() -> InMemoryPhiVaultAdapter:
    return InMemoryPhiVaultAdapter()


@pytest.fixture()
def service(adapter: InMemoryPhiVaultAdapter, detector: ScriptedDetector) -> PhiProtectionService:
    return PhiProtectionService(
        adapter,
        detector,
        span_filter=SpanFilter(),
        today=lambda: date(2025, 6, 1),
    )
