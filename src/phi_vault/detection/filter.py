"""Narrow detected spans before vaulting.

Rules applied in order:

1. malformed bounds and scores below ``min_score`` are dropped;
2. excluded entity types (``MEDICAL_CONDITION`` by default) are dropped;
3. ``PERSON`` spans naming a medical term and ``DATE_TIME`` spans that are
   only dosing frequencies (at least one frequency word, the rest numbers)
   are dropped as known detector false positives;
4. spans overlapping an existing vault token are dropped;
5. with a non-empty known-identifier list, gated spans survive only when
   their exact substring is one of the identifiers;
6. overlaps are resolved: higher score wins, then the longer span, then the
   earlier start. Losers are dropped entirely.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from ..errors import PhiValidationError
from ..models import Span
from ..tokens import token_ranges

MEDICAL_TERMS = frozenset(
    {
        "diabetes", "cancer", "polymyalgia", "rheumatica", "syndrome", "disease",
        "disorder", "hypertension", "asthma", "arthritis", "infection", "fracture",
        "injury", "pmr", "copd", "chf", "anemia", "depression", "anxiety", "alzheimer",
        "dementia", "epilepsy", "seizure", "stroke", "migraine", "obesity",
        "osteoporosis", "fibromyalgia", "lupus", "sclerosis", "hepatitis", "hiv",
        "aids", "influenza", "pneumonia", "bronchitis", "tuberculosis", "malaria",
        "measles", "autism", "adhd", "schizophrenia", "bipolar", "paranoia",
        "insomnia", "apnea", "narcolepsy", "glaucoma", "cataract", "conjunctivitis",
        "blindness", "deafness", "tinnitus", "vertigo", "psoriasis", "eczema", "acne",
        "rosacea", "hives", "melanoma", "leukemia", "lymphoma", "sarcoma",
        "carcinoma", "tumor", "cyst", "polyp", "nodule", "lesion", "ulcer", "abscess",
        "hemorrhage", "thrombosis", "embolism", "infarction", "aneurysm", "stenosis",
        "ischemia", "arrhythmia", "fibrillation", "tachycardia", "bradycardia",
        "palpitation", "murmur", "angina", "cardiomyopathy", "myocarditis",
        "pericarditis", "endocarditis", "valvulopathy", "regurgitation", "prolapse",
        "atherosclerosis", "arteriosclerosis", "thrombophlebitis", "varicose",
        "dissection", "shock", "arrest", "failure", "insufficiency", "dysfunction",
        "deficiency",
    }
)

FREQUENCY_TERMS = frozenset(
    {
        "daily", "weekly", "monthly", "yearly", "hourly", "bid", "tid", "qid", "prn",
        "ac", "pc", "hs", "po", "iv", "im", "sc",
    }
)

_WORD_SPLIT = re.compile(r"[\s-]+")


def _words(value: str) -> list[str]:
    return [word for word in _WORD_SPLIT.split(value.lower()) if word]


def is_medical_term(value: str) -> bool:
    return any(word in MEDICAL_TERMS for word in _words(value))


def is_frequency_term(value: str) -> bool:
    """True for dosing schedules such as "bid" or "2 daily".

    Purely numeric values ("2024-03-01") are real dates and do not qualify.
    """

    words = _words(value)
    if not any(word in FREQUENCY_TERMS for word in words):
        return False
    return all(word in FREQUENCY_TERMS or _is_number(word) for word in words)


def _is_number(word: str) -> bool:
    try:
        float(word)
    except ValueError:
        return False
    return True


def validate_known_identifiers(known_identifiers: Any) -> Optional[tuple[str, ...]]:
    """Return ``known_identifiers`` as a tuple, or ``None`` for "no restriction".

    Anything other than ``None`` or a list/tuple/set of non-blank strings is
    rejected rather than silently treated as unrestricted.
    """

    if known_identifiers is None:
        return None
    if isinstance(known_identifiers, (str, bytes)) or not isinstance(
        known_identifiers, (list, tuple, set, frozenset)
    ):
        raise PhiValidationError(
            "known_identifiers must be a list of strings",
            details={"known_identifiers": type(known_identifiers).__name__},
        )
    identifiers: list[str] = []
    for index, item in enumerate(known_identifiers):
        if not isinstance(item, str) or not item.strip():
            raise PhiValidationError(
                "known_identifiers entries must be non-empty strings",
                details={f"known_identifiers.{index}": "invalid entry"},
            )
        identifiers.append(item)
    return tuple(identifiers)


def resolve_overlaps(spans: Iterable[Span]) -> list[Span]:
    """Keep a non-overlapping subset, preferring score, then length, then position."""

    ranked = sorted(spans, key=lambda span: (-span.score, -span.length, span.start))
    kept: list[Span] = []
    for candidate in ranked:
        if any(candidate.overlaps(existing) for existing in kept):
            continue
        kept.append(candidate)
    return kept


class SpanFilter:
    """Applies confidence, false-positive, known-identifier and overlap rules."""

    def __init__(
        self,
        *,
        min_score: float = 0.0,
        excluded_entity_types: Iterable[str] = ("MEDICAL_CONDITION",),
        gated_entity_types: Iterable[str] | None = None,
        suppress_false_positives: bool = True,
    ) -> None:
        self.min_score = min_score
        self.excluded_entity_types = frozenset(item.upper() for item in excluded_entity_types)
        self.gated_entity_types = (
            frozenset(item.upper() for item in gated_entity_types)
            if gated_entity_types is not None
            else None
        )
        self.suppress_false_positives = suppress_false_positives

    def apply(
        self,
        text: str,
        spans: Sequence[Span],
        known_identifiers: Sequence[str] | None = None,
    ) -> list[Span]:
        """Return surviving spans sorted by descending start offset."""

        identifiers = validate_known_identifiers(known_identifiers)
        known = frozenset(identifiers) if identifiers else None
        protected = token_ranges(text)

        candidates: list[Span] = []
        for span in spans:
            if not self._in_bounds(text, span) or span.score < self.min_score:
                continue
            entity_type = span.entity_type.upper()
            value = text[span.start : span.end]
            if entity_type in self.excluded_entity_types:
                continue
            if self.suppress_false_positives and self._is_false_positive(entity_type, value):
                continue
            if any(span.start < end and start < span.end for start, end in protected):
                continue
            if known is not None and self._is_gated(entity_type) and value not in known:
                continue
            candidates.append(span)

        kept = resolve_overlaps(candidates)
        kept.sort(key=lambda span: span.start, reverse=True)
        return kept

    def _is_gated(self, entity_type: str) -> bool:
        return self.gated_entity_types is None or entity_type in self.gated_entity_types

    @staticmethod
    def _in_bounds(text: str, span: Span) -> bool:
        return 0 <= span.start < span.end <= len(text)

    @staticmethod
    def _is_false_positive(entity_type: str, value: str) -> bool:
        if entity_type == "PERSON" and is_medical_term(value):
            return True
        if entity_type == "DATE_TIME" and is_frequency_term(value):
            return True
        return False


__all__ = [
    "FREQUENCY_TERMS",
    "MEDICAL_TERMS",
    "SpanFilter",
    "is_frequency_term",
    "is_medical_term",
    "resolve_overlaps",
    "validate_known_identifiers",
]
