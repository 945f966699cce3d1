"""PHI span detection and filtering."""

from .detector import BREAKER_NAME, PhiDetector, PresidioAnalyzerDetector
from .filter import SpanFilter, resolve_overlaps, validate_known_identifiers

__all__ = [
    "BREAKER_NAME",
    "PhiDetector",
    "PresidioAnalyzerDetector",
    "SpanFilter",
    "resolve_overlaps",
    "validate_known_identifiers",
]
