"""Vault token wire format and entry identifier helpers.

Tokens are embedded in sanitized text in place of PHI spans::

    phi:vault:<ENTITY_TYPE>:<24-hex entry id>
    phi:vault:<24-hex entry id>            (legacy, no entity type)

The format is shared with downstream consumers and must stay bit-exact.
"""

from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass
from typing import Iterator, Optional

from .constants import ENTRY_ID_LENGTH, TOKEN_PREFIX

_ENTITY_TYPE_CLEAN = re.compile(r"[^A-Z0-9_]+")
_ENTRY_ID_RE = re.compile(rf"^[a-f0-9]{{{ENTRY_ID_LENGTH}}}$")

TOKEN_PATTERN = re.compile(
    rf"{re.escape(TOKEN_PREFIX)}(?::(?P<entity_type>[A-Z][A-Z0-9_]*))?"
    rf":(?P<entry_id>[a-f0-9]{{{ENTRY_ID_LENGTH}}})"
)


@dataclass(frozen=True)
class TokenMatch:
    token: str
    entry_id: str
    entity_type: Optional[str]
    start: int
    end: int


def normalise_entity_type(entity_type: str) -> str:
    """Return ``entity_type`` in the upper-snake form used inside tokens."""

    cleaned = _ENTITY_TYPE_CLEAN.sub("_", entity_type.strip().upper()).strip("_")
    if not cleaned:
        return "UNKNOWN"
    if not cleaned[0].isalpha():
        cleaned = f"T_{cleaned}"
    return cleaned


def make_token(entry_id: str, entity_type: str | None = None) -> str:
    if not is_entry_id(entry_id):
        raise ValueError(f"Invalid vault entry id '{entry_id}'")
    if entity_type:
        return f"{TOKEN_PREFIX}:{normalise_entity_type(entity_type)}:{entry_id}"
    return f"{TOKEN_PREFIX}:{entry_id}"


def iter_tokens(text: str) -> Iterator[TokenMatch]:
    for match in TOKEN_PATTERN.finditer(text):
        yield TokenMatch(
            token=match.group(0),
            entry_id=match.group("entry_id"),
            entity_type=match.group("entity_type"),
            start=match.start(),
            end=match.end(),
        )


def token_ranges(text: str) -> list[tuple[int, int]]:
    return [(match.start, match.end) for match in iter_tokens(text)]


def contains_token(text: str) -> bool:
    return TOKEN_PREFIX in text and TOKEN_PATTERN.search(text) is not None


def is_entry_id(value: object) -> bool:
    return isinstance(value, str) and bool(_ENTRY_ID_RE.match(value))


def new_entry_id() -> str:
    """Generate a 24-hex identifier (4-byte timestamp + 8 random bytes)."""

    timestamp = int(time.time()).to_bytes(4, "big")
    return (timestamp + os.urandom(8)).hex()


__all__ = [
    "TOKEN_PATTERN",
    "TokenMatch",
    "contains_token",
    "is_entry_id",
    "iter_tokens",
    "make_token",
    "new_entry_id",
    "normalise_entity_type",
    "token_ranges",
]
