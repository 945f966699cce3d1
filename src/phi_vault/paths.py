"""Dotted-path access into nested records.

Segments name mapping keys; a numeric segment indexes into a list, so
``items.0.note`` reaches the ``note`` of the first item.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any

_MISSING = object()


def split_path(path: str) -> list[str]:
    parts = [part for part in path.split(".") if part]
    if not parts:
        raise ValueError(f"Invalid field path '{path}'")
    return parts


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _step(current: Any, part: str) -> Any:
    if isinstance(current, Mapping):
        return current[part] if part in current else _MISSING
    if _is_sequence(current) and part.isdigit():
        index = int(part)
        return current[index] if index < len(current) else _MISSING
    return _MISSING


def get_path(record: Mapping[str, Any], path: str, default: Any = None) -> Any:
    current: Any = record
    for part in split_path(path):
        current = _step(current, part)
        if current is _MISSING:
            return default
    return current


def set_path(record: MutableMapping[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at ``path``; intermediate containers must already exist."""

    parts = split_path(path)
    current: Any = record
    for part in parts[:-1]:
        current = current[int(part)] if _is_sequence(current) else current[part]
    last = parts[-1]
    if _is_sequence(current):
        current[int(last)] = value
    else:
        current[last] = value


__all__ = ["get_path", "set_path", "split_path"]
