"""Substitute vault tokens back into text for authorized readers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from .constants import MASKED_TOKEN
from .logging import get_logger
from .models import UnstructuredVaultEntry
from .tokens import TOKEN_PATTERN

logger = get_logger(__name__)

POLICY_PASSTHROUGH = "passthrough"
POLICY_MASK = "mask"
_POLICIES = frozenset({POLICY_PASSTHROUGH, POLICY_MASK})


@dataclass(frozen=True)
class ResolveResult:
    text: str
    resolved: int = 0
    unresolved: int = 0


@dataclass(frozen=True)
class TreeResolveResult:
    value: Any
    resolved: int = 0
    unresolved: int = 0


def index_entries(entries: Iterable[UnstructuredVaultEntry]) -> dict[str, UnstructuredVaultEntry]:
    if isinstance(entries, Mapping):
        return dict(entries)
    return {entry.id: entry for entry in entries}


def _check_policy(policy: str) -> str:
    if policy not in _POLICIES:
        raise ValueError(f"Unsupported unresolved token policy '{policy}'")
    return policy


def _substitute(
    text: str,
    index: Mapping[str, UnstructuredVaultEntry],
    render: Callable[[UnstructuredVaultEntry, str | None], str],
    policy: str,
) -> ResolveResult:
    resolved = 0
    unresolved = 0

    def _replace(match: Any) -> str:
        nonlocal resolved, unresolved
        entry = index.get(match.group("entry_id"))
        if entry is None:
            unresolved += 1
            return MASKED_TOKEN if policy == POLICY_MASK else match.group(0)
        resolved += 1
        return render(entry, match.group("entity_type"))

    output = TOKEN_PATTERN.sub(_replace, text)
    return ResolveResult(text=output, resolved=resolved, unresolved=unresolved)


def _real_value(entry: UnstructuredVaultEntry, _entity_type: str | None) -> str:
    return entry.value


def resolve(
    text: str,
    entries: Iterable[UnstructuredVaultEntry] | Mapping[str, UnstructuredVaultEntry],
    *,
    policy: str = POLICY_PASSTHROUGH,
) -> ResolveResult:
    """Replace every vault token in ``text`` with its original value.

    Both token forms are recognised. Tokens whose entry is not in
    ``entries`` are left verbatim (``passthrough``) or replaced with
    ``[Redacted]`` (``mask``); either way they are counted, never raised.
    """

    _check_policy(policy)
    if not text:
        return ResolveResult(text=text)
    result = _substitute(text, index_entries(entries), _real_value, policy)
    if result.unresolved:
        logger.warning("phi.reconstruct.unresolved", unresolved=result.unresolved, policy=policy)
    return result


def deidentify_string(
    text: str,
    entries: Iterable[UnstructuredVaultEntry] | Mapping[str, UnstructuredVaultEntry],
    *,
    policy: str = POLICY_PASSTHROUGH,
) -> str:
    return resolve(text, entries, policy=policy).text


def resolve_tree(
    value: Any,
    entries: Iterable[UnstructuredVaultEntry] | Mapping[str, UnstructuredVaultEntry],
    *,
    policy: str = POLICY_PASSTHROUGH,
) -> TreeResolveResult:
    """Walk dicts, lists and tuples, resolving tokens in string leaves only.

    Returns a new structure with aggregate counts; keys, ordering and
    non-string leaves are preserved and ``value`` is not modified.
    """

    _check_policy(policy)
    index = index_entries(entries)
    totals = {"resolved": 0, "unresolved": 0}

    def _walk(node: Any) -> Any:
        if isinstance(node, str):
            if not node:
                return node
            result = _substitute(node, index, _real_value, policy)
            totals["resolved"] += result.resolved
            totals["unresolved"] += result.unresolved
            return result.text
        if isinstance(node, Mapping):
            return {key: _walk(item) for key, item in node.items()}
        if isinstance(node, list):
            return [_walk(item) for item in node]
        if isinstance(node, tuple):
            return tuple(_walk(item) for item in node)
        return node

    output = _walk(value)
    if totals["unresolved"]:
        logger.warning(
            "phi.reconstruct.unresolved", unresolved=totals["unresolved"], policy=policy
        )
    return TreeResolveResult(value=output, **totals)


def _parse_year(value: str) -> int | None:
    candidate = value.strip()
    for parser in (date.fromisoformat, datetime.fromisoformat):
        try:
            return parser(candidate).year
        except ValueError:
            continue
    for fmt in ("%m/%d/%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%Y"):
        try:
            return datetime.strptime(candidate, fmt).year
        except ValueError:
            continue
    return None


def _placeholder(entry: UnstructuredVaultEntry, entity_type: str | None) -> str:
    kind = entry.phi_type or entity_type
    if kind == "PERSON":
        return "[Name]"
    if kind == "DATE_TIME":
        year = _parse_year(entry.value)
        return str(year) if year is not None else "[Date]"
    return MASKED_TOKEN


def mask_string(
    text: str,
    entries: Iterable[UnstructuredVaultEntry] | Mapping[str, UnstructuredVaultEntry],
) -> str:
    """Render tokens as coarse placeholders suitable for model prompts.

    Names become ``[Name]``, dates keep only their year and everything else,
    including unknown tokens, becomes ``[Redacted]``.
    """

    if not text:
        return text
    return _substitute(text, index_entries(entries), _placeholder, POLICY_MASK).text


__all__ = [
    "POLICY_MASK",
    "POLICY_PASSTHROUGH",
    "ResolveResult",
    "TreeResolveResult",
    "deidentify_string",
    "index_entries",
    "mask_string",
    "resolve",
    "resolve_tree",
]
