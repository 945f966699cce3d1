"""Error types and structured error payloads for the PHI vault engine."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

_SENSITIVE_PATTERN = re.compile(r"(?i)(token|secret|password|key)=([^\s]+)")


class PhiErrorCode(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    DETECTOR_FAILURE = "DetectorFailure"
    DETECTOR_UNAVAILABLE = "DetectorUnavailable"
    VAULT_STORE_FAILURE = "VaultStoreFailure"
    TIMEOUT = "Timeout"
    INTERNAL_ERROR = "InternalError"


class PhiVaultError(RuntimeError):
    """Base error for PHI detection, vaulting and reconstruction failures."""

    default_code = PhiErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: PhiErrorCode | None = None,
        details: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        base = f"{self.code.value}: {self.args[0]}"
        if self.details:
            return f"{base} ({self.details})"
        return base

    @property
    def retryable(self) -> bool:
        return self.code in {
            PhiErrorCode.DETECTOR_FAILURE,
            PhiErrorCode.DETECTOR_UNAVAILABLE,
            PhiErrorCode.TIMEOUT,
            PhiErrorCode.VAULT_STORE_FAILURE,
        }


class PhiValidationError(PhiVaultError, ValueError):
    """Raised when caller input (identifiers, payloads, ids) is malformed."""

    default_code = PhiErrorCode.INVALID_INPUT


class DetectorError(PhiVaultError):
    """Raised when the PHI analyzer fails; the enclosing write must abort."""

    default_code = PhiErrorCode.DETECTOR_FAILURE


class DetectorUnavailableError(DetectorError):
    """Raised when the analyzer circuit breaker is open or trips on this call."""

    default_code = PhiErrorCode.DETECTOR_UNAVAILABLE


class VaultStoreError(PhiVaultError):
    """Raised when the vault store cannot persist or read entries."""

    default_code = PhiErrorCode.VAULT_STORE_FAILURE


class StructuredVaultConflictError(VaultStoreError):
    """Raised by a store when a dependent already owns a structured vault document."""

    default_code = PhiErrorCode.CONFLICT

    def __init__(self, dependent_id: str, existing_id: str | None = None) -> None:
        super().__init__(
            f"Structured PHI vault already exists for dependent '{dependent_id}'",
            details={"dependent_id": dependent_id},
        )
        self.dependent_id = dependent_id
        self.existing_id = existing_id


@dataclass(frozen=True)
class ErrorDetail:
    """Structured hint used by clients to self-correct failed requests."""

    issue: str
    field: Optional[str] = None
    hint: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"issue": self.issue}
        if self.field:
            payload["field"] = self.field
        if self.hint:
            payload["hint"] = self.hint
        if self.code:
            payload["code"] = self.code
        return payload


def redact_sensitive(text: str) -> str:
    """Mask obvious secrets in error messages."""
    return _SENSITIVE_PATTERN.sub(lambda m: f"{m.group(1)}=***", text)


def error_detail(
    issue: str,
    *,
    field: Optional[str] = None,
    hint: Optional[str] = None,
    code: Optional[str] = None,
) -> ErrorDetail:
    """Convenience helper to build an ErrorDetail entry."""

    return ErrorDetail(issue=issue, field=field, hint=hint, code=code)


def join_field(parts: Iterable[Any]) -> Optional[str]:
    """Convert ValidationError locations into dotted field names."""

    formatted = []
    for part in parts:
        if part in {"__root__", None}:
            continue
        formatted.append(str(part))
    if not formatted:
        return None
    return ".".join(formatted)


def validation_errors_to_details(errors: Iterable[dict[str, Any]]) -> List[ErrorDetail]:
    """Translate pydantic ValidationError entries into ErrorDetail records."""

    details: list[ErrorDetail] = []
    for item in errors:
        issue = item.get("msg", "Invalid value")
        field = join_field(item.get("loc") or ())
        code = item.get("type")
        details.append(error_detail(issue=issue, field=field, code=code))
    return details


def validation_error(exc: ValidationError, *, message: str = "Validation failed") -> PhiValidationError:
    """Convert a pydantic ValidationError into a PhiValidationError.

    Input values are deliberately not echoed: they may be PHI.
    """

    details = validation_errors_to_details(exc.errors())
    mapped = {detail.field or "input": detail.issue for detail in details}
    return PhiValidationError(details[0].issue if details else message, details=mapped)


_HINTS = {
    PhiErrorCode.DETECTOR_FAILURE: "The PHI analyzer failed; nothing was persisted. Retry later.",
    PhiErrorCode.DETECTOR_UNAVAILABLE: "The PHI analyzer is temporarily disabled after repeated failures.",
    PhiErrorCode.VAULT_STORE_FAILURE: "The vault store rejected the write; the record was not updated.",
    PhiErrorCode.TIMEOUT: "The PHI analyzer did not answer in time; nothing was persisted.",
}


def error_payload(exc: PhiVaultError) -> dict[str, Any]:
    """Render ``exc`` as the structured error body returned by tool handlers."""

    hint = _HINTS.get(exc.code)
    entries = [
        error_detail(issue=str(value), field=str(key), hint=hint)
        for key, value in exc.details.items()
    ]
    if not entries and hint:
        entries.append(error_detail(issue=redact_sensitive(str(exc.args[0])), hint=hint))

    message = str(exc.args[0]) if exc.args else str(exc)
    payload: dict[str, Any] = {
        "code": exc.code.value,
        "message": redact_sensitive(message),
        "retryable": exc.retryable,
    }
    if entries:
        payload["details"] = [entry.to_dict() for entry in entries]
    return {"error": payload}


__all__ = [
    "DetectorError",
    "DetectorUnavailableError",
    "ErrorDetail",
    "PhiErrorCode",
    "PhiValidationError",
    "PhiVaultError",
    "StructuredVaultConflictError",
    "VaultStoreError",
    "error_detail",
    "error_payload",
    "join_field",
    "redact_sensitive",
    "validation_error",
    "validation_errors_to_details",
]
