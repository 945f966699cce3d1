from __future__ import annotations

import pytest
from pydantic import BaseModel, ValidationError

from phi_vault.errors import (
    DetectorError,
    DetectorUnavailableError,
    PhiErrorCode,
    PhiValidationError,
    StructuredVaultConflictError,
    VaultStoreError,
    error_payload,
    redact_sensitive,
    validation_error,
)


class _Probe(BaseModel):
    name: str
    age: int


def test_error_codes_and_retryability() -> None:
    assert DetectorError("x").code is PhiErrorCode.DETECTOR_FAILURE
    assert DetectorUnavailableError("x").code is PhiErrorCode.DETECTOR_UNAVAILABLE
    assert VaultStoreError("x").retryable is True
    assert PhiValidationError("x").retryable is False
    assert isinstance(PhiValidationError("x"), ValueError)


def test_conflict_error_carries_winner() -> None:
    exc = StructuredVaultConflictError("dep-1", "a" * 24)

    assert exc.code is PhiErrorCode.CONFLICT
    assert exc.existing_id == "a" * 24
    assert isinstance(exc, VaultStoreError)
    assert "dep-1" in str(exc)


def test_error_payload_shape() -> None:
    payload = error_payload(DetectorError("analyzer down", details={"status": "503"}))

    error = payload["error"]
    assert error["code"] == "DetectorFailure"
    assert error["message"] == "analyzer down"
    assert error["retryable"] is True
    assert error["details"][0]["field"] == "status"
    assert "Retry later" in error["details"][0]["hint"]


def test_error_payload_redacts_secrets() -> None:
    payload = error_payload(VaultStoreError("connect failed password=hunter2"))
    assert "hunter2" not in str(payload)


def test_validation_error_omits_input_values() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _Probe.model_validate({"name": "John Doe", "age": "forty"})

    converted = validation_error(excinfo.value)

    assert converted.code is PhiErrorCode.INVALID_INPUT
    assert "age" in converted.details
    assert "forty" not in str(converted)


def test_redact_sensitive() -> None:
    assert redact_sensitive("token=abc key=xyz") == "token=*** key=***"
