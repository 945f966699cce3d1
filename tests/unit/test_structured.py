from __future__ import annotations

import copy

import pytest

from phi_vault.errors import PhiValidationError
from phi_vault.structured import (
    has_any_value,
    has_phi_payload,
    separate_phi_payload,
    validate_phi_payload,
)


def test_nested_phi_object_is_lifted_out() -> None:
    record = {
        "record_identifier": "R-1",
        "phi": {"legal_name": {"given": "John", "family": "Doe"}, "full_dob": "1990-05-01"},
    }
    original = copy.deepcopy(record)

    separated = separate_phi_payload(record)

    assert record == original
    assert separated.sanitized == {"record_identifier": "R-1"}
    assert separated.phi_payload == {
        "legal_name": {"given": "John", "family": "Doe"},
        "full_dob": "1990-05-01",
    }


def test_top_level_demographic_keys_are_lifted_out() -> None:
    separated = separate_phi_payload(
        {"record_identifier": "R-1", "sex": "female", "address": {"state": "TX"}}
    )

    assert separated.sanitized == {"record_identifier": "R-1"}
    assert separated.phi_payload == {"sex": "female", "address": {"state": "TX"}}


def test_top_level_keys_override_nested_ones() -> None:
    separated = separate_phi_payload({"phi": {"sex": "male"}, "sex": "female"})
    assert separated.phi_payload == {"sex": "female"}


def test_record_without_phi_passes_through() -> None:
    separated = separate_phi_payload({"record_identifier": "R-1", "archived": False})

    assert separated.sanitized == {"record_identifier": "R-1", "archived": False}
    assert separated.phi_payload is None


def test_blank_phi_is_dropped_but_still_stripped() -> None:
    separated = separate_phi_payload(
        {"record_identifier": "R-1", "phi": {"legal_name": {"given": "  "}, "contact": {}}}
    )

    assert separated.sanitized == {"record_identifier": "R-1"}
    assert separated.phi_payload is None


def test_unknown_phi_keys_are_rejected() -> None:
    with pytest.raises(PhiValidationError) as excinfo:
        separate_phi_payload({"phi": {"ssn": "123-45-6789"}})
    assert "123-45-6789" not in str(excinfo.value)


def test_non_mapping_phi_is_rejected() -> None:
    with pytest.raises(PhiValidationError):
        separate_phi_payload({"phi": "John Doe"})


def test_validate_drops_none_values() -> None:
    assert validate_phi_payload({"sex": "male", "full_dob": None}) == {"sex": "male"}


def test_birth_year_bounds_are_enforced() -> None:
    with pytest.raises(PhiValidationError):
        validate_phi_payload({"birth_year": 1200})


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, False),
        ("", False),
        ("  ", False),
        ("x", True),
        ([], False),
        ([None, " "], False),
        ([None, "a"], True),
        ({"a": {"b": None}}, False),
        ({"a": {"b": 0}}, True),
        (False, True),
    ],
)
def test_has_any_value(value: object, expected: bool) -> None:
    assert has_any_value(value) is expected


def test_has_phi_payload_requires_mapping() -> None:
    assert has_phi_payload({"sex": "male"})
    assert not has_phi_payload(["male"])
    assert not has_phi_payload(None)
