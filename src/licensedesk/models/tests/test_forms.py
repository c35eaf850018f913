from __future__ import annotations

from datetime import datetime, timezone

import pytest

from licensedesk.exceptions import ValidationError
from licensedesk.models import (
    ApiKeyCreate,
    License,
    LicenseCreate,
    LicenseEdit,
    LoginRequest,
    validate_form,
)
from licensedesk.models.base import to_iso


def _current(**overrides) -> License:
    data = {
        "id": "1",
        "license_key": "LK-1",
        "status": "active",
        "type": "trial",
        "product_name": "Agent",
        "customer_name": "Acme",
        "customer_email": None,
        "metadata": None,
        "expires_at": None,
        "created_at": "2024-01-01T00:00:00Z",
    }
    data.update(overrides)
    return License.model_validate(data)


@pytest.mark.parametrize(
    "data,field,message",
    [
        ({"product_name": "Agent"}, "type", "License type is required"),
        ({"type": "trial", "product_name": "  "}, "product_name", "Product name is required"),
        (
            {"type": "trial", "product_name": "Agent", "customer_email": "not-an-email"},
            "customer_email",
            "Invalid email address",
        ),
        (
            {"type": "trial", "product_name": "Agent", "metadata": "{broken"},
            "metadata",
            "Metadata must be valid JSON or empty",
        ),
    ],
)
def test_license_create_validation(data, field, message):
    with pytest.raises(ValidationError) as exc_info:
        validate_form(LicenseCreate, **data)
    assert exc_info.value.field == field
    assert exc_info.value.message == message


def test_metadata_accepts_any_json_value():
    form = validate_form(LicenseCreate, type="trial", product_name="Agent", metadata="[1, 2]")
    assert form.to_payload()["metadata"] == [1, 2]


def test_blank_login_and_description_are_rejected():
    with pytest.raises(ValidationError) as exc_info:
        validate_form(LoginRequest, username="", password="pw")
    assert exc_info.value.message == "Username is required"

    with pytest.raises(ValidationError) as exc_info:
        validate_form(ApiKeyCreate, description="   ")
    assert exc_info.value.field == "description"


def test_edit_diff_ignores_untouched_fields():
    form = LicenseEdit(customer_name="Acme")
    assert form.changes_against(_current()) == {}


def test_edit_diff_can_clear_optional_fields():
    current = _current(expires_at="2025-01-01T00:00:00Z", metadata={"seats": 2})
    form = LicenseEdit(customer_name="", expires_at=None, metadata="")

    assert form.changes_against(current) == {
        "customer_name": None,
        "expires_at": None,
        "metadata": None,
    }


def test_edit_diff_compares_metadata_by_value():
    current = _current(metadata={"a": 1, "b": 2})
    assert LicenseEdit(metadata='{"b": 2, "a": 1}').changes_against(current) == {}


def test_edit_payload_from_given_fields():
    form = LicenseEdit(type="subscription", customer_email="", expires_at=datetime(2025, 3, 1))
    assert form.to_payload() == {
        "type": "subscription",
        "customer_email": None,
        "expires_at": "2025-03-01T00:00:00Z",
    }


def test_to_iso_normalizes_to_utc():
    assert to_iso(None) is None
    assert to_iso(datetime(2025, 3, 1, tzinfo=timezone.utc)) == "2025-03-01T00:00:00Z"
