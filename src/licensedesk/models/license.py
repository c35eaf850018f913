from __future__ import annotations

import enum
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from licensedesk.models.base import ApiModel, to_iso

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LicenseStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    EXPIRED = "expired"
    REVOKED = "revoked"


class License(ApiModel):
    id: str
    license_key: str
    status: LicenseStatus
    type: str
    product_name: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Optional[Any] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class LicensePage(ApiModel):
    licenses: List[License] = Field(default_factory=list)
    total_count: int = Field(default=0, alias="totalCount")


def parse_metadata(text: Optional[str]) -> Any:
    if text is None or not text.strip():
        return None
    return json.loads(text)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _check_email(value: Optional[str]) -> Optional[str]:
    value = _blank_to_none(value)
    if value is not None and not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


def _check_metadata(value: Optional[str]) -> Optional[str]:
    try:
        parse_metadata(value)
    except json.JSONDecodeError as exc:
        raise ValueError("Metadata must be valid JSON or empty") from exc
    return value


class LicenseCreate(BaseModel):
    type: str = Field(default="", validate_default=True)
    product_name: str = Field(default="", validate_default=True)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("type")
    @classmethod
    def type_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("License type is required")
        return value

    @field_validator("product_name")
    @classmethod
    def product_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Product name is required")
        return value

    @field_validator("customer_email")
    @classmethod
    def valid_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("metadata")
    @classmethod
    def valid_metadata(cls, value: Optional[str]) -> Optional[str]:
        return _check_metadata(value)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "product_name": self.product_name,
            "customer_name": _blank_to_none(self.customer_name),
            "customer_email": _blank_to_none(self.customer_email),
            "metadata": parse_metadata(self.metadata),
            "expires_at": to_iso(self.expires_at),
        }


class LicenseEdit(BaseModel):
    """
    Edited license fields. Only fields that were explicitly given take
    part in the diff; an empty string or None clears optional values.
    """

    type: Optional[str] = None
    product_name: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("customer_email")
    @classmethod
    def valid_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @field_validator("metadata")
    @classmethod
    def valid_metadata(cls, value: Optional[str]) -> Optional[str]:
        return _check_metadata(value)

    def changes_against(self, current: License) -> Dict[str, Any]:
        given = self.model_fields_set
        changed: Dict[str, Any] = {}

        for name in ("type", "product_name"):
            value = _blank_to_none(getattr(self, name))
            if name in given and value is not None and value != getattr(current, name):
                changed[name] = value

        for name in ("customer_name", "customer_email"):
            value = _blank_to_none(getattr(self, name))
            if name in given and value != getattr(current, name):
                changed[name] = value

        if "expires_at" in given:
            new_expiry = to_iso(self.expires_at)
            if new_expiry != to_iso(current.expires_at):
                changed["expires_at"] = new_expiry

        if "metadata" in given:
            new_meta = parse_metadata(self.metadata)
            if json.dumps(new_meta, sort_keys=True) != json.dumps(current.metadata, sort_keys=True):
                changed["metadata"] = new_meta

        return changed

    def to_payload(self) -> Dict[str, Any]:
        """Partial-update body from the explicitly given fields alone."""
        given = self.model_fields_set
        payload: Dict[str, Any] = {}
        for name in ("type", "product_name"):
            value = _blank_to_none(getattr(self, name))
            if name in given and value is not None:
                payload[name] = value
        for name in ("customer_name", "customer_email"):
            if name in given:
                payload[name] = _blank_to_none(getattr(self, name))
        if "expires_at" in given:
            payload["expires_at"] = to_iso(self.expires_at)
        if "metadata" in given:
            payload["metadata"] = parse_metadata(self.metadata)
        return payload
