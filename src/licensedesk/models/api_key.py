from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from licensedesk.models.base import ApiModel


class ApiKey(ApiModel):
    id: str
    prefix: str
    description: str = ""
    is_enabled: bool = True
    created_at: datetime
    last_used_at: Optional[datetime] = None


class CreatedApiKey(ApiModel):
    """
    Creation response. ``full_key`` is only ever returned here; it is a
    ``SecretStr`` so it does not show up in reprs or logs.
    """

    id: str
    full_key: SecretStr
    prefix: str
    description: str = ""

    def reveal(self) -> str:
        return self.full_key.get_secret_value()


class ApiKeyCreate(BaseModel):
    description: str = Field(default="", validate_default=True)

    @field_validator("description")
    @classmethod
    def description_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value
