from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from licensedesk.models.base import ApiModel


class LoginRequest(BaseModel):
    username: str = Field(default="", validate_default=True)
    password: str = Field(default="", validate_default=True)

    @field_validator("username", "password")
    @classmethod
    def not_blank(cls, value: str, info) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name.capitalize()} is required")
        return value


class LoginResponse(ApiModel):
    access_token: str
