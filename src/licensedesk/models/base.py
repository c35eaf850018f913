from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from licensedesk.exceptions import ValidationError

FormT = TypeVar("FormT", bound=BaseModel)


class ApiModel(BaseModel):
    """Record returned by the license API; unknown fields are ignored."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class CamelModel(ApiModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
        alias_generator=to_camel,
    )


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _error_message(err: dict) -> str:
    msg = str(err.get("msg") or "Invalid value")
    prefix = "Value error, "
    if msg.startswith(prefix):
        msg = msg[len(prefix):]
    return msg


def validate_form(form_cls: Type[FormT], **data: Any) -> FormT:
    """Build a form model, reporting the first invalid field as ``ValidationError``."""
    try:
        return form_cls(**data)
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = first.get("loc") or ()
        field = str(loc[0]) if loc else None
        raise ValidationError(_error_message(first), field=field) from exc
