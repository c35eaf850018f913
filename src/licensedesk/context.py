from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


@dataclass(frozen=True)
class RequestContext:
    correlation_id: Optional[str]


def get_request_context() -> RequestContext:
    return RequestContext(correlation_id=correlation_id_var.get())


def new_correlation_id() -> str:
    correlation_id = uuid.uuid4().hex
    correlation_id_var.set(correlation_id)
    return correlation_id
