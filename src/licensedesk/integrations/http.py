from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from licensedesk.context import get_request_context


@dataclass(frozen=True)
class OutboundHeaders:
    correlation_id: Optional[str]
    authorization: Optional[str]

    def as_dict(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.correlation_id:
            headers["x-correlation-id"] = self.correlation_id
        if self.authorization:
            headers["Authorization"] = self.authorization
        return headers


def bearer(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    token = token.strip()
    if not token:
        return None
    if token.lower().startswith("bearer "):
        return token
    return f"Bearer {token}"


def build_outbound_headers(*, token: Optional[str] = None) -> OutboundHeaders:
    ctx = get_request_context()
    return OutboundHeaders(
        correlation_id=ctx.correlation_id,
        authorization=bearer(token),
    )
