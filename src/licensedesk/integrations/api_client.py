from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from licensedesk.config import get_settings
from licensedesk.exceptions import (
    ConsoleError,
    NetworkError,
    ServerError,
    SessionExpiredError,
    ValidationError,
)
from licensedesk.integrations.http import build_outbound_headers
from licensedesk.security.auth.credentials import CredentialProvider

logger = logging.getLogger(__name__)


@dataclass
class _RequestState:
    method: str
    path: str
    retried: bool = False


def server_message(resp: httpx.Response) -> Optional[str]:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return None


def error_for_response(resp: httpx.Response, *, authenticated: bool = True) -> ConsoleError:
    message = server_message(resp)
    status = resp.status_code
    if status == 401 and authenticated:
        return SessionExpiredError()
    if 400 <= status < 500:
        return ValidationError(
            message or f"Request rejected ({status})",
            status_code=status,
            server_message=message,
        )
    return ServerError(
        message or f"Server error ({status})",
        status_code=status,
        server_message=message,
    )


class ApiClient:
    """
    Single chokepoint for requests to the license API.

    Each request carries the provider's current bearer token when there is
    one; without a token the request still goes out and the server decides.
    A 401 triggers at most one credential refresh and one retry for that
    request; when that is not possible the session is invalidated once and
    ``SessionExpiredError`` is raised. Navigation back to login is left to
    whoever listens for session changes.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.credentials = credentials
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else settings.HTTP_TIMEOUT_SECONDS
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_s, transport=transport
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        state: _RequestState,
        token: Optional[str],
        *,
        params: Optional[Mapping[str, Any]],
        json: Any,
    ) -> httpx.Response:
        headers = build_outbound_headers(token=token).as_dict()
        try:
            return await self._client.request(
                state.method, state.path, params=params, json=json, headers=headers
            )
        except httpx.TransportError as exc:
            logger.error("%s %s failed: %s", state.method, state.path, exc)
            raise NetworkError(method=state.method, path=state.path) from exc

    async def _handle_unauthorized(self, state: _RequestState, rejected: Optional[str]) -> None:
        logger.error("Unauthorized access - 401 (%s %s)", state.method, state.path)
        if await self.credentials.invalidate(rejected):
            logger.warning("Session invalidated after the server rejected its credential")

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        state = _RequestState(method=method.upper(), path=path)
        token: Optional[str] = None
        if authenticated:
            token = await self.credentials.get_credential()
            if not token:
                logger.warning(
                    "No credential available, sending %s %s without authorization",
                    state.method,
                    state.path,
                )

        resp = await self._send(state, token, params=params, json=json)

        if resp.status_code == 401 and authenticated:
            if not state.retried and token and self.credentials.can_refresh:
                state.retried = True
                refreshed = await self.credentials.refresh(token)
                if refreshed and refreshed != token:
                    token = refreshed
                    resp = await self._send(state, token, params=params, json=json)
            if resp.status_code == 401:
                await self._handle_unauthorized(state, token)

        if resp.is_error:
            raise error_for_response(resp, authenticated=authenticated)
        return resp

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self.request(method, path, **kwargs)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ServerError("Unexpected response from server", status_code=resp.status_code) from exc

    async def get(self, path: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request_json("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None, authenticated: bool = True) -> Any:
        return await self.request_json("POST", path, json=json, authenticated=authenticated)

    async def patch(self, path: str, *, json: Any = None) -> Any:
        return await self.request_json("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request_json("DELETE", path)


def make_api_client(
    credentials: CredentialProvider,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ApiClient:
    settings = get_settings()
    return ApiClient(
        credentials,
        base_url=settings.API_BASE_URL,
        timeout_s=settings.HTTP_TIMEOUT_SECONDS,
        transport=transport,
    )
