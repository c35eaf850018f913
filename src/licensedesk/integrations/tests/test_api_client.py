from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from licensedesk.context import new_correlation_id
from licensedesk.exceptions import NetworkError, ServerError, SessionExpiredError, ValidationError
from licensedesk.integrations.api_client import ApiClient, error_for_response
from licensedesk.integrations.http import bearer
from licensedesk.security.auth.credentials import CredentialProvider
from licensedesk.security.auth.session_store import SessionStore


class FakeCredentials(CredentialProvider):
    def __init__(self, token=None, refreshed=None):
        self.token = token
        self.refreshed = refreshed
        self.invalidations = []
        self.refresh_calls = []

    async def get_credential(self):
        return self.token

    async def invalidate(self, rejected):
        self.invalidations.append(rejected)
        if rejected is None or rejected != self.token:
            return False
        self.token = None
        return True

    @property
    def can_refresh(self):
        return self.refreshed is not None

    async def refresh(self, rejected):
        self.refresh_calls.append(rejected)
        self.token = self.refreshed
        return self.refreshed


def _client(credentials, handler) -> ApiClient:
    return ApiClient(
        credentials,
        base_url="http://api.test/api/v1",
        transport=httpx.MockTransport(handler),
    )


def _call(client: ApiClient, method: str, path: str, **kwargs):
    async def _go():
        async with client:
            return await client.request_json(method, path, **kwargs)

    return asyncio.run(_go())


def test_bearer_normalization():
    assert bearer("abc") == "Bearer abc"
    assert bearer("Bearer abc") == "Bearer abc"
    assert bearer("  ") is None
    assert bearer(None) is None


def test_attaches_token_and_correlation_id():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    correlation_id = new_correlation_id()
    out = _call(_client(FakeCredentials("tok-1"), handler), "GET", "/licenses", params={"limit": 10})

    assert out == {"ok": True}
    request = seen[0]
    assert request.url.path == "/api/v1/licenses"
    assert request.url.params["limit"] == "10"
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert request.headers["x-correlation-id"] == correlation_id
    assert request.headers["Content-Type"] == "application/json"


def test_request_without_token_goes_out_unauthenticated(caplog):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    with caplog.at_level(logging.WARNING, logger="licensedesk.integrations.api_client"):
        _call(_client(FakeCredentials(None), handler), "GET", "/apikeys")

    assert "Authorization" not in seen[0].headers
    assert "No credential available" in caplog.text


def test_concurrent_unauthorized_responses_clear_session_once():
    store = SessionStore()
    store.set_token("tok-1")
    notifications = []
    store.subscribe(notifications.append)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "token expired"})

    client = _client(store, handler)

    async def scenario():
        async with client:
            return await asyncio.gather(
                client.get("/licenses"),
                client.get("/apikeys"),
                client.get("/dashboard/summary"),
                return_exceptions=True,
            )

    results = asyncio.run(scenario())

    assert all(isinstance(r, SessionExpiredError) for r in results)
    assert store.is_authenticated is False
    assert store.token is None
    assert len(notifications) == 1


def test_unauthorized_login_attempt_is_not_a_session_expiry():
    store = SessionStore()
    store.set_token("tok-1")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid credentials"})

    with pytest.raises(ValidationError) as exc_info:
        _call(_client(store, handler), "POST", "/auth/login", json={}, authenticated=False)

    assert exc_info.value.message == "Invalid credentials"
    assert store.token == "tok-1"


def test_transport_failure_is_network_error_and_keeps_session():
    store = SessionStore()
    store.set_token("tok-1")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError) as exc_info:
        _call(_client(store, handler), "GET", "/licenses")

    assert exc_info.value.retryable is True
    assert exc_info.value.code == "NETWORK_ERROR"
    assert store.is_authenticated is True


def test_rejected_request_carries_server_message_verbatim():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Product name is too long"})

    with pytest.raises(ValidationError) as exc_info:
        _call(_client(FakeCredentials("tok"), handler), "POST", "/licenses", json={})

    assert exc_info.value.message == "Product name is too long"
    assert exc_info.value.status_code == 422


def test_server_error_without_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(ServerError) as exc_info:
        _call(_client(FakeCredentials("tok"), handler), "GET", "/dashboard/summary")

    assert exc_info.value.status_code == 500
    assert exc_info.value.server_message is None


def test_error_for_response_reads_detail_key():
    resp = httpx.Response(409, json={"detail": "Duplicate"})
    err = error_for_response(resp)
    assert isinstance(err, ValidationError)
    assert err.message == "Duplicate"


def test_no_content_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    assert _call(_client(FakeCredentials("tok"), handler), "DELETE", "/apikeys/1") is None


def test_unauthorized_triggers_one_refresh_and_retry():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        if request.headers.get("Authorization") == "Bearer old":
            return httpx.Response(401)
        return httpx.Response(200, json={"licenses": [], "totalCount": 0})

    credentials = FakeCredentials("old", refreshed="new")
    out = _call(_client(credentials, handler), "GET", "/licenses")

    assert out == {"licenses": [], "totalCount": 0}
    assert seen == ["Bearer old", "Bearer new"]
    assert credentials.refresh_calls == ["old"]
    assert credentials.invalidations == []


def test_unauthorized_after_refresh_invalidates_without_second_retry():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(401)

    credentials = FakeCredentials("old", refreshed="new")
    with pytest.raises(SessionExpiredError):
        _call(_client(credentials, handler), "GET", "/licenses")

    assert seen == ["Bearer old", "Bearer new"]
    assert credentials.refresh_calls == ["old"]
    assert credentials.invalidations == ["new"]
    assert credentials.token is None
