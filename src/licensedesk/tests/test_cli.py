from __future__ import annotations

import functools
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from typer.testing import CliRunner

from licensedesk import __version__, cli
from licensedesk.config import get_settings
from licensedesk.security.auth.storage import JsonFileStorage

runner = CliRunner()

_LICENSE = {
    "id": "7",
    "license_key": "LK-0007",
    "status": "active",
    "type": "subscription",
    "product_name": "Agent",
    "customer_email": "ops@acme.test",
    "created_at": "2024-01-01T00:00:00Z",
}


class FakeApi:
    def __init__(self):
        self.requests = []
        self.routes = {}

    def route(self, method: str, path: str, response: httpx.Response) -> None:
        self.routes[(method, path)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v1")
        response = self.routes.get((request.method, path))
        if response is None:
            return httpx.Response(404, json={"message": f"No route {request.method} {path}"})
        return response


@pytest.fixture
def api(monkeypatch):
    fake = FakeApi()
    monkeypatch.setattr(
        cli, "open_console", functools.partial(cli.open_console, transport=httpx.MockTransport(fake))
    )
    return fake


def _sign_in(token: str = "tok-1") -> JsonFileStorage:
    storage = JsonFileStorage(get_settings().SESSION_FILE)
    storage.set_item("auth-storage", {"token": token, "isAuthenticated": True, "user": None})
    return storage


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_protected_command_requires_sign_in(api):
    result = runner.invoke(cli.app, ["licenses", "list"])
    assert result.exit_code == cli.EXIT_SIGNED_OUT
    assert "Not signed in" in result.output
    assert api.requests == []


def test_login_persists_session(api):
    api.route("POST", "/auth/login", httpx.Response(200, json={"access_token": "tok-9"}))

    result = runner.invoke(cli.app, ["login", "-u", "ops", "-p", "secret"])

    assert result.exit_code == 0, result.output
    assert "Signed in as ops" in result.output
    sent = api.requests[0]
    assert "Authorization" not in sent.headers
    assert json.loads(sent.content) == {"username": "ops", "password": "secret"}
    stored = JsonFileStorage(get_settings().SESSION_FILE).get_item("auth-storage")
    assert stored["token"] == "tok-9"


def test_login_rejected(api):
    api.route("POST", "/auth/login", httpx.Response(401, json={"message": "Invalid credentials"}))

    result = runner.invoke(cli.app, ["login", "-u", "ops", "-p", "wrong"])

    assert result.exit_code == cli.EXIT_FAILURE
    assert "Error: Invalid credentials" in result.output


def test_licenses_list_with_filters_and_page(api):
    _sign_in()
    api.route("GET", "/licenses", httpx.Response(200, json={"licenses": [_LICENSE], "totalCount": 31}))

    result = runner.invoke(
        cli.app, ["licenses", "list", "--page", "2", "--status", "active", "--sort", "expires_at", "--desc"]
    )

    assert result.exit_code == 0, result.output
    params = dict(api.requests[0].url.params)
    assert params == {
        "limit": "10",
        "offset": "10",
        "status": "active",
        "sort_by": "expires_at",
        "sort_order": "DESC",
    }
    assert api.requests[0].headers["Authorization"] == "Bearer tok-1"
    assert "x-correlation-id" in api.requests[0].headers
    assert "LK-0007" in result.output
    assert "Page 2 of 4 (31 total, 10 per page)" in result.output


def test_expired_session_signs_out(api):
    storage = _sign_in()
    api.route("GET", "/licenses", httpx.Response(401, json={"message": "jwt expired"}))

    result = runner.invoke(cli.app, ["licenses", "list"])

    assert result.exit_code == cli.EXIT_SIGNED_OUT
    assert "Session ended" in result.output
    assert storage.get_item("auth-storage") is None


def test_list_server_error_is_rendered(api):
    _sign_in()
    api.route("GET", "/licenses", httpx.Response(500))

    result = runner.invoke(cli.app, ["licenses", "list"])

    assert result.exit_code == cli.EXIT_FAILURE
    assert "Error Fetching Data" in result.output
    assert "Failed to fetch licenses" in result.output


def test_create_license_validates_before_sending(api):
    _sign_in()

    result = runner.invoke(cli.app, ["licenses", "create", "--type", "trial", "--product", " "])

    assert result.exit_code == cli.EXIT_FAILURE
    assert "Product name is required" in result.output
    assert api.requests == []


def test_create_license(api):
    _sign_in()
    api.route("POST", "/licenses", httpx.Response(201, json=_LICENSE))

    result = runner.invoke(
        cli.app,
        ["licenses", "create", "--type", "subscription", "--product", "Agent", "--metadata", '{"seats": 3}'],
    )

    assert result.exit_code == 0, result.output
    assert "License created successfully!" in result.output
    assert "LK-0007" in result.output
    assert json.loads(api.requests[0].content)["metadata"] == {"seats": 3}


def test_revoke_license(api):
    _sign_in()
    api.route("PATCH", "/licenses/7/status", httpx.Response(200, json=dict(_LICENSE, status="revoked")))

    result = runner.invoke(cli.app, ["licenses", "revoke", "7", "--yes"])

    assert result.exit_code == 0, result.output
    assert json.loads(api.requests[0].content) == {"status": "revoked"}
    assert "License 7 has been revoked." in result.output


def test_revoke_license_can_be_aborted(api):
    _sign_in()
    result = runner.invoke(cli.app, ["licenses", "revoke", "7"], input="n\n")
    assert result.exit_code != 0
    assert api.requests == []


def test_apikey_create_shows_key_once(api):
    _sign_in()
    api.route(
        "POST",
        "/apikeys",
        httpx.Response(
            201, json={"id": "3", "full_key": "ld_c3.secret", "prefix": "ld_c3", "description": "CI"}
        ),
    )

    result = runner.invoke(cli.app, ["apikeys", "create", "CI"])

    assert result.exit_code == 0, result.output
    assert "API Key generated successfully!" in result.output
    assert "ld_c3.secret" in result.output


def test_dashboard(api):
    _sign_in()
    api.route(
        "GET",
        "/dashboard/summary",
        httpx.Response(
            200,
            json={
                "totalLicenses": 2,
                "statusCounts": {"active": 2},
                "typeCounts": {"trial": 2},
                "productCounts": {"Agent": 2},
                "expiringSoon": {"count": 0, "periodDays": 30, "nextToExpire": None},
            },
        ),
    )

    result = runner.invoke(cli.app, ["dashboard"])

    assert result.exit_code == 0, result.output
    assert "Total Licenses: 2" in result.output
    assert "Next to expire: None" in result.output


def test_logout_clears_session():
    storage = _sign_in()
    result = runner.invoke(cli.app, ["logout"])
    assert result.exit_code == 0
    assert "Signed out." in result.output
    assert storage.get_item("auth-storage") is None


def test_expiring_walks_pages_shorter_than_requested(monkeypatch):
    expires = (datetime.now(timezone.utc) + timedelta(days=5)).strftime("%Y-%m-%dT%H:%M:%SZ")
    licenses = [dict(_LICENSE, id=str(n), license_key=f"LK-{n:04d}", expires_at=expires) for n in range(150)]
    offsets = []

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params["offset"])
        offsets.append(offset)
        limit = min(int(request.url.params["limit"]), 50)
        return httpx.Response(
            200, json={"licenses": licenses[offset : offset + limit], "totalCount": len(licenses)}
        )

    monkeypatch.setattr(
        cli, "open_console", functools.partial(cli.open_console, transport=httpx.MockTransport(handler))
    )
    _sign_in()

    result = runner.invoke(cli.app, ["licenses", "expiring"])

    assert result.exit_code == 0, result.output
    assert "Expiring Soon (30 days): 150" in result.output
    assert offsets == [0, 50, 100]
