from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from licensedesk.exceptions import ValidationError
from licensedesk.models.auth import LoginRequest
from licensedesk.security.auth.jwt import encode_unsigned
from licensedesk.security.auth.session_store import SessionStore
from licensedesk.services.auth_service import AuthService


def test_login_stores_token_without_sending_old_credential():
    token = encode_unsigned({"sub": "u-9", "role": "operator"})
    client = MagicMock()
    client.post = AsyncMock(return_value={"access_token": token})
    store = SessionStore()

    asyncio.run(AuthService(client, store).login(LoginRequest(username="ops", password="pw")))

    client.post.assert_awaited_once_with(
        "/auth/login",
        json={"username": "ops", "password": "pw"},
        authenticated=False,
    )
    assert store.token == token
    assert store.user == {"id": "u-9", "role": "operator"}


def test_rejected_login_leaves_session_untouched():
    client = MagicMock()
    client.post = AsyncMock(
        side_effect=ValidationError(
            "Invalid credentials", status_code=401, server_message="Invalid credentials"
        )
    )
    store = SessionStore()

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(AuthService(client, store).login(LoginRequest(username="ops", password="bad")))

    assert exc_info.value.message == "Invalid credentials"
    assert store.is_authenticated is False


def test_logout_clears_session():
    store = SessionStore()
    store.set_token("tok")
    AuthService(MagicMock(), store).logout()
    assert store.token is None
