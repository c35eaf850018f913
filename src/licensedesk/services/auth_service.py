from __future__ import annotations

import logging

from licensedesk.integrations.api_client import ApiClient
from licensedesk.models.auth import LoginRequest, LoginResponse
from licensedesk.security.auth.session_store import SessionStore
from licensedesk.services.errors import normalized_errors

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, client: ApiClient, store: SessionStore):
        self.client = client
        self.store = store

    async def login(self, credentials: LoginRequest) -> LoginResponse:
        with normalized_errors("Login", "Login failed"):
            payload = await self.client.post(
                "/auth/login",
                json=credentials.model_dump(),
                authenticated=False,
            )
            resp = LoginResponse.model_validate(payload)
        self.store.set_token(resp.access_token)
        logger.info("Signed in as %s", credentials.username)
        return resp

    def logout(self) -> None:
        self.store.clear_auth()
