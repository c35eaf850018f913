from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from licensedesk.exceptions import ConfigurationError
from licensedesk.security.auth.credentials import CredentialProvider
from licensedesk.security.auth.jwt import (
    JWTError,
    decode_claims,
    object_claim,
    string_claim,
)
from licensedesk.security.auth.storage import JsonFileStorage

logger = logging.getLogger(__name__)

REFRESH_ERROR = "RefreshAccessTokenError"
MISSING_REFRESH_TOKEN_ERROR = "MissingRefreshTokenError"
DECODE_ID_TOKEN_ERROR = "DecodeIDTokenError"

_DEFAULT_EXPIRES_IN = 300


@dataclass(frozen=True)
class OIDCSession:
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    expires_at: float = 0.0
    id_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_storage(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "accessTokenExpires": self.expires_at,
            "idToken": self.id_token,
            "user": self.user,
            "error": self.error,
        }

    @classmethod
    def from_storage(cls, data: Any) -> Optional["OIDCSession"]:
        if not isinstance(data, dict) or not data.get("accessToken"):
            return None
        user = data.get("user")
        return cls(
            access_token=str(data["accessToken"]),
            refresh_token=data.get("refreshToken") or None,
            expires_at=float(data.get("accessTokenExpires") or 0.0),
            id_token=data.get("idToken") or None,
            user=user if isinstance(user, dict) else None,
            error=data.get("error") or None,
        )


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str
    code_verifier: str


def _pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OIDCSessionProvider(CredentialProvider):
    """
    Session delegated to an OpenID Connect provider.

    The access token is refreshed proactively ``leeway_s`` seconds before
    it expires. Refreshes are single-flight: concurrent callers wait on
    one lock and reuse whatever token the first caller obtained. A failed
    refresh marks the session errored and no credential is handed out
    until the user signs in again.
    """

    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        client_secret: str = "",
        project_id: str = "",
        redirect_uri: str = "",
        leeway_s: int = 30,
        storage: Optional[JsonFileStorage] = None,
        storage_key: str = "oidc-session",
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not issuer.strip():
            raise ConfigurationError("OIDC issuer is not configured", config_key="OIDC_ISSUER")
        if not client_id.strip():
            raise ConfigurationError(
                "OIDC client id is not configured", config_key="OIDC_CLIENT_ID"
            )
        self.issuer = issuer.strip().rstrip("/")
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.project_id = project_id.strip()
        self.redirect_uri = redirect_uri.strip()
        self.leeway_s = leeway_s
        self.storage = storage
        self.storage_key = storage_key
        self.timeout_s = timeout_s
        self._transport = transport
        self._clock = clock
        self._discovery: Optional[Dict[str, Any]] = None
        self._session: Optional[OIDCSession] = None
        self._loaded = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        storage: Optional[JsonFileStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OIDCSessionProvider":
        return cls(
            issuer=settings.OIDC_ISSUER,
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            project_id=settings.OIDC_PROJECT_ID,
            redirect_uri=settings.OIDC_REDIRECT_URI,
            leeway_s=settings.OIDC_REFRESH_LEEWAY_SECONDS,
            storage=storage,
            storage_key=settings.OIDC_STORAGE_KEY,
            timeout_s=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def roles_claim_key(self) -> str:
        return f"urn:zitadel:iam:org:project:id:{self.project_id}:roles"

    @property
    def scope(self) -> str:
        return f"openid email profile {self.roles_claim_key} offline_access"

    @property
    def session(self) -> Optional[OIDCSession]:
        if not self._loaded:
            self._loaded = True
            if self.storage:
                self._session = OIDCSession.from_storage(self.storage.get_item(self.storage_key))
        return self._session

    @property
    def can_refresh(self) -> bool:
        session = self.session
        return bool(session and session.refresh_token and not session.error)

    def _commit(self, session: Optional[OIDCSession]) -> None:
        self._session = session
        self._loaded = True
        if not self.storage:
            return
        if session is None:
            self.storage.remove_item(self.storage_key)
        else:
            self.storage.set_item(self.storage_key, session.to_storage())

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def discover(self) -> Dict[str, Any]:
        if self._discovery is not None:
            return self._discovery
        async with self._client() as client:
            resp = await client.get(f"{self.issuer}/.well-known/openid-configuration")
            resp.raise_for_status()
            self._discovery = resp.json()
        return self._discovery

    async def _endpoint(self, name: str) -> str:
        discovery = await self.discover()
        url = discovery.get(name)
        if not url:
            raise ConfigurationError(f"Identity provider does not advertise {name}")
        return str(url)

    async def authorization_request(self) -> AuthorizationRequest:
        endpoint = await self._endpoint("authorization_endpoint")
        state = secrets.token_urlsafe(24)
        verifier = secrets.token_urlsafe(64)
        query = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": state,
            "code_challenge": _pkce_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthorizationRequest(
            url=f"{endpoint}?{urlencode(query)}", state=state, code_verifier=verifier
        )

    def _token_form(self, data: Dict[str, str]) -> Dict[str, str]:
        data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        endpoint = await self._endpoint("token_endpoint")
        async with self._client() as client:
            resp = await client.post(endpoint, data=self._token_form(data))
            resp.raise_for_status()
            payload = resp.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise httpx.HTTPError("Missing access_token in token response")
        return payload

    async def exchange_code(self, code: str, *, code_verifier: str) -> OIDCSession:
        payload = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            }
        )
        session = self.establish(payload)
        logger.info("Signed in via identity provider as %s", (session.user or {}).get("id"))
        return session

    def _user_from_id_token(self, id_token: str) -> Dict[str, Any]:
        claims = decode_claims(id_token)
        return {
            "id": string_claim(claims, "sub") or "",
            "name": string_claim(claims, "name"),
            "firstName": string_claim(claims, "given_name"),
            "lastName": string_claim(claims, "family_name"),
            "email": string_claim(claims, "email"),
            "loginName": string_claim(claims, "preferred_username"),
            "image": string_claim(claims, "picture"),
            "roles": object_claim(claims, self.roles_claim_key),
        }

    def _session_from_token_response(
        self, payload: Dict[str, Any], previous: Optional[OIDCSession] = None
    ) -> OIDCSession:
        now = self._clock()
        if payload.get("expires_at") is not None:
            expires_at = float(payload["expires_at"])
        else:
            expires_at = now + int(payload.get("expires_in") or _DEFAULT_EXPIRES_IN)

        id_token = payload.get("id_token") or (previous.id_token if previous else None)
        user = previous.user if previous else None
        error: Optional[str] = None
        if payload.get("id_token"):
            try:
                user = self._user_from_id_token(payload["id_token"])
            except JWTError as exc:
                logger.error("Error decoding ID token: %s", exc)
                error = DECODE_ID_TOKEN_ERROR

        return OIDCSession(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token")
            or (previous.refresh_token if previous else None),
            expires_at=expires_at,
            id_token=id_token,
            user=user,
            error=error,
        )

    def establish(self, payload: Dict[str, Any]) -> OIDCSession:
        """Start a session from a token-endpoint response."""
        session = self._session_from_token_response(payload)
        self._commit(session)
        return session

    def sign_out(self) -> None:
        self._commit(None)

    def _expiring(self, session: OIDCSession) -> bool:
        return self._clock() >= session.expires_at - self.leeway_s

    async def get_credential(self) -> Optional[str]:
        session = self.session
        if session is None or session.error or not session.access_token:
            return None
        if self._expiring(session):
            session = await self._refresh_if_current(session.access_token)
            if session is None or session.error:
                return None
        return session.access_token

    async def refresh(self, rejected: Optional[str]) -> Optional[str]:
        if rejected is None:
            return None
        session = await self._refresh_if_current(rejected)
        if session is None or session.error:
            return None
        return session.access_token

    async def _refresh_if_current(self, stale_token: str) -> Optional[OIDCSession]:
        async with self._lock:
            session = self.session
            if session is None or session.error:
                return session
            if session.access_token != stale_token:
                # Another caller refreshed while we waited on the lock.
                return session
            if not session.refresh_token:
                logger.warning("Refresh token missing, cannot refresh.")
                self._commit(replace(session, error=MISSING_REFRESH_TOKEN_ERROR))
                return self._session
            try:
                payload = await self._token_request(
                    {"grant_type": "refresh_token", "refresh_token": session.refresh_token}
                )
            except (httpx.HTTPError, ValueError, ConfigurationError) as exc:
                logger.error("Error refreshing access token: %s", exc)
                self._commit(replace(session, error=REFRESH_ERROR))
                return self._session
            self._commit(self._session_from_token_response(payload, previous=session))
            return self._session

    async def invalidate(self, rejected: Optional[str]) -> bool:
        session = self.session
        if session is None or rejected is None or session.access_token != rejected:
            return False
        self.sign_out()
        return True
