from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from licensedesk.security.auth.credentials import CredentialProvider
from licensedesk.security.auth.jwt import JWTError, decode_claims, string_claim
from licensedesk.security.auth.storage import JsonFileStorage

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    REHYDRATING = "rehydrating"
    READY = "ready"


class RouteDecision(str, enum.Enum):
    WAIT = "wait"
    LOGIN = "login"
    ALLOW = "allow"


@dataclass(frozen=True)
class AuthState:
    token: Optional[str] = None
    is_authenticated: bool = False
    user: Optional[Dict[str, Any]] = None

    def to_storage(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "isAuthenticated": self.is_authenticated,
            "user": self.user,
        }

    @classmethod
    def from_storage(cls, data: Any) -> "AuthState":
        if not isinstance(data, dict):
            return cls()
        # Accept the {"state": {...}, "version": n} envelope as well.
        if isinstance(data.get("state"), dict):
            data = data["state"]
        token = data.get("token")
        if not isinstance(token, str) or not token:
            return cls()
        user = data.get("user")
        return cls(
            token=token,
            is_authenticated=bool(data.get("isAuthenticated", True)),
            user=user if isinstance(user, dict) else None,
        )


Listener = Callable[[AuthState], None]


def user_from_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        claims = decode_claims(token)
    except JWTError:
        return None
    user_id = string_claim(claims, "sub")
    if not user_id:
        return None
    return {"id": user_id, "role": string_claim(claims, "role") or ""}


class SessionStore(CredentialProvider):
    """
    Process-wide session for the username/password login.

    Lifecycle: uninitialized -> rehydrating -> ready. Protected requests
    and route guards read the store only once it is ready; reading it
    earlier triggers the rehydration synchronously. Every state change is
    a single assignment, so no reader observes a half-cleared session.
    """

    def __init__(
        self,
        storage: Optional[JsonFileStorage] = None,
        *,
        name: str = "auth-storage",
    ) -> None:
        self.storage = storage
        self.name = name
        self._state = AuthState()
        self._status = SessionStatus.UNINITIALIZED
        self._listeners: List[Listener] = []

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def token(self) -> Optional[str]:
        return self._state.token

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._state.user

    def rehydrate(self) -> AuthState:
        self._status = SessionStatus.REHYDRATING
        try:
            raw = self.storage.get_item(self.name) if self.storage else None
            self._state = AuthState.from_storage(raw)
        finally:
            self._status = SessionStatus.READY
        logger.debug(
            "Session rehydrated (authenticated=%s)", self._state.is_authenticated
        )
        return self._state

    def ensure_ready(self) -> None:
        if self._status is not SessionStatus.READY:
            self.rehydrate()

    def route_guard(self) -> RouteDecision:
        if self._status is not SessionStatus.READY:
            return RouteDecision.WAIT
        if not self._state.is_authenticated:
            return RouteDecision.LOGIN
        return RouteDecision.ALLOW

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, state: AuthState) -> None:
        self._state = state
        self._status = SessionStatus.READY
        if self.storage:
            if state.token:
                self.storage.set_item(self.name, state.to_storage())
            else:
                self.storage.remove_item(self.name)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.error("Session listener failed: %s", exc)

    def set_token(self, token: str, *, user: Optional[Dict[str, Any]] = None) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._commit(
            AuthState(
                token=token,
                is_authenticated=True,
                user=user if user is not None else user_from_token(token),
            )
        )

    def clear_auth(self) -> None:
        self._commit(AuthState())

    async def get_credential(self) -> Optional[str]:
        self.ensure_ready()
        return self._state.token

    async def invalidate(self, rejected: Optional[str]) -> bool:
        self.ensure_ready()
        if rejected is None or rejected != self._state.token:
            return False
        self.clear_auth()
        return True
