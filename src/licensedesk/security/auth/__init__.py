from licensedesk.security.auth.credentials import CredentialProvider
from licensedesk.security.auth.oidc import OIDCSession, OIDCSessionProvider
from licensedesk.security.auth.session_store import (
    AuthState,
    RouteDecision,
    SessionStatus,
    SessionStore,
)
from licensedesk.security.auth.storage import JsonFileStorage

__all__ = [
    "CredentialProvider",
    "SessionStore",
    "SessionStatus",
    "AuthState",
    "RouteDecision",
    "OIDCSession",
    "OIDCSessionProvider",
    "JsonFileStorage",
]
