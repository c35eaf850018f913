from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LICENSEDESK_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    LOG_LEVEL: str = Field(default="WARNING", description="Root log level for the CLI")

    # License API
    API_BASE_URL: str = Field(
        default="http://localhost:8080/api/v1", description="License API base URL"
    )
    HTTP_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None, description="Transport timeout; unset waits indefinitely"
    )

    # Auth
    # password: username/password login, token kept in the local session store
    # oidc: third-party identity provider, session refreshed silently
    AUTH_MODE: str = Field(default="password", description="password|oidc")
    SESSION_FILE: str = Field(
        default="~/.licensedesk/storage.json",
        description="Durable client-side storage file",
    )
    SESSION_STORAGE_KEY: str = Field(
        default="auth-storage", description="Storage key of the password session"
    )

    OIDC_ISSUER: str = Field(default="", description="Identity provider issuer URL")
    OIDC_CLIENT_ID: str = Field(default="")
    OIDC_CLIENT_SECRET: str = Field(default="")
    OIDC_PROJECT_ID: str = Field(
        default="", description="Project id used in the roles scope/claim"
    )
    OIDC_REDIRECT_URI: str = Field(
        default="http://localhost:3000/api/auth/callback/zitadel",
        description="Authorization-code redirect URI",
    )
    OIDC_REFRESH_LEEWAY_SECONDS: int = Field(
        default=30, description="Refresh access tokens this long before expiry"
    )
    OIDC_STORAGE_KEY: str = Field(
        default="oidc-session", description="Storage key of the OIDC session"
    )

    # Console behaviour
    DEFAULT_PAGE_SIZE: int = Field(default=10, description="Initial table page size")
    FILTER_DEBOUNCE_MS: int = Field(
        default=500, description="Quiescence interval for free-text filters"
    )
    EXPIRING_SOON_DAYS: int = Field(
        default=30, description="Rolling window for expiring-soon licenses"
    )
    APIKEYS_STALE_SECONDS: int = Field(
        default=300, description="Cache freshness of the API key list"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
