from __future__ import annotations

from typing import List, Optional

from pydantic import TypeAdapter

from licensedesk.config import get_settings
from licensedesk.integrations.api_client import ApiClient
from licensedesk.models.api_key import ApiKey, ApiKeyCreate, CreatedApiKey
from licensedesk.services.errors import normalized_errors
from licensedesk.views.query_registry import QueryRegistry, query_key

APIKEYS_SCOPE = "apikeys"

_API_KEY_LIST = TypeAdapter(List[ApiKey])


class ApiKeyService:
    def __init__(
        self,
        client: ApiClient,
        *,
        registry: Optional[QueryRegistry] = None,
        stale_after: Optional[float] = None,
    ):
        self.client = client
        self.registry = registry or QueryRegistry()
        if stale_after is None:
            stale_after = float(get_settings().APIKEYS_STALE_SECONDS)
        self.stale_after = stale_after

    async def _fetch(self) -> List[ApiKey]:
        with normalized_errors("Get API Keys", "Failed to fetch API keys"):
            payload = await self.client.get("/apikeys")
            return _API_KEY_LIST.validate_python(payload or [])

    async def list(self) -> List[ApiKey]:
        return await self.registry.fetch(
            query_key(APIKEYS_SCOPE), self._fetch, stale_after=self.stale_after
        )

    async def create(self, form: ApiKeyCreate) -> CreatedApiKey:
        with normalized_errors("Create API Key", "Failed to create API key"):
            payload = await self.client.post("/apikeys", json={"description": form.description})
            created = CreatedApiKey.model_validate(payload)
        self.registry.invalidate(APIKEYS_SCOPE)
        return created

    async def revoke(self, key_id: str) -> None:
        with normalized_errors(f"Revoke API Key (ID: {key_id})", "Failed to revoke API key"):
            await self.client.delete(f"/apikeys/{key_id}")
        self.registry.invalidate(APIKEYS_SCOPE)
