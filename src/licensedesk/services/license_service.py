from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from licensedesk.exceptions import ValidationError
from licensedesk.integrations.api_client import ApiClient
from licensedesk.models.license import (
    License,
    LicenseCreate,
    LicenseEdit,
    LicensePage,
    LicenseStatus,
)
from licensedesk.services.errors import normalized_errors

logger = logging.getLogger(__name__)


class LicenseService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list(self, params: Mapping[str, Any]) -> LicensePage:
        with normalized_errors("Get Licenses", "Failed to fetch licenses"):
            payload = await self.client.get("/licenses", params=dict(params))
            return LicensePage.model_validate(payload or {})

    async def create(self, form: LicenseCreate) -> License:
        with normalized_errors("Create License", "Failed to create license"):
            payload = await self.client.post("/licenses", json=form.to_payload())
            return License.model_validate(payload)

    async def update(self, license_id: str, changes: Dict[str, Any]) -> License:
        with normalized_errors(f"Update License (ID: {license_id})", "Failed to update license"):
            payload = await self.client.patch(f"/licenses/{license_id}", json=changes)
            return License.model_validate(payload)

    async def edit(self, current: License, form: LicenseEdit) -> License:
        """Send only the fields that differ from ``current``."""
        changes = form.changes_against(current)
        if not changes:
            raise ValidationError("No changes detected.")
        return await self.update(current.id, changes)

    async def change_status(
        self,
        license_id: str,
        status: LicenseStatus,
        *,
        current: Optional[LicenseStatus] = None,
    ) -> Optional[License]:
        status = LicenseStatus(status)
        if current is not None and LicenseStatus(current) is status:
            raise ValidationError(f"License is already {status.value}.", field="status")
        with normalized_errors(
            f"Change License Status (ID: {license_id})",
            f"Failed to change status to {status.value}",
        ):
            payload = await self.client.patch(
                f"/licenses/{license_id}/status", json={"status": status.value}
            )
            if isinstance(payload, dict) and "license_key" in payload:
                return License.model_validate(payload)
            return None

    async def revoke(self, license_id: str, *, current: Optional[LicenseStatus] = None) -> Optional[License]:
        return await self.change_status(license_id, LicenseStatus.REVOKED, current=current)
