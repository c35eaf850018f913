from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from licensedesk.integrations.api_client import ApiClient
from licensedesk.models.dashboard import DashboardSummary, ExpiringSoon, LicenseInfo
from licensedesk.models.license import License
from licensedesk.services.errors import normalized_errors


class DashboardService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def summary(self) -> DashboardSummary:
        with normalized_errors("Get Dashboard Summary", "Failed to fetch dashboard summary"):
            payload = await self.client.get("/dashboard/summary")
            return DashboardSummary.model_validate(payload or {})


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def summarize_expiring(
    licenses: Iterable[License],
    *,
    now: Optional[datetime] = None,
    period_days: int = 30,
) -> ExpiringSoon:
    """
    Expiring-soon block for a set of license records: licenses whose
    expiry falls within ``[now, now + period_days]``, and the earliest one.
    """
    now = _aware(now or datetime.now(timezone.utc))
    horizon = now + timedelta(days=period_days)

    expiring = [
        lic
        for lic in licenses
        if lic.expires_at is not None and now <= _aware(lic.expires_at) <= horizon
    ]
    expiring.sort(key=lambda lic: _aware(lic.expires_at))

    next_to_expire = None
    if expiring:
        first = expiring[0]
        next_to_expire = LicenseInfo(
            license_key=first.license_key,
            expires_at=first.expires_at,
            product_name=first.product_name,
        )
    return ExpiringSoon(count=len(expiring), period_days=period_days, next_to_expire=next_to_expire)
