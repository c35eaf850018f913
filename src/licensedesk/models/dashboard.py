from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import Field

from licensedesk.models.base import CamelModel


class LicenseInfo(CamelModel):
    license_key: str
    expires_at: datetime
    product_name: str


class ExpiringSoon(CamelModel):
    count: int = 0
    period_days: int = 30
    next_to_expire: Optional[LicenseInfo] = None


class DashboardSummary(CamelModel):
    """Aggregate view; replaced wholesale on every fetch."""

    total_licenses: int = 0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    type_counts: Dict[str, int] = Field(default_factory=dict)
    product_counts: Dict[str, int] = Field(default_factory=dict)
    expiring_soon: ExpiringSoon = Field(default_factory=ExpiringSoon)
