from licensedesk.models.api_key import ApiKey, ApiKeyCreate, CreatedApiKey
from licensedesk.models.auth import LoginRequest, LoginResponse
from licensedesk.models.base import validate_form
from licensedesk.models.dashboard import DashboardSummary, ExpiringSoon, LicenseInfo
from licensedesk.models.license import (
    License,
    LicenseCreate,
    LicenseEdit,
    LicensePage,
    LicenseStatus,
)

__all__ = [
    "ApiKey",
    "ApiKeyCreate",
    "CreatedApiKey",
    "DashboardSummary",
    "ExpiringSoon",
    "License",
    "LicenseCreate",
    "LicenseEdit",
    "LicenseInfo",
    "LicensePage",
    "LicenseStatus",
    "LoginRequest",
    "LoginResponse",
    "validate_form",
]
