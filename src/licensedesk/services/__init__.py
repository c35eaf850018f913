from licensedesk.services.apikey_service import ApiKeyService
from licensedesk.services.auth_service import AuthService
from licensedesk.services.dashboard_service import DashboardService, summarize_expiring
from licensedesk.services.license_service import LicenseService

__all__ = [
    "ApiKeyService",
    "AuthService",
    "DashboardService",
    "LicenseService",
    "summarize_expiring",
]
