from licensedesk.exceptions.handlers import (
    ConfigurationError,
    ConsoleError,
    NetworkError,
    ServerError,
    SessionExpiredError,
    ValidationError,
)

__all__ = [
    "ConsoleError",
    "NetworkError",
    "SessionExpiredError",
    "ValidationError",
    "ServerError",
    "ConfigurationError",
]
