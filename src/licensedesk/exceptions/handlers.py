from __future__ import annotations

from typing import Any, Dict, Optional


class ConsoleError(Exception):
    """
    Single error shape seen by presentation code.

    - attributes: message/code/status_code/details/user_message/server_message
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str = "CONSOLE_ERROR",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        server_message: Optional[str] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details: Dict[str, Any] = details or {}
        self.user_message = user_message or message
        self.server_message = server_message
        super().__init__(self.message)

    def with_fallback(self, fallback: str) -> "ConsoleError":
        """Use ``fallback`` as the message unless the server supplied one."""
        if not self.server_message:
            self.message = fallback
            self.user_message = fallback
            self.args = (fallback,)
        return self

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class NetworkError(ConsoleError):
    retryable = True

    def __init__(self, message: str = "Could not reach the server", **kwargs: Any):
        super().__init__(
            message=message,
            code="NETWORK_ERROR",
            details=dict(kwargs),
        )


class SessionExpiredError(ConsoleError):
    def __init__(self, message: str = "Your session has expired. Please sign in again."):
        super().__init__(
            message=message,
            code="SESSION_EXPIRED",
            status_code=401,
            user_message=message,
        )

    def with_fallback(self, fallback: str) -> "ConsoleError":
        # Session expiry keeps its own wording so it is never mistaken for a form error.
        return self


class ValidationError(ConsoleError):
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
        **kwargs: Any,
    ):
        details: Dict[str, Any] = {"field": field} if field else {}
        details.update(kwargs)
        self.field = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=status_code,
            details=details,
            server_message=server_message,
        )


class ServerError(ConsoleError):
    def __init__(
        self,
        message: str = "Unexpected server error",
        *,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message=message,
            code="SERVER_ERROR",
            status_code=status_code,
            details=dict(kwargs),
            server_message=server_message,
        )


class ConfigurationError(ConsoleError):
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details=details,
            user_message="Console configuration error",
        )
