from __future__ import annotations

import abc
from typing import Optional


class CredentialProvider(abc.ABC):
    """
    Supplies the bearer token for outbound requests.

    The API client depends only on this interface; the local session
    store and the identity-provider session are interchangeable.
    """

    @abc.abstractmethod
    async def get_credential(self) -> Optional[str]:
        """Current access token, or None when not signed in."""

    @abc.abstractmethod
    async def invalidate(self, rejected: Optional[str]) -> bool:
        """
        Drop the session if ``rejected`` is still its current token.

        Returns True when this call cleared the session, so that several
        requests rejected for the same token invalidate it only once.
        """

    async def refresh(self, rejected: Optional[str]) -> Optional[str]:
        """Obtain a replacement for ``rejected``; None when unsupported."""
        return None

    @property
    def can_refresh(self) -> bool:
        return False
