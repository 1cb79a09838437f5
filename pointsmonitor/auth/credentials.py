"""
Versioned credential state.

The access/refresh token pair is held in one CredentialStore owned by the
monitor and passed explicitly to the components that need it. Every
replacement bumps a monotonic version; a refresh result is applied only if
the credential it was derived from is still current.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Immutable snapshot of the application identity and token pair."""
    client_id: str
    access_token: str
    refresh_token: Optional[str] = None
    client_secret: Optional[str] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def can_refresh(self) -> bool:
        """Refresh needs a refresh token plus the full client identity."""
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def with_tokens(self, access_token: str, refresh_token: Optional[str]) -> 'Credential':
        """Return the next version carrying a new token pair."""
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            version=self.version + 1,
            updated_at=datetime.now(),
        )


CredentialListener = Callable[[Credential], None]


class CredentialStore:
    """Holds the current credential and applies refresh results with compare-and-set."""

    def __init__(self, credential: Credential):
        self._credential = credential
        self._listeners: List[CredentialListener] = []

    @property
    def current(self) -> Credential:
        return self._credential

    @property
    def version(self) -> int:
        return self._credential.version

    def add_listener(self, listener: CredentialListener) -> None:
        """Register a callback invoked synchronously after every applied update; errors are logged."""
        self._listeners.append(listener)

    def apply_refresh(self, access_token: str, refresh_token: Optional[str],
                      based_on_version: int) -> bool:
        """
        Replace the token pair if ``based_on_version`` is still current.

        Args:
            access_token: Access token returned by the refresh grant
            refresh_token: Refresh token returned by the refresh grant
            based_on_version: Version of the credential the refresh was issued from

        Returns:
            bool: True if applied, False if a newer credential is already in place
        """
        # Two refreshes issued from the same version both succeed at Twitch;
        # the first to complete wins and the later one is discarded here.
        if based_on_version != self._credential.version:
            logger.warning(
                "Discarding refreshed token derived from a superseded credential",
                extra={'based_on_version': based_on_version, 'current_version': self._credential.version}
            )
            return False

        self._credential = self._credential.with_tokens(access_token, refresh_token)
        logger.info("Credential updated", extra={'credential_version': self._credential.version})

        for listener in list(self._listeners):
            try:
                listener(self._credential)
            except Exception as e:
                logger.exception(f"Credential listener failed: {e}")
        return True
