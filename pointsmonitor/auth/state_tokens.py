"""
OAuth state tokens with expiry and periodic cleanup.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..config.constants import DEFAULTS

logger = logging.getLogger(__name__)


@dataclass
class StateToken:
    token: str
    timestamp: float
    expires_at: float
    metadata: Optional[Dict[str, Any]] = None


class StateTokenManager:
    """Issues single-use CSRF state tokens for the authorization flow."""

    def __init__(self, ttl: float = DEFAULTS.STATE_TOKEN_TTL,
                 cleanup_interval: float = DEFAULTS.STATE_TOKEN_CLEANUP_INTERVAL,
                 token_length: int = DEFAULTS.STATE_TOKEN_LENGTH,
                 time_fn: Callable[[], float] = time.time):
        """
        Initialize StateTokenManager.

        Args:
            ttl: Token lifetime in seconds
            cleanup_interval: Seconds between expired-token sweeps
            token_length: Random bytes per token (hex encoded)
            time_fn: Clock used for expiry checks
        """
        self.ttl = ttl
        self.cleanup_interval = cleanup_interval
        self.token_length = token_length
        self._time = time_fn
        self._tokens: Dict[str, StateToken] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._tokens)

    @property
    def size(self) -> int:
        return len(self._tokens)

    def create(self, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Create and remember a new state token."""
        token = secrets.token_hex(self.token_length)
        now = self._time()
        self._tokens[token] = StateToken(token, now, now + self.ttl, metadata)
        logger.debug(f"Created state token: {token[:8]}... (expires in {self.ttl}s)")
        return token

    def validate(self, token: str) -> Optional[StateToken]:
        """Return the token record if present and unexpired; expired tokens are dropped."""
        data = self._tokens.get(token)
        if data is None:
            logger.debug(f"State token not found: {token[:8]}...")
            return None

        if data.expires_at < self._time():
            logger.debug(f"State token expired: {token[:8]}...")
            del self._tokens[token]
            return None

        return data

    def consume(self, token: str) -> Optional[StateToken]:
        """Validate and remove a token. A token can be consumed once."""
        data = self.validate(token)
        if data is not None:
            del self._tokens[token]
            logger.debug(f"State token consumed: {token[:8]}...")
        return data

    def has(self, token: str) -> bool:
        return self.validate(token) is not None

    def delete(self, token: str) -> bool:
        return self._tokens.pop(token, None) is not None

    def get_metadata(self, token: str) -> Optional[Dict[str, Any]]:
        data = self.validate(token)
        return data.metadata if data else None

    def cleanup(self) -> int:
        """
        Remove expired tokens.

        Returns:
            int: Number of tokens removed
        """
        now = self._time()
        expired = [token for token, data in self._tokens.items() if data.expires_at < now]
        for token in expired:
            del self._tokens[token]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired state token(s)")
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    def clear(self) -> None:
        self._tokens.clear()

    def get_stats(self) -> Dict[str, Any]:
        now = self._time()
        expired = sum(1 for data in self._tokens.values() if data.expires_at < now)
        return {
            'total': len(self._tokens),
            'active': len(self._tokens) - expired,
            'expired': expired,
            'ttl': self.ttl,
            'cleanup_running': self._cleanup_task is not None and not self._cleanup_task.done(),
        }

    async def destroy(self) -> None:
        """Stop the sweep and forget every token."""
        await self.stop_cleanup()
        self.clear()
