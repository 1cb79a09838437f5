"""
Shared aiohttp session handling for the Twitch REST clients.

Every REST call carries an explicit total timeout so that a hung OAuth or
Helix endpoint cannot stall the welcome -> subscribe sequence.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from .config.constants import TIMEOUTS

logger = logging.getLogger(__name__)


class TwitchHttpClient:
    """Base class owning one lazily created aiohttp session."""

    def __init__(self, timeout: float = TIMEOUTS.API_REQUEST):
        """
        Initialize the HTTP client.

        Args:
            timeout: Total request timeout in seconds
        """
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, url: str, *,
                       headers: Optional[Dict[str, str]] = None,
                       params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None,
                       data: Optional[Dict[str, Any]] = None) -> Tuple[int, Any]:
        """
        Perform one HTTP request.

        Returns:
            Tuple[int, Any]: (status, body) where body is the decoded JSON
            document, ``{'message': text}`` for non-JSON bodies, or ``None``
            for empty bodies

        Raises:
            aiohttp.ClientError: On connection-level failures
            asyncio.TimeoutError: When the request exceeds ``timeout``
        """
        session = await self._get_session()
        async with session.request(method, url, headers=headers, params=params,
                                   json=json, data=data) as response:
            text = await response.text()
            if not text:
                return response.status, None
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = {'message': text}
            return response.status, body


def error_message(body: Any) -> str:
    """Extract the ``message`` field from a Twitch error body."""
    if isinstance(body, dict):
        return str(body.get('message') or body.get('error') or '')
    if body is None:
        return ''
    return str(body)
