"""
OAuth refresh-token grant for Twitch user access tokens.

User access tokens expire after roughly four hours. The refresher exchanges
the refresh token for a new pair, classifies failures into fixed reasons
with remediation text, and persists results to the durable config store.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from ..config.constants import TIMEOUTS, TWITCH_URLS
from ..config.settings import ConfigStore
from ..errors import ConfigurationError, TokenRefreshError
from ..http_client import TwitchHttpClient, error_message
from .validator import FormattedError

logger = logging.getLogger(__name__)


@dataclass
class RefreshedTokens:
    """Result of a successful refresh-token grant."""
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]
    scope: Any = None
    token_type: Optional[str] = None


class TokenRefresher(TwitchHttpClient):
    """Executes the refresh-token grant and persists the new tokens."""

    def __init__(self, config_store: Optional[ConfigStore] = None,
                 token_url: str = TWITCH_URLS.OAUTH_TOKEN,
                 timeout: float = TIMEOUTS.OAUTH_REQUEST):
        """
        Initialize TokenRefresher.

        Args:
            config_store: Durable store refreshed tokens are written to (optional)
            token_url: OAuth token endpoint
            timeout: Request timeout in seconds
        """
        super().__init__(timeout)
        self.config_store = config_store
        self.token_url = token_url

    async def refresh(self, refresh_token: Optional[str], client_id: Optional[str],
                      client_secret: Optional[str]) -> RefreshedTokens:
        """
        Refresh an access token using a refresh token.

        Args:
            refresh_token: The refresh token
            client_id: Twitch application client ID
            client_secret: Twitch application client secret

        Returns:
            RefreshedTokens: New token data

        Raises:
            TokenRefreshError: If the grant cannot be performed or is rejected
        """
        if not refresh_token:
            raise TokenRefreshError(
                "No refresh token available", 'missing_refresh_token',
                {'suggestion': 'Run the OAuth helper to generate new tokens'}
            )

        if not client_id or not client_secret:
            raise TokenRefreshError(
                "Missing client credentials", 'missing_credentials',
                {'suggestion': 'Ensure TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET are set'}
            )

        logger.info("Attempting to refresh access token...")

        data = {
            'client_id': client_id,
            'client_secret': client_secret,
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        }

        try:
            status, body = await self._request('POST', self.token_url, data=data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error_msg = str(e) or type(e).__name__
            raise TokenRefreshError(
                f"Token refresh error: {error_msg}", 'network_error', {'original_error': error_msg}
            ) from e

        if status == 200 and isinstance(body, dict) and body.get('access_token'):
            tokens = RefreshedTokens(
                access_token=body['access_token'],
                refresh_token=body.get('refresh_token'),
                expires_in=body.get('expires_in'),
                scope=body.get('scope'),
                token_type=body.get('token_type'),
            )
            logger.info("Token refreshed successfully", extra={'expires_in': tokens.expires_in})
            return tokens

        raise self._classify_failure(status, body)

    @staticmethod
    def _classify_failure(status: int, body: Any) -> TokenRefreshError:
        """Map an HTTP failure from the token endpoint to a refresh error reason."""
        message = error_message(body)
        lowered = message.lower()

        if status == 400:
            if 'invalid client secret' in lowered:
                return TokenRefreshError(
                    "Client secret is invalid", 'invalid_client_secret',
                    {'original_error': message}
                )
            if 'invalid client' in lowered:
                return TokenRefreshError(
                    "Client ID is invalid", 'invalid_client_id',
                    {'original_error': message}
                )
            if 'invalid refresh token' in lowered:
                return TokenRefreshError(
                    "Refresh token is invalid or expired", 'invalid_refresh_token',
                    {'original_error': message}
                )

        if status == 401:
            return TokenRefreshError(
                "Invalid client credentials", 'invalid_credentials',
                {'original_error': message}
            )

        return TokenRefreshError(
            f"Token refresh failed: {message or 'Unknown error'}", 'api_error',
            {'status': status, 'data': body}
        )

    async def refresh_and_save(self, refresh_token: Optional[str], client_id: Optional[str],
                               client_secret: Optional[str]) -> RefreshedTokens:
        """
        Refresh the token and persist the result.

        A failure to persist is logged; the refreshed tokens are returned regardless.
        """
        tokens = await self.refresh(refresh_token, client_id, client_secret)
        self.persist(tokens)
        return tokens

    def persist(self, tokens: RefreshedTokens) -> bool:
        """
        Write refreshed tokens to the config store and the process environment.

        Returns:
            bool: True if the durable write succeeded
        """
        self.update_environment(tokens)

        if self.config_store is None:
            return False

        try:
            self.config_store.save_tokens(tokens.access_token, tokens.refresh_token)
            logger.info(f"New tokens saved to {self.config_store.path}")
            return True
        except ConfigurationError as e:
            logger.warning(f"Could not save refreshed tokens: {e}")
            logger.warning("Please manually update your configuration with the new tokens")
            return False

    @staticmethod
    def update_environment(tokens: RefreshedTokens) -> None:
        """
        Mirror the new tokens into ``os.environ``.

        Kept for code that still reads credentials from the environment. The
        change lasts until process exit and is never persisted; components
        inside the monitor read the CredentialStore instead.
        """
        os.environ['TWITCH_ACCESS_TOKEN'] = tokens.access_token
        if tokens.refresh_token:
            os.environ['TWITCH_REFRESH_TOKEN'] = tokens.refresh_token

    @staticmethod
    def format_error(error: Exception) -> FormattedError:
        """Format a refresh error with remediation steps for display."""
        if not isinstance(error, TokenRefreshError):
            return FormattedError(str(error), ['Check your configuration and try again'])

        api_message: Dict[str, Any] = error.details.get('data') or {}
        solutions = {
            'missing_refresh_token': [
                'No refresh token is available in your configuration.',
                'To generate new tokens: stop the monitor, run "pointsmonitor-oauth",',
                'complete the authorization flow in your browser, then restart the monitor.',
                'The new tokens are saved to config.json automatically.',
            ],
            'missing_credentials': [
                'Client ID and/or Client Secret are missing.',
                'Add TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET to your config.json.',
                'You can find these at https://dev.twitch.tv/console/apps',
            ],
            'invalid_client_secret': [
                'Your client secret was rejected by Twitch.',
                'Regenerate the client secret at https://dev.twitch.tv/console/apps',
                'and update TWITCH_CLIENT_SECRET in config.json.',
            ],
            'invalid_client_id': [
                'Your client ID was rejected by Twitch.',
                'Check TWITCH_CLIENT_ID in config.json against your application settings.',
            ],
            'invalid_refresh_token': [
                'Your refresh token has expired or been revoked.',
                'Re-run the authorization flow ("pointsmonitor-oauth") to generate new tokens.',
                'Save both the access token and refresh token to config.json.',
            ],
            'invalid_credentials': [
                'Your client credentials are invalid.',
                'Check TWITCH_CLIENT_ID and TWITCH_CLIENT_SECRET in config.json.',
                'Make sure they match your Twitch application settings.',
            ],
            'api_error': [
                'The Twitch API returned an error.',
                (api_message.get('message') if isinstance(api_message, dict) else None)
                or 'Verify your client credentials and try again.',
                'Check Twitch API status at https://devstatus.twitch.tv',
            ],
            'network_error': [
                'Network error while refreshing token.',
                'Check your internet connection and try again.',
            ],
        }
        return FormattedError(
            str(error),
            solutions.get(error.reason, ['Check your configuration and try again'])
        )
