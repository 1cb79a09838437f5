"""
Authorization code flow for the OAuth helper.

Generates the Twitch authorize URL with a CSRF state token, checks the
callback parameters and exchanges the code for a token pair.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

import aiohttp

from ..config.constants import DEFAULT_OAUTH_SCOPES, TIMEOUTS, TWITCH_URLS
from ..errors import ConfigurationError, TwitchApiError
from ..http_client import TwitchHttpClient, error_message
from .state_tokens import StateTokenManager

logger = logging.getLogger(__name__)


class OAuthHandler(TwitchHttpClient):
    """Handles the authorization code grant for the broadcaster account."""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str], redirect_uri: str,
                 scopes: Sequence[str] = DEFAULT_OAUTH_SCOPES,
                 state_tokens: Optional[StateTokenManager] = None,
                 timeout: float = TIMEOUTS.OAUTH_REQUEST):
        """
        Initialize OAuthHandler.

        Args:
            client_id: Twitch application client ID
            client_secret: Twitch application client secret
            redirect_uri: Redirect URI registered for the application
            scopes: Scopes requested during authorization
            state_tokens: State token manager (a private one is created if omitted)
            timeout: Request timeout in seconds
        """
        super().__init__(timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes: List[str] = list(scopes)
        self.state_tokens = state_tokens or StateTokenManager()

    def generate_auth_url(self) -> Tuple[str, str]:
        """
        Build the authorization URL.

        Returns:
            Tuple[str, str]: (state, auth_url)

        Raises:
            ConfigurationError: If the client ID or secret is missing
        """
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Missing TWITCH_CLIENT_ID or TWITCH_CLIENT_SECRET",
                                     missing_fields=[f for f, v in (('client_id', self.client_id),
                                                                     ('client_secret', self.client_secret))
                                                     if not v])

        state = self.state_tokens.create()
        params = urlencode({
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(self.scopes),
            'state': state,
        })
        auth_url = f"{TWITCH_URLS.OAUTH_AUTHORIZE}?{params}"

        logger.info("Generated OAuth authorization URL")
        logger.debug(f"Authorization URL: {auth_url}")
        return state, auth_url

    def validate_callback_params(self, query: Mapping[str, Any]) -> Optional[Dict[str, str]]:
        """
        Check the parameters Twitch sent to the callback.

        Returns:
            Optional[Dict[str, str]]: ``{'error', 'error_description'}`` or None when valid
        """
        code = query.get('code')
        state = query.get('state')
        error = query.get('error')

        if (code is not None and not isinstance(code, str)) or \
                (state is not None and not isinstance(state, str)):
            logger.error("Invalid callback parameter type")
            return {'error': 'invalid_request', 'error_description': 'Invalid parameter type'}

        if error:
            description = query.get('error_description') or ''
            logger.error(f"OAuth error: {error} {description}")
            return {'error': str(error), 'error_description': str(description)}

        if not code or not state:
            logger.error("Missing code or state parameter")
            return {'error': 'invalid_request', 'error_description': 'Missing code or state parameter'}

        if self.state_tokens.consume(state) is None:
            logger.error("Invalid state token")
            return {'error': 'invalid_state', 'error_description': 'State token is invalid or expired'}

        return None

    async def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for an access token.

        Returns:
            Dict: ``{access_token, refresh_token, expires_in, scopes, token_type}``

        Raises:
            TwitchApiError: If the exchange fails
        """
        logger.info("Exchanging authorization code for access token...")
        data = {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'code': code,
            'grant_type': 'authorization_code',
            'redirect_uri': self.redirect_uri,
        }

        try:
            status, body = await self._request('POST', TWITCH_URLS.OAUTH_TOKEN, data=data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TwitchApiError(f"Token exchange request failed: {e}") from e

        if status != 200 or not isinstance(body, dict) or 'access_token' not in body:
            raise TwitchApiError(
                f"Token exchange failed: {error_message(body) or status}", status, body
            )

        logger.info("Successfully obtained access token", extra={
            'expires_in': body.get('expires_in'),
            'scopes': body.get('scope'),
        })
        return {
            'access_token': body['access_token'],
            'refresh_token': body.get('refresh_token'),
            'expires_in': body.get('expires_in'),
            'scopes': body.get('scope'),
            'token_type': body.get('token_type'),
        }

    async def validate_token(self, access_token: str) -> Dict[str, Any]:
        """
        Look up the user a freshly issued token belongs to.

        Raises:
            TwitchApiError: If validation fails
        """
        try:
            status, body = await self._request(
                'GET', TWITCH_URLS.OAUTH_VALIDATE, headers={'Authorization': f'OAuth {access_token}'}
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TwitchApiError(f"Token validation request failed: {e}") from e

        if status != 200 or not isinstance(body, dict):
            raise TwitchApiError(f"Token validation failed: {error_message(body) or status}", status, body)

        logger.info(f"Token validated for {body.get('login')} ({body.get('user_id')})")
        return {
            'client_id': body.get('client_id'),
            'login': body.get('login'),
            'user_id': body.get('user_id'),
            'scopes': body.get('scopes') or [],
        }

    def get_stats(self) -> Dict[str, Any]:
        return self.state_tokens.get_stats()
