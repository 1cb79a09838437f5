"""
Access token validation against the Twitch OAuth validate endpoint.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..config.constants import REQUIRED_SCOPES, TIMEOUTS, TWITCH_URLS
from ..errors import TokenOwnershipError, TokenScopeError, TokenValidationError
from ..http_client import TwitchHttpClient, error_message

logger = logging.getLogger(__name__)


@dataclass
class FormattedError:
    """User-facing error message plus remediation steps."""
    message: str
    solution: List[str] = field(default_factory=list)


class TokenValidator(TwitchHttpClient):
    """Checks token validity, ownership and scope."""

    def __init__(self, validate_url: str = TWITCH_URLS.OAUTH_VALIDATE,
                 timeout: float = TIMEOUTS.OAUTH_REQUEST):
        super().__init__(timeout)
        self.validate_url = validate_url

    async def _fetch_token_info(self, access_token: str) -> Dict[str, Any]:
        """
        Call the validate endpoint.

        Returns:
            Dict: ``{user_id, login, client_id, scopes, expires_in}``

        Raises:
            TokenValidationError: ``invalid_token``, ``validation_failed`` or ``network_error``
        """
        try:
            status, body = await self._request(
                'GET', self.validate_url, headers={'Authorization': f'OAuth {access_token}'}
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenValidationError(
                f"Token validation request failed: {e}", 'network_error', {'error': str(e)}
            ) from e

        if status == 200 and isinstance(body, dict):
            return body
        if status == 401:
            raise TokenValidationError(
                "Access token is invalid or expired", 'invalid_token',
                {'status': status, 'message': error_message(body)}
            )
        raise TokenValidationError(
            f"Token validation failed with status {status}: {error_message(body)}",
            'validation_failed', {'status': status, 'data': body}
        )

    async def validate(self, access_token: str, broadcaster_id: str,
                       required_scopes: Sequence[str] = REQUIRED_SCOPES) -> Dict[str, Any]:
        """
        Validate a token for monitoring ``broadcaster_id``.

        Args:
            access_token: Access token to validate
            broadcaster_id: User id the token must belong to
            required_scopes: At least one of these must be granted

        Returns:
            Dict: Token info returned by Twitch

        Raises:
            TokenOwnershipError: Token belongs to another user
            TokenScopeError: Token lacks every required scope
            TokenValidationError: Token invalid or validation unavailable
        """
        token_info = await self._fetch_token_info(access_token)

        token_user_id = token_info.get('user_id')
        if str(token_user_id) != str(broadcaster_id):
            raise TokenOwnershipError(token_user_id, broadcaster_id)

        scopes = list(token_info.get('scopes') or [])
        if required_scopes and not any(scope in scopes for scope in required_scopes):
            raise TokenScopeError(scopes, list(required_scopes))

        logger.info("Token validation successful", extra={
            'login': token_info.get('login'),
            'expires_in': token_info.get('expires_in'),
        })
        return token_info

    async def quick_check(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Lightweight validity check used to read the remaining lifetime.

        Returns:
            Optional[Dict]: Token info, or None if the token is invalid or the check failed
        """
        try:
            return await self._fetch_token_info(access_token)
        except TokenValidationError as e:
            logger.debug(f"Quick token check failed: {e}", extra={'reason': e.reason})
            return None

    @staticmethod
    def format_error(error: Exception) -> FormattedError:
        """Format a validation error with remediation steps for display."""
        if not isinstance(error, TokenValidationError):
            return FormattedError(str(error), ['Check your configuration and try again'])

        solutions = {
            'ownership_mismatch': [
                'The access token was generated by a different Twitch account.',
                'Log in to Twitch as the broadcaster and re-run the authorization flow,',
                'or set TWITCH_BROADCASTER_ID to the user ID the token belongs to.',
                'Run "pointsmonitor-validate" to see which account the token belongs to.',
            ],
            'missing_scope': [
                'The access token does not carry the channel points scope.',
                'Re-run the authorization flow and grant channel:read:redemptions.',
            ],
            'invalid_token': [
                'The access token is invalid or has expired.',
                'Add TWITCH_REFRESH_TOKEN and TWITCH_CLIENT_SECRET to enable automatic refresh,',
                'or re-run the authorization flow to generate new tokens.',
            ],
            'validation_failed': [
                'Twitch rejected the validation request.',
                'Check Twitch API status at https://devstatus.twitch.tv',
            ],
            'network_error': [
                'Network error while validating the token.',
                'Check your internet connection and try again.',
            ],
        }
        return FormattedError(
            str(error),
            solutions.get(error.reason, ['Check your configuration and try again'])
        )
