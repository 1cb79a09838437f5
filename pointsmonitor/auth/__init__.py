"""
Authentication for the Twitch Channel Points Monitor.

Token validation, refresh, versioned credential state and the local
authorization helper.
"""

from .credentials import Credential, CredentialStore
from .oauth import OAuthHandler
from .refresher import RefreshedTokens, TokenRefresher
from .state_tokens import StateTokenManager
from .validator import FormattedError, TokenValidator

__all__ = [
    'Credential',
    'CredentialStore',
    'FormattedError',
    'OAuthHandler',
    'RefreshedTokens',
    'StateTokenManager',
    'TokenRefresher',
    'TokenValidator',
]
