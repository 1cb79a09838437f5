"""
Exception hierarchy for the channel points monitor.

Every error raised by the monitor derives from TwitchError so that the
application entry point can tell domain failures from programming errors.
"""

from typing import Any, Dict, List, Optional


class TwitchError(Exception):
    """Base exception for Twitch-related errors."""
    pass


class TwitchApiError(TwitchError):
    """Raised when a Twitch REST call fails."""

    def __init__(self, message: str, status: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.status = status
        self.response = response

    @property
    def is_connection_error(self) -> bool:
        """True when the request never produced an HTTP response."""
        return self.status is None


class SubscriptionError(TwitchApiError):
    """Raised when an EventSub subscription cannot be created or deleted."""

    def __init__(self, message: str, event_type: Optional[str] = None,
                 status: Optional[int] = None, response: Any = None):
        super().__init__(message, status, response)
        self.event_type = event_type


class ParseError(TwitchError):
    """Raised when an inbound WebSocket frame is not a valid EventSub message."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class WebSocketError(TwitchError):
    """Raised when the EventSub WebSocket cannot be opened."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


class ConfigurationError(TwitchError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []


class TokenValidationError(TwitchError):
    """
    Raised when an access token fails validation.

    Reasons: ``ownership_mismatch``, ``missing_scope``, ``invalid_token``,
    ``validation_failed``, ``network_error``.
    """

    def __init__(self, message: str, reason: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.reason = reason
        self.details = details or {}


class TokenOwnershipError(TokenValidationError):
    """Raised when the token belongs to a different user than the broadcaster."""

    def __init__(self, token_user_id: Optional[str], expected_user_id: str):
        message = "\n".join([
            "Token mismatch!",
            f"Token belongs to user ID: {token_user_id}",
            f"But broadcaster ID is: {expected_user_id}",
        ])
        super().__init__(message, 'ownership_mismatch', {
            'token_user_id': token_user_id,
            'expected_user_id': expected_user_id,
        })
        self.token_user_id = token_user_id
        self.expected_user_id = expected_user_id


class TokenScopeError(TokenValidationError):
    """Raised when the token lacks every one of the required scopes."""

    def __init__(self, current_scopes: List[str], required_scopes: List[str]):
        message = "\n".join([
            "Missing required scope!",
            f"Current scopes: {', '.join(current_scopes) or '(none)'}",
            f"Required: {' OR '.join(required_scopes)}",
        ])
        super().__init__(message, 'missing_scope', {
            'current_scopes': current_scopes,
            'required_scopes': required_scopes,
        })
        self.current_scopes = current_scopes
        self.required_scopes = required_scopes


class TokenRefreshError(TwitchError):
    """
    Raised when the OAuth refresh-token grant fails.

    Reasons: ``missing_refresh_token``, ``missing_credentials``,
    ``invalid_client_secret``, ``invalid_client_id``, ``invalid_refresh_token``,
    ``invalid_credentials``, ``api_error``, ``network_error``.
    """

    TRANSIENT_REASONS = frozenset({'network_error', 'api_error'})

    def __init__(self, message: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.reason = reason
        self.details = details or {}

    @property
    def is_transient(self) -> bool:
        """Only network and generic API failures are worth retrying."""
        return self.reason in self.TRANSIENT_REASONS
