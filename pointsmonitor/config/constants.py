"""
Centralized constants for the Twitch API integration.

Twitch user access tokens expire after roughly four hours, so the refresh
defaults below keep the monitor well ahead of expiry.
"""

from typing import Dict, List


class TWITCH_URLS:
    """Twitch endpoints used by the monitor and the OAuth helper."""
    EVENTSUB_WS = "wss://eventsub.wss.twitch.tv/ws"
    API = "https://api.twitch.tv/helix"
    OAUTH_AUTHORIZE = "https://id.twitch.tv/oauth2/authorize"
    OAUTH_TOKEN = "https://id.twitch.tv/oauth2/token"
    OAUTH_VALIDATE = "https://id.twitch.tv/oauth2/validate"


class EVENT_TYPES:
    """Channel points EventSub subscription types."""
    REWARD_ADD = "channel.channel_points_custom_reward.add"
    REWARD_UPDATE = "channel.channel_points_custom_reward.update"
    REDEMPTION_ADD = "channel.channel_points_custom_reward_redemption.add"
    REDEMPTION_UPDATE = "channel.channel_points_custom_reward_redemption.update"

    @classmethod
    def all(cls) -> List[str]:
        return [cls.REWARD_ADD, cls.REWARD_UPDATE, cls.REDEMPTION_ADD, cls.REDEMPTION_UPDATE]


class MESSAGE_TYPES:
    """EventSub WebSocket message types (``metadata.message_type``)."""
    SESSION_WELCOME = "session_welcome"
    SESSION_KEEPALIVE = "session_keepalive"
    NOTIFICATION = "notification"
    SESSION_RECONNECT = "session_reconnect"
    REVOCATION = "revocation"


class SCOPES:
    READ_REDEMPTIONS = "channel:read:redemptions"
    MANAGE_REDEMPTIONS = "channel:manage:redemptions"


# At least one of these must be granted to the token
REQUIRED_SCOPES: List[str] = [SCOPES.READ_REDEMPTIONS, SCOPES.MANAGE_REDEMPTIONS]

DEFAULT_OAUTH_SCOPES: List[str] = [SCOPES.READ_REDEMPTIONS, SCOPES.MANAGE_REDEMPTIONS]


class DEFAULTS:
    PORT = 3000
    REDIRECT_URI = "http://localhost:3000/callback"
    CONFIG_PATH = "config.json"
    STATE_TOKEN_TTL = 5 * 60  # seconds
    STATE_TOKEN_CLEANUP_INTERVAL = 60  # seconds
    STATE_TOKEN_LENGTH = 16  # bytes
    KEEPALIVE_TIMEOUT = 10  # seconds


class TOKEN_REFRESH:
    INTERVAL = 60 * 60  # seconds
    MAX_ATTEMPTS = 3  # 1 initial + 2 retries per refresh cycle
    INITIAL_BACKOFF = 1.0  # seconds
    MAX_BACKOFF = 30.0  # seconds
    MAX_CONSECUTIVE_FAILURES = 3  # standing warning after this many failed cycles


class TIMEOUTS:
    OAUTH_REQUEST = 15  # seconds
    API_REQUEST = 15  # seconds


class RETRY:
    STANDARD_MAX_RETRIES = 3
    STANDARD_BASE_DELAY = 1.0
    STANDARD_MAX_DELAY = 10.0

    AGGRESSIVE_MAX_RETRIES = 5
    AGGRESSIVE_BASE_DELAY = 0.5
    AGGRESSIVE_MAX_DELAY = 5.0

    CONSERVATIVE_MAX_RETRIES = 2
    CONSERVATIVE_BASE_DELAY = 2.0
    CONSERVATIVE_MAX_DELAY = 30.0

    RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


# Config file keys and the environment variables they populate
CONFIG_KEYS: Dict[str, str] = {
    'client_id': 'TWITCH_CLIENT_ID',
    'client_secret': 'TWITCH_CLIENT_SECRET',
    'access_token': 'TWITCH_ACCESS_TOKEN',
    'refresh_token': 'TWITCH_REFRESH_TOKEN',
    'broadcaster_id': 'TWITCH_BROADCASTER_ID',
    'redirect_uri': 'REDIRECT_URI',
    'port': 'PORT',
}
