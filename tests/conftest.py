"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
import json
import logging
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import aiohttp
import pytest

from pointsmonitor.auth.credentials import Credential, CredentialStore
from pointsmonitor.auth.refresher import RefreshedTokens, TokenRefresher
from pointsmonitor.auth.validator import TokenValidator
from pointsmonitor.config.constants import EVENT_TYPES
from pointsmonitor.config.settings import ConfigStore
from pointsmonitor.eventsub.subscriber import EventSubSubscriber

BROADCASTER_ID = "12345"
CLIENT_ID = "test-client-id"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep token mirroring and config lookups from leaking between tests."""
    for name in ('TWITCH_CLIENT_ID', 'TWITCH_CLIENT_SECRET', 'TWITCH_ACCESS_TOKEN',
                 'TWITCH_REFRESH_TOKEN', 'TWITCH_BROADCASTER_ID', 'REDIRECT_URI', 'PORT',
                 'LOG_LEVEL', 'LOG_FORMAT', 'LOG_FILE', 'TOKEN_REFRESH_INTERVAL',
                 'HTTP_TIMEOUT', 'ALLOW_KEEPALIVE', 'POINTS_MONITOR_CONFIG'):
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    yield


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging so caplog sees package records."""
    yield
    root = logging.getLogger("pointsmonitor")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def temp_config_file(tmp_path):
    """Create a config.json holding a full credential set."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "TWITCH_CLIENT_ID": CLIENT_ID,
        "TWITCH_CLIENT_SECRET": "test-secret",
        "TWITCH_ACCESS_TOKEN": "old-access",
        "TWITCH_REFRESH_TOKEN": "old-refresh",
        "TWITCH_BROADCASTER_ID": BROADCASTER_ID,
    }, indent=2) + "\n")
    return path


@pytest.fixture
def config_store(temp_config_file):
    return ConfigStore(temp_config_file)


@pytest.fixture
def credential_store():
    """Credential store with refresh enabled."""
    return CredentialStore(Credential(
        client_id=CLIENT_ID,
        access_token="access-v0",
        refresh_token="refresh-v0",
        client_secret="test-secret",
    ))


@pytest.fixture
def credential_store_no_refresh():
    """Credential store without a refresh token."""
    return CredentialStore(Credential(client_id=CLIENT_ID, access_token="access-v0"))


@pytest.fixture
def mock_validator():
    """Real TokenValidator with its network calls replaced."""
    validator = TokenValidator()
    validator.validate = AsyncMock(return_value=token_info())
    validator.quick_check = AsyncMock(return_value=token_info(expires_in=14000))
    return validator


@pytest.fixture
def mock_refresher():
    """Real TokenRefresher (no durable store) with the grant replaced."""
    refresher = TokenRefresher()
    counter = {'n': 0}

    async def refresh(refresh_token, client_id, client_secret):
        counter['n'] += 1
        return RefreshedTokens(
            access_token=f"access-r{counter['n']}",
            refresh_token=f"refresh-r{counter['n']}",
            expires_in=14400,
        )

    refresher.refresh = AsyncMock(side_effect=refresh)
    return refresher


@pytest.fixture
def mock_subscriber():
    """Real EventSubSubscriber answering every POST with a new subscription id."""
    subscriber = EventSubSubscriber(CLIENT_ID, "access-v0", sleep=AsyncMock())
    counter = {'n': 0}

    async def request(method, url, **kwargs):
        if method == 'POST':
            counter['n'] += 1
            body = kwargs['json']
            return 202, {'data': [subscription_payload(
                f"sub-{counter['n']}", body['type'], body['condition'],
                session_id=body['transport']['session_id'],
            )]}
        return 204, None

    subscriber._request = AsyncMock(side_effect=request)
    return subscriber


@pytest.fixture
def ws_factory():
    return FakeWebSocketFactory()


def token_info(user_id: str = BROADCASTER_ID, expires_in: int = 14000,
               scopes: Optional[List[str]] = None) -> Dict[str, Any]:
    """Create a validate endpoint response."""
    return {
        'client_id': CLIENT_ID,
        'login': 'teststreamer',
        'user_id': user_id,
        'scopes': scopes if scopes is not None else ['channel:read:redemptions'],
        'expires_in': expires_in,
    }


def subscription_payload(sub_id: str, sub_type: str = EVENT_TYPES.REDEMPTION_ADD,
                         condition: Optional[Dict[str, Any]] = None,
                         status: str = "enabled", session_id: str = "S1") -> Dict[str, Any]:
    """Create a Helix subscription object."""
    return {
        'id': sub_id,
        'status': status,
        'type': sub_type,
        'version': '1',
        'condition': condition or {'broadcaster_user_id': BROADCASTER_ID},
        'transport': {'method': 'websocket', 'session_id': session_id},
        'created_at': '2024-01-01T00:00:00Z',
        'cost': 0,
    }


def _frame(message_type: str, payload: Dict[str, Any], **metadata) -> Dict[str, Any]:
    meta = {
        'message_id': f"msg-{message_type}",
        'message_type': message_type,
        'message_timestamp': '2024-01-01T00:00:00Z',
    }
    meta.update(metadata)
    return {'metadata': meta, 'payload': payload}


def welcome_frame(session_id: str = "S1", keepalive: int = 10) -> Dict[str, Any]:
    return _frame('session_welcome', {'session': {
        'id': session_id,
        'status': 'connected',
        'connected_at': '2024-01-01T00:00:00Z',
        'keepalive_timeout_seconds': keepalive,
        'reconnect_url': None,
    }})


def keepalive_frame() -> Dict[str, Any]:
    return _frame('session_keepalive', {})


def reconnect_frame(reconnect_url: str, session_id: str = "S1") -> Dict[str, Any]:
    return _frame('session_reconnect', {'session': {
        'id': session_id,
        'status': 'reconnecting',
        'keepalive_timeout_seconds': None,
        'reconnect_url': reconnect_url,
    }})


def redemption_event(user_input: str = "") -> Dict[str, Any]:
    return {
        'id': 'redemption-1',
        'broadcaster_user_id': BROADCASTER_ID,
        'broadcaster_user_login': 'teststreamer',
        'broadcaster_user_name': 'TestStreamer',
        'user_id': '999',
        'user_login': 'viewer',
        'user_name': 'Viewer',
        'user_input': user_input,
        'status': 'unfulfilled',
        'reward': {'id': 'reward-1', 'title': 'Hydrate', 'cost': 100, 'prompt': 'Drink water'},
        'redeemed_at': '2024-01-01T00:00:00Z',
    }


def notification_frame(sub_id: str = "sub-1", sub_type: str = EVENT_TYPES.REDEMPTION_ADD,
                       event: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _frame('notification', {
        'subscription': subscription_payload(sub_id, sub_type),
        'event': event if event is not None else redemption_event(),
    }, subscription_type=sub_type, subscription_version='1')


def revocation_frame(sub_id: str, sub_type: str = EVENT_TYPES.REDEMPTION_ADD,
                     status: str = "authorization_revoked") -> Dict[str, Any]:
    return _frame('revocation', {
        'subscription': subscription_payload(sub_id, sub_type, status=status),
    }, subscription_type=sub_type)


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, url: str):
        self.url = url
        self.closed = False
        self.close_code: Optional[int] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: Any) -> None:
        """Queue a TEXT frame (dicts are JSON encoded)."""
        data = frame if isinstance(frame, str) else json.dumps(frame)
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def feed_error(self) -> None:
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def server_close(self, code: int = 1000) -> None:
        """Simulate the server closing the connection."""
        self.close_code = code
        self._queue.put_nowait(None)

    async def close(self, code: int = 1000) -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self._queue.put_nowait(None)
        return True

    def exception(self) -> Optional[BaseException]:
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        msg = await self._queue.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeWebSocketFactory:
    """Records every dialled URL and hands out FakeWebSockets."""

    def __init__(self):
        self.urls: List[str] = []
        self.sockets: List[FakeWebSocket] = []
        self.fail_urls: set = set()

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if url in self.fail_urls:
            raise aiohttp.ClientConnectionError(f"Cannot connect to {url}")
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)
