"""
Tests for the application entry point.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from pointsmonitor import main as main_module
from pointsmonitor.eventsub.client import ClientExit, EventSubClient, ExitReason
from pointsmonitor.main import MonitorApplication
from tests.conftest import BROADCASTER_ID


@pytest.fixture(autouse=True)
def no_dotenv():
    with patch('pointsmonitor.config.settings.load_dotenv'):
        yield


def fake_client(loop, exit_result=None):
    """Client double whose wait() resolves when disconnect() is called or immediately."""
    future = loop.create_future()
    if exit_result is not None:
        future.set_result(exit_result)

    async def wait():
        return await future

    async def disconnect():
        if not future.done():
            future.set_result(ClientExit(ExitReason.USER_REQUESTED, "Disconnected by user"))

    client = Mock()
    client.wait = wait
    client.disconnect = AsyncMock(side_effect=disconnect)
    client.close = AsyncMock()
    return client


class TestMonitorApplication:
    """Test cases for MonitorApplication."""

    @pytest.mark.asyncio
    async def test_startup_builds_components(self, monkeypatch, temp_config_file):
        monkeypatch.setenv('POINTS_MONITOR_CONFIG', str(temp_config_file))
        app = MonitorApplication()

        with patch.object(EventSubClient, 'connect', AsyncMock()) as connect:
            await app.startup()

        connect.assert_awaited_once()
        assert app.client.broadcaster_id == BROADCASTER_ID
        assert app.credentials.current.access_token == "old-access"
        assert app.credentials.current.can_refresh
        assert app.client.refresher.config_store.path == temp_config_file
        assert app._initialized_components == [
            "configuration", "logging", "credentials", "client", "connection",
        ]

        await app.shutdown()

    @pytest.mark.asyncio
    async def test_signal_stops_client(self):
        loop = asyncio.get_running_loop()
        app = MonitorApplication()
        app.startup = AsyncMock()
        app.logger = Mock()
        app.client = fake_client(loop)

        loop.call_soon(app.signal_handler, 15)
        exit_code = await asyncio.wait_for(app.run(), 2)

        assert exit_code == 0
        app.client.disconnect.assert_awaited_once()
        app.client.close.assert_awaited_once()
        assert app.result.reason == ExitReason.USER_REQUESTED

    @pytest.mark.asyncio
    async def test_client_exit_propagates_exit_code(self):
        loop = asyncio.get_running_loop()
        app = MonitorApplication()
        app.startup = AsyncMock()
        app.logger = Mock()
        app.client = fake_client(loop, ClientExit(ExitReason.CONNECTION_LOST, "closed"))

        exit_code = await asyncio.wait_for(app.run(), 2)

        assert exit_code == 1
        app.client.disconnect.assert_not_awaited()
        app.client.close.assert_awaited_once()


class TestMain:
    """Test cases for the async main() entry point."""

    @pytest.mark.asyncio
    async def test_missing_configuration_returns_one(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv('POINTS_MONITOR_CONFIG', str(tmp_path / "missing.json"))

        with patch.object(main_module, '_install_signal_handlers'):
            exit_code = await main_module.main()

        assert exit_code == 1
        assert "pointsmonitor-oauth" in capsys.readouterr().err
