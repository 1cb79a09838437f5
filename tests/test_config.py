"""
Unit tests for configuration loading and the durable config store.
"""

import json
import os
from unittest.mock import patch

import pytest

from pointsmonitor.config.settings import (
    ConfigStore, GlobalConfig, get_env_name, load_global_config, validate_config,
)
from pointsmonitor.errors import ConfigurationError


@pytest.fixture(autouse=True)
def no_dotenv():
    with patch('pointsmonitor.config.settings.load_dotenv'):
        yield


class TestConfigStore:
    """Test cases for ConfigStore."""

    def test_load_missing_file_returns_empty(self, tmp_path):
        store = ConfigStore(tmp_path / "missing.json")
        assert not store.exists()
        assert store.load() == {}

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            ConfigStore(path).load()

    def test_load_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigurationError, match="JSON object"):
            ConfigStore(path).load()

    def test_apply_to_environment(self, config_store):
        assert config_store.apply_to_environment() is True
        assert os.environ['TWITCH_CLIENT_ID'] == "test-client-id"
        assert os.environ['TWITCH_ACCESS_TOKEN'] == "old-access"

    def test_apply_to_environment_bad_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("oops")
        assert ConfigStore(path).apply_to_environment() is False

    def test_get_credential(self, config_store):
        credential = config_store.get_credential()
        assert credential == {
            'client_id': 'test-client-id',
            'client_secret': 'test-secret',
            'access_token': 'old-access',
            'refresh_token': 'old-refresh',
        }

    def test_save_tokens_rewrites_pair(self, config_store, temp_config_file):
        config_store.save_tokens("new-access", "new-refresh")

        text = temp_config_file.read_text()
        data = json.loads(text)
        assert data['TWITCH_ACCESS_TOKEN'] == "new-access"
        assert data['TWITCH_REFRESH_TOKEN'] == "new-refresh"
        assert data['TWITCH_CLIENT_ID'] == "test-client-id"
        assert text.endswith("\n")
        assert '\n  "TWITCH_CLIENT_ID"' in text

    def test_save_tokens_keeps_refresh_when_none(self, config_store, temp_config_file):
        config_store.save_tokens("new-access")

        data = json.loads(temp_config_file.read_text())
        assert data['TWITCH_REFRESH_TOKEN'] == "old-refresh"

    def test_save_tokens_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigStore(tmp_path / "config.json").save_tokens("a", "b")

    def test_save_creates_file(self, tmp_path):
        store = ConfigStore(tmp_path / "sub" / "config.json")
        store.save({'TWITCH_ACCESS_TOKEN': 'abc', 'TWITCH_REFRESH_TOKEN': None})

        assert store.load() == {'TWITCH_ACCESS_TOKEN': 'abc'}

    def test_default_path_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv('POINTS_MONITOR_CONFIG', str(tmp_path / "custom.json"))
        assert ConfigStore().path == tmp_path / "custom.json"


class TestLoadGlobalConfig:
    """Test cases for load_global_config."""

    def test_loads_from_config_file(self, temp_config_file):
        config = load_global_config(config_path=temp_config_file)

        assert config.client_id == "test-client-id"
        assert config.access_token == "old-access"
        assert config.broadcaster_id == "12345"
        assert config.port == 3000
        assert config.redirect_uri == "http://localhost:3000/callback"
        assert config.can_refresh

    def test_environment_settings(self, temp_config_file, monkeypatch):
        monkeypatch.setenv('TOKEN_REFRESH_INTERVAL', '600')
        monkeypatch.setenv('HTTP_TIMEOUT', '5')
        monkeypatch.setenv('ALLOW_KEEPALIVE', 'true')
        monkeypatch.setenv('LOG_LEVEL', 'debug')

        config = load_global_config(config_path=temp_config_file)

        assert config.token_refresh_interval == 600
        assert config.http_timeout == 5
        assert config.allow_keepalive is True
        assert config.log_level == "DEBUG"

    def test_missing_fields_named(self, tmp_path, monkeypatch):
        monkeypatch.setenv('TWITCH_CLIENT_ID', 'abc')

        with pytest.raises(ConfigurationError) as exc_info:
            load_global_config(config_path=tmp_path / "none.json")

        assert exc_info.value.missing_fields == ['access_token', 'broadcaster_id']
        assert "TWITCH_ACCESS_TOKEN" in str(exc_info.value)
        assert "TWITCH_BROADCASTER_ID" in str(exc_info.value)

    def test_oauth_preset(self, tmp_path, monkeypatch):
        monkeypatch.setenv('TWITCH_CLIENT_ID', 'abc')
        monkeypatch.setenv('TWITCH_CLIENT_SECRET', 'def')

        config = load_global_config(required='oauth', config_path=tmp_path / "none.json")
        assert config.access_token is None

    def test_invalid_port(self, tmp_path, monkeypatch):
        monkeypatch.setenv('TWITCH_CLIENT_ID', 'abc')
        monkeypatch.setenv('PORT', 'eighty')

        with pytest.raises(ConfigurationError, match="PORT"):
            load_global_config(required='minimal', config_path=tmp_path / "none.json")

    def test_get_env_name(self):
        assert get_env_name('client_id') == 'TWITCH_CLIENT_ID'
        assert get_env_name('redirect_uri') == 'REDIRECT_URI'
        assert get_env_name('other') == 'OTHER'


class TestValidateConfig:
    """Test cases for validate_config."""

    def _config(self, **overrides) -> GlobalConfig:
        values = dict(
            client_id="id", client_secret="secret", access_token="token",
            refresh_token="refresh", broadcaster_id="1",
            redirect_uri="http://localhost:3000/callback", port=3000,
            config_path="config.json",
        )
        values.update(overrides)
        return GlobalConfig(**values)

    def test_valid(self):
        validate_config(self._config())

    @pytest.mark.parametrize("overrides", [
        {'log_level': 'LOUD'},
        {'log_format': 'xml'},
        {'port': 0},
        {'port': 70000},
        {'token_refresh_interval': 0},
        {'http_timeout': -1},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(**overrides))
