"""
Unit tests for the versioned credential store.
"""

from unittest.mock import Mock

from pointsmonitor.auth.credentials import Credential, CredentialStore


class TestCredential:

    def test_can_refresh_requires_secret_and_refresh_token(self):
        assert Credential("id", "a", "r", "s").can_refresh
        assert not Credential("id", "a", None, "s").can_refresh
        assert not Credential("id", "a", "r", None).can_refresh

    def test_with_tokens_bumps_version(self):
        original = Credential("id", "a", "r", "s")
        updated = original.with_tokens("a2", "r2")

        assert updated.version == 1
        assert updated.access_token == "a2"
        assert updated.refresh_token == "r2"
        assert updated.client_secret == "s"
        assert updated.updated_at is not None
        assert original.access_token == "a"

    def test_with_tokens_keeps_refresh_token_when_absent(self):
        updated = Credential("id", "a", "r", "s").with_tokens("a2", None)
        assert updated.refresh_token == "r"


class TestCredentialStore:

    def test_apply_refresh_current_version(self, credential_store):
        listener = Mock()
        credential_store.add_listener(listener)

        assert credential_store.apply_refresh("new", "new-r", based_on_version=0) is True

        assert credential_store.current.access_token == "new"
        assert credential_store.version == 1
        listener.assert_called_once_with(credential_store.current)

    def test_apply_refresh_stale_version_discarded(self, credential_store):
        listener = Mock()
        credential_store.add_listener(listener)

        # Two refreshes issued from version 0; the second to complete must not win
        assert credential_store.apply_refresh("first", "r1", based_on_version=0) is True
        assert credential_store.apply_refresh("second", "r2", based_on_version=0) is False

        assert credential_store.current.access_token == "first"
        assert credential_store.version == 1
        assert listener.call_count == 1

    def test_failing_listener_does_not_block_others(self, credential_store):
        failing = Mock(side_effect=RuntimeError("boom"))
        listener = Mock()
        credential_store.add_listener(failing)
        credential_store.add_listener(listener)

        assert credential_store.apply_refresh("new", None, based_on_version=0) is True

        assert credential_store.version == 1
        listener.assert_called_once_with(credential_store.current)

    def test_sequential_refreshes(self, credential_store):
        credential_store.apply_refresh("a1", None, 0)
        credential_store.apply_refresh("a2", None, 1)

        assert credential_store.version == 2
        assert credential_store.current.access_token == "a2"
        assert credential_store.current.refresh_token == "refresh-v0"
