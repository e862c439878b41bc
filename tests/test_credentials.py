"""
Tests for the credential store and platform backends.
"""

from unittest.mock import Mock

import pytest

from cabledesk_client.auth.credentials import (
    CredentialStore, ExplicitTokenBackend, TransportCredentialBackend, create_credential_backend
)
from cabledesk_client.auth.token_storage import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
from cabledesk_shared.exceptions import TokenStorageError, ConfigurationError, ErrorCode
from cabledesk_shared.models import Platform


def failing_storage():
    storage = Mock()
    storage.set.side_effect = TokenStorageError("keyring locked", ErrorCode.STORAGE_WRITE_FAILED)
    storage.get.side_effect = TokenStorageError("keyring locked", ErrorCode.STORAGE_READ_FAILED)
    storage.remove.side_effect = TokenStorageError("keyring locked", ErrorCode.STORAGE_REMOVE_FAILED)
    return storage


class TestBackendSelection:
    def test_native_uses_explicit_tokens(self, file_storage):
        backend = create_credential_backend(Platform.NATIVE, storage=file_storage)
        assert isinstance(backend, ExplicitTokenBackend)
        assert backend.storage is file_storage

    def test_web_uses_transport_credential(self):
        jar = Mock()
        backend = create_credential_backend(Platform.WEB, cookie_jar=jar)
        assert isinstance(backend, TransportCredentialBackend)
        assert backend.cookie_jar is jar

    def test_unknown_platform(self):
        with pytest.raises(ConfigurationError):
            create_credential_backend("desktop")


class TestExplicitTokenBackend:
    def test_refresh_payload_carries_stored_token(self, file_storage):
        file_storage.set(REFRESH_TOKEN_KEY, "ref1")
        assert ExplicitTokenBackend(file_storage).refresh_payload() == {'refreshToken': 'ref1'}

    def test_refresh_payload_without_stored_token(self, file_storage):
        assert ExplicitTokenBackend(file_storage).refresh_payload() == {'refreshToken': None}

    def test_save_and_load(self, file_storage):
        backend = ExplicitTokenBackend(file_storage)
        backend.save_session("tok1", "ref1")

        assert backend.load_session() == {ACCESS_TOKEN_KEY: "tok1", REFRESH_TOKEN_KEY: "ref1"}

    def test_save_without_refresh_token_removes_stored_one(self, file_storage):
        backend = ExplicitTokenBackend(file_storage)
        backend.save_session("tokA", "refA")

        backend.save_session("tokB", None)

        assert backend.load_session() == {ACCESS_TOKEN_KEY: "tokB", REFRESH_TOKEN_KEY: None}

    def test_clear_removes_both_keys(self, file_storage):
        backend = ExplicitTokenBackend(file_storage)
        backend.save_session("tok1", "ref1")

        backend.clear()

        assert file_storage.get(ACCESS_TOKEN_KEY) is None
        assert file_storage.get(REFRESH_TOKEN_KEY) is None

    def test_clear_attempts_both_keys_on_error(self):
        storage = failing_storage()

        with pytest.raises(TokenStorageError):
            ExplicitTokenBackend(storage).clear()

        assert storage.remove.call_count == 2


class TestTransportCredentialBackend:
    def test_refresh_payload_is_empty(self):
        assert TransportCredentialBackend().refresh_payload() == {}

    def test_nothing_is_persisted(self):
        backend = TransportCredentialBackend()
        backend.save_session("tok1", "ref1")
        assert backend.load_session() == {ACCESS_TOKEN_KEY: None, REFRESH_TOKEN_KEY: None}

    def test_clear_empties_cookie_jar(self):
        jar = Mock()
        TransportCredentialBackend(jar).clear()
        jar.clear.assert_called_once()


class TestCredentialStore:
    """Session ownership and persistence."""

    def test_start_session_persists(self, file_storage):
        store = CredentialStore(ExplicitTokenBackend(file_storage))

        session = store.start_session("tok1", "ref1", {'id': 'u1'})

        assert session.access_token == "tok1"
        assert session.user == {'id': 'u1'}
        assert session.created_at is not None
        assert file_storage.get(ACCESS_TOKEN_KEY) == "tok1"
        assert file_storage.get(REFRESH_TOKEN_KEY) == "ref1"

    def test_new_session_without_refresh_token_drops_old_one(self, file_storage):
        backend = ExplicitTokenBackend(file_storage)
        store = CredentialStore(backend)
        store.start_session("tokA", "refA", {'id': 'u1'})

        store.start_session("tokB", None, {'id': 'u2'})

        assert backend.refresh_payload() == {'refreshToken': None}
        assert file_storage.get(ACCESS_TOKEN_KEY) == "tokB"

    def test_token_callbacks(self):
        store = CredentialStore(TransportCredentialBackend())
        seen = []
        store.add_token_callback(seen.append)

        store.set_access_token("tok1")
        store.clear()

        assert seen == ["tok1", None]

    def test_failing_callback_does_not_break_others(self):
        store = CredentialStore(TransportCredentialBackend())
        seen = []
        store.add_token_callback(Mock(side_effect=RuntimeError("boom")))
        store.add_token_callback(seen.append)

        store.set_access_token("tok1")

        assert seen == ["tok1"]

    def test_set_access_token_records_refresh_time(self):
        store = CredentialStore(TransportCredentialBackend())
        store.set_access_token("tok2")
        assert store.session.refreshed_at is not None

    def test_storage_errors_are_swallowed(self):
        store = CredentialStore(ExplicitTokenBackend(failing_storage()))

        store.start_session("tok1", "ref1")
        store.persist("tok2")
        store.clear()

        assert store.access_token is None

    def test_restore(self, file_storage):
        ExplicitTokenBackend(file_storage).save_session("tok1", "ref1")
        store = CredentialStore(ExplicitTokenBackend(file_storage))

        assert store.restore() is True
        assert store.access_token == "tok1"
        assert store.session.refresh_token == "ref1"

    def test_restore_nothing_stored(self, file_storage):
        store = CredentialStore(ExplicitTokenBackend(file_storage))
        assert store.restore() is False
        assert store.access_token is None

    def test_restore_unreadable_storage(self):
        store = CredentialStore(ExplicitTokenBackend(failing_storage()))
        assert store.restore() is False

    def test_clear_wipes_session_and_storage(self, file_storage):
        store = CredentialStore(ExplicitTokenBackend(file_storage))
        store.start_session("tok1", "ref1", {'id': 'u1'})

        store.clear()

        assert store.access_token is None
        assert store.session.user is None
        assert file_storage.get(ACCESS_TOKEN_KEY) is None
        assert file_storage.get(REFRESH_TOKEN_KEY) is None
