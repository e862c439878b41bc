"""
Credential store and platform credential backends.

The credential store owns the in-memory ``Session``; the backend decides what
survives a restart and how the refresh credential reaches ``/auth/refresh``:

* ``ExplicitTokenBackend`` (native): both tokens are kept in durable storage
  and the refresh token is sent in the refresh request body.
* ``TransportCredentialBackend`` (web): the server keeps the refresh token in
  an http-only cookie; the cookie jar carries it and nothing is persisted.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from aiohttp import CookieJar

from cabledesk_client.auth.session import Session
from cabledesk_client.auth.token_storage import (
    SecureTokenStorage, ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
)
from cabledesk_shared.exceptions import TokenStorageError, ConfigurationError, ErrorCode
from cabledesk_shared.interfaces import ICredentialBackend
from cabledesk_shared.logging_config import mask_token
from cabledesk_shared.models import Platform

logger = logging.getLogger(__name__)


class ExplicitTokenBackend(ICredentialBackend):
    """Durable storage of both tokens; the refresh token travels in the body."""

    name = "explicit-token"

    def __init__(self, storage: SecureTokenStorage):
        self.storage = storage

    def refresh_payload(self) -> Dict[str, Any]:
        return {'refreshToken': self.storage.get(REFRESH_TOKEN_KEY)}

    def save_session(self, access_token: str, refresh_token: Optional[str]) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, access_token)
        # A login without a refresh token must not inherit the previous one
        if refresh_token:
            self.storage.set(REFRESH_TOKEN_KEY, refresh_token)
        else:
            self.storage.remove(REFRESH_TOKEN_KEY)

    def persist_access_token(self, access_token: str) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, access_token)

    def load_session(self) -> Dict[str, Optional[str]]:
        return {
            ACCESS_TOKEN_KEY: self.storage.get(ACCESS_TOKEN_KEY),
            REFRESH_TOKEN_KEY: self.storage.get(REFRESH_TOKEN_KEY),
        }

    def clear(self) -> None:
        # Attempt both keys even if the first one fails
        errors = []
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY):
            try:
                self.storage.remove(key)
            except TokenStorageError as e:
                errors.append(e)
        if errors:
            raise errors[0]


class TransportCredentialBackend(ICredentialBackend):
    """Cookie-carried refresh credential; nothing is written to disk."""

    name = "transport-credential"

    def __init__(self, cookie_jar: Optional[CookieJar] = None):
        self.cookie_jar = cookie_jar

    def refresh_payload(self) -> Dict[str, Any]:
        return {}

    def save_session(self, access_token: str, refresh_token: Optional[str]) -> None:
        pass

    def persist_access_token(self, access_token: str) -> None:
        pass

    def load_session(self) -> Dict[str, Optional[str]]:
        return {ACCESS_TOKEN_KEY: None, REFRESH_TOKEN_KEY: None}

    def clear(self) -> None:
        if self.cookie_jar is not None:
            self.cookie_jar.clear()


def create_credential_backend(
    platform: Platform,
    storage: Optional[SecureTokenStorage] = None,
    cookie_jar: Optional[CookieJar] = None
) -> ICredentialBackend:
    """
    Select the credential backend for the platform the client runs on.

    Args:
        platform: Configured platform
        storage: Durable storage (required for native)
        cookie_jar: Transport cookie jar (used by web)
    """
    if platform == Platform.NATIVE:
        return ExplicitTokenBackend(storage or SecureTokenStorage())
    if platform == Platform.WEB:
        return TransportCredentialBackend(cookie_jar)
    raise ConfigurationError(f"Unsupported platform: {platform!r}", ErrorCode.CONFIG_INVALID_VALUE,
                             config_key='client.platform')


class CredentialStore:
    """
    Owner of the current ``Session``.

    ``set_access_token`` is the only writer of the in-memory access token and
    never raises. ``persist`` and ``clear`` log storage failures instead of
    raising them; losing persistence only means logging in again.
    """

    def __init__(self, backend: ICredentialBackend, session: Optional[Session] = None):
        self.backend = backend
        self.session = session or Session()
        self._token_callbacks: List[Callable[[Optional[str]], None]] = []

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token

    def add_token_callback(self, callback: Callable[[Optional[str]], None]) -> None:
        """
        Add callback for access-token changes.

        Args:
            callback: Function called with the new token (None when cleared)
        """
        self._token_callbacks.append(callback)

    def _notify_token_change(self, token: Optional[str]) -> None:
        for callback in self._token_callbacks:
            try:
                callback(token)
            except Exception as e:
                logger.error(f"Error in token callback: {e}")

    def set_access_token(self, token: Optional[str]) -> None:
        self.session.access_token = token
        if token is not None:
            self.session.refreshed_at = datetime.now()
        logger.debug(f"Access token set: {mask_token(token)}")
        self._notify_token_change(token)

    def persist(self, token: str) -> None:
        try:
            self.backend.persist_access_token(token)
        except TokenStorageError as e:
            logger.warning(f"Could not persist access token ({self.backend.name}): {e}")

    def start_session(self, access_token: str, refresh_token: Optional[str] = None,
                      user: Optional[Dict[str, Any]] = None) -> Session:
        """Create the session issued by a successful login."""
        self.session.clear()
        self.session.refresh_token = refresh_token
        self.session.user = user
        self.session.created_at = datetime.now()
        self.set_access_token(access_token)
        try:
            self.backend.save_session(access_token, refresh_token)
        except TokenStorageError as e:
            logger.warning(f"Could not persist session ({self.backend.name}): {e}")
        return self.session

    def restore(self) -> bool:
        """
        Load a session persisted by an earlier run.

        Returns:
            True if an access token was restored
        """
        try:
            stored = self.backend.load_session()
        except TokenStorageError as e:
            logger.warning(f"Could not read persisted session: {e}")
            return False

        access_token = stored.get(ACCESS_TOKEN_KEY)
        if not access_token:
            return False

        self.session.refresh_token = stored.get(REFRESH_TOKEN_KEY)
        self.session.created_at = datetime.now()
        self.set_access_token(access_token)
        logger.info("Restored persisted session")
        return True

    def clear(self) -> None:
        self.session.clear()
        try:
            self.backend.clear()
        except TokenStorageError as e:
            logger.warning(f"Could not clear persisted credentials ({self.backend.name}): {e}")
        self._notify_token_change(None)
