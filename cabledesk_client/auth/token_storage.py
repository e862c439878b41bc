"""
Secure Token Storage for the CableDesk client.

This module provides durable storage for the ``accessToken`` and
``refreshToken`` keys using the system keyring, with an encrypted file as
fallback when no keyring backend is usable.
"""

import os
import json
import logging
import tempfile
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from cabledesk_shared.exceptions import TokenStorageError, ErrorCode

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"


class SecureTokenStorage:
    """
    Durable key/value storage for credentials.

    Uses the system keyring when available, falls back to a Fernet-encrypted
    JSON file. Every ``set``/``remove`` touches exactly one key and either
    fully happens or leaves the previous value in place.
    """

    def __init__(
        self,
        service_name: str = "cabledesk-client",
        storage_path: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        if use_keyring is None:
            use_keyring = self._check_keyring_availability()
        self.keyring_available = use_keyring
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'cabledesk'
        else:
            config_dir = Path.home() / '.cabledesk'

        return config_dir / 'credentials.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.keyring_available:
            stored_key = keyring.get_password(self.service_name, "encryption_key")
            if stored_key:
                self._encryption_key = stored_key.encode()
                return self._encryption_key
        elif self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()

        if self.keyring_available:
            keyring.set_password(self.service_name, "encryption_key", key.decode())
        else:
            self._write_private_file(self.key_path, key)

        self._encryption_key = key
        return key

    def _encrypt_data(self, data: str) -> bytes:
        return Fernet(self._get_encryption_key()).encrypt(data.encode())

    def _decrypt_data(self, encrypted_data: bytes) -> str:
        return Fernet(self._get_encryption_key()).decrypt(encrypted_data).decode()

    def _write_private_file(self, path: Path, payload: bytes) -> None:
        """Write ``payload`` to ``path`` atomically with 0600 permissions."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(payload)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _load_file(self) -> Dict[str, Any]:
        if not self.storage_path.exists():
            return {}
        try:
            return json.loads(self._decrypt_data(self.storage_path.read_bytes()))
        except (InvalidToken, ValueError) as e:
            raise TokenStorageError(
                f"Credential file is unreadable: {self.storage_path}",
                ErrorCode.STORAGE_READ_FAILED,
                cause=e
            )

    def _save_file(self, entries: Dict[str, Any]) -> None:
        if not entries:
            self.storage_path.unlink(missing_ok=True)
            return
        self._write_private_file(self.storage_path, self._encrypt_data(json.dumps(entries)))

    def set(self, key: str, value: str) -> None:
        """
        Store a credential.

        Args:
            key: Storage key (``accessToken`` or ``refreshToken``)
            value: Token value

        Raises:
            TokenStorageError: If the value could not be written
        """
        try:
            if self.keyring_available:
                keyring.set_password(self.service_name, key, value)
            else:
                entries = self._load_file()
                entries[key] = {'value': value, 'stored_at': datetime.now().isoformat()}
                self._save_file(entries)
            logger.debug(f"Stored credential '{key}'")
        except TokenStorageError:
            raise
        except (KeyringError, OSError) as e:
            raise TokenStorageError(f"Failed to store '{key}': {e}", ErrorCode.STORAGE_WRITE_FAILED,
                                    key=key, cause=e)

    def get(self, key: str) -> Optional[str]:
        """
        Retrieve a credential.

        Returns:
            The stored value or None if the key is absent

        Raises:
            TokenStorageError: If the storage could not be read
        """
        try:
            if self.keyring_available:
                return keyring.get_password(self.service_name, key)
            entry = self._load_file().get(key)
            return entry['value'] if entry else None
        except TokenStorageError:
            raise
        except (KeyringError, OSError) as e:
            raise TokenStorageError(f"Failed to read '{key}': {e}", ErrorCode.STORAGE_READ_FAILED,
                                    key=key, cause=e)

    def remove(self, key: str) -> bool:
        """
        Remove a credential.

        Returns:
            True if a value was removed, False if the key was absent

        Raises:
            TokenStorageError: If the storage could not be updated
        """
        try:
            if self.keyring_available:
                try:
                    keyring.delete_password(self.service_name, key)
                    return True
                except PasswordDeleteError:
                    return False

            entries = self._load_file()
            if key not in entries:
                return False
            del entries[key]
            self._save_file(entries)
            return True
        except TokenStorageError:
            raise
        except (KeyringError, OSError) as e:
            raise TokenStorageError(f"Failed to remove '{key}': {e}", ErrorCode.STORAGE_REMOVE_FAILED,
                                    key=key, cause=e)
