"""
Client configuration.

Values are looked up in this order: ``set_override`` (command line), the
``CABLEDESK_*`` environment variables, the INI file, then ``DEFAULTS``. Keys
use ``section.name`` notation, e.g. ``server.url``.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from configparser import ConfigParser, Error as ConfigParserError

from cabledesk_shared.exceptions import ConfigurationError, ErrorCode
from cabledesk_shared.interfaces import IConfigurationManager
from cabledesk_shared.models import Platform

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = '.cabledesk'
CONFIG_FILE_NAME = 'client.conf'

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'server': {'url': 'http://localhost:5000/api', 'timeout': 30.0},
    'client': {
        'platform': Platform.NATIVE.value,
        'login_path': '/login',
        'service_name': 'cabledesk-client',
    },
    'storage': {'token_file': None, 'use_keyring': 'auto'},
    'logging': {
        'level': 'INFO',
        'format': 'standard',
        'file': None,
        'max_size': 10 * 1024 * 1024,
        'backup_count': 3,
    },
}

DEFAULT_CONFIG = """# CableDesk client settings ({config_path})

[server]
# Base URL of the billing API
url = http://localhost:5000/api
# Seconds before a request is abandoned
timeout = 30

[client]
# native keeps both tokens in the keyring or an encrypted file.
# web relies on the server's refresh cookie and stores nothing.
platform = native
# Entry point shown after the session ends
login_path = /login
service_name = cabledesk-client

[storage]
# Leave empty for ~/.cabledesk/credentials.enc (or $XDG_CONFIG_HOME/cabledesk)
token_file =
# auto | true | false
use_keyring = auto

[logging]
level = INFO
# standard | json | detailed
format = standard
file =
"""


def _split(key: str) -> Tuple[str, Optional[str]]:
    section, _, name = key.partition('.')
    return section, (name or None)


def _parse_ini_value(raw: str) -> Any:
    # Numbers and booleans are stored as JSON literals
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _format_ini_value(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class ClientConfiguration(IConfigurationManager):
    """Layered INI + environment configuration for the CableDesk client."""

    ENV_MAPPINGS = {
        'CABLEDESK_API_BASE_URL': 'server.url',
        'CABLEDESK_TIMEOUT': 'server.timeout',
        'CABLEDESK_PLATFORM': 'client.platform',
        'CABLEDESK_LOG_LEVEL': 'logging.level',
    }

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._ensure_user_config()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self._load_configuration()

    def _ensure_user_config(self) -> str:
        """Return ``~/.cabledesk/client.conf``, writing a commented template first if needed."""
        path = Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if path.exists():
            return str(path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG.format(config_path=path))
        except OSError as e:
            logger.error(f"Could not write default configuration to {path}: {e}")
            raise ConfigurationError(
                f"Cannot create configuration file {path}: {e}",
                ErrorCode.CONFIG_WRITE_FAILED,
                cause=e
            )
        logger.info(f"Wrote default configuration to {path}")
        return str(path)

    def _load_configuration(self) -> None:
        if not os.path.exists(self._config_file):
            logger.info(f"No configuration file at {self._config_file}, using defaults")
        else:
            try:
                self._read_file()
            except (ConfigParserError, OSError) as e:
                logger.warning(f"Ignoring unreadable configuration file {self._config_file}: {e}")
            else:
                logger.debug(f"Read configuration from {self._config_file}")

        self._apply_environment()
        self._apply_defaults()

    def _read_file(self) -> None:
        parser = ConfigParser()
        with open(self._config_file) as f:
            parser.read_file(f)
        for section in parser.sections():
            self._config_data[section] = {
                name: _parse_ini_value(raw) for name, raw in parser.items(section)
            }

    def _apply_environment(self) -> None:
        for env_var, key in self.ENV_MAPPINGS.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            value: Any = raw
            if key == 'server.timeout':
                try:
                    value = float(raw)
                except ValueError:
                    raise ConfigurationError(
                        f"{env_var} must be a number, got {raw!r}",
                        ErrorCode.CONFIG_INVALID_VALUE,
                        config_key=key
                    )
            self.set_config(key, value)

    def _apply_defaults(self) -> None:
        for section, values in DEFAULTS.items():
            current = self._config_data.setdefault(section, {})
            for name, value in values.items():
                current.setdefault(name, value)

    def get_config(self, key: str, default: Any = None) -> Any:
        """Look up ``section.name`` (or a whole section) ignoring overrides."""
        section, name = _split(key)
        if name is None:
            return self._config_data.get(section, default)
        return self._config_data.get(section, {}).get(name, default)

    def set_config(self, key: str, value: Any) -> None:
        section, name = _split(key)
        if name is None:
            self._config_data[section] = value
        else:
            self._config_data.setdefault(section, {})[name] = value

    def set_override(self, key: str, value: Any) -> None:
        """Pin ``key`` to ``value`` above every other source; ``None`` unpins it."""
        if value is None:
            self._overrides.pop(key, None)
        else:
            self._overrides[key] = value

    def _get(self, key: str, default: Any = None) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        value = self.get_config(key, default)
        # An empty INI value counts as unset
        return default if value == '' else value

    def save_configuration(self) -> None:
        """Write the file and environment layers (not overrides) back to the INI file."""
        parser = ConfigParser()
        for section, values in self._config_data.items():
            parser[section] = {name: _format_ini_value(v) for name, v in values.items()}

        path = Path(self._config_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                parser.write(f)
        except OSError as e:
            logger.error(f"Could not save configuration to {path}: {e}")
            raise ConfigurationError(
                f"Cannot write configuration file {path}: {e}",
                ErrorCode.CONFIG_WRITE_FAILED,
                cause=e
            )
        logger.info(f"Saved configuration to {path}")

    def get_all_config(self) -> Dict[str, Any]:
        return {section: dict(values) for section, values in self._config_data.items()}

    def get_config_file_path(self) -> str:
        return self._config_file

    def reload_configuration(self) -> None:
        self._config_data = {}
        self._load_configuration()
        logger.debug("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_server_url(self) -> str:
        """Get API base URL."""
        return str(self._get('server.url')).rstrip('/')

    def get_server_timeout(self) -> float:
        """Get server request timeout."""
        value = self._get('server.timeout', 30.0)
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid timeout: {value!r}", config_key='server.timeout')
        if timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {timeout}", config_key='server.timeout')
        return timeout

    def get_platform(self) -> Platform:
        """Get the platform that selects the credential backend."""
        value = self._get('client.platform', Platform.NATIVE.value)
        if isinstance(value, Platform):
            return value
        try:
            return Platform(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Invalid platform {value!r}; expected one of: "
                f"{', '.join(p.value for p in Platform)}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='client.platform'
            )

    def get_login_path(self) -> str:
        return self._get('client.login_path', '/login')

    def get_keyring_service(self) -> str:
        return self._get('client.service_name', 'cabledesk-client')

    def get_token_file(self) -> Optional[str]:
        """Get encrypted token file path (None for the default location)."""
        value = self._get('storage.token_file')
        return os.path.expanduser(value) if value else None

    def get_use_keyring(self) -> Optional[bool]:
        """Get keyring preference; None means use it when available."""
        value = self._get('storage.use_keyring', 'auto')
        if isinstance(value, bool):
            return value
        value = str(value).strip().lower()
        if value == 'auto':
            return None
        if value in ('true', 'yes', '1'):
            return True
        if value in ('false', 'no', '0'):
            return False
        raise ConfigurationError(f"Invalid use_keyring value: {value!r}", config_key='storage.use_keyring')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self._get('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self._get('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self._get('logging.file')

    def get_log_max_size(self) -> int:
        return int(self._get('logging.max_size', 10485760))

    def get_log_backup_count(self) -> int:
        return int(self._get('logging.backup_count', 3))
