"""
Core interfaces for the CableDesk client.

This module defines the abstract interfaces that the authentication core
consumes, so that the platform-specific pieces (durable storage, user
notices, navigation) can be swapped without touching the refresh flow.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

from cabledesk_shared.models import Platform


class ICredentialBackend(ABC):
    """Platform-specific handling of durable tokens and the refresh credential."""

    name: str = "abstract"

    @abstractmethod
    def refresh_payload(self) -> Dict[str, Any]:
        """Build the JSON body for ``POST /auth/refresh``."""
        pass

    @abstractmethod
    def save_session(self, access_token: str, refresh_token: Optional[str]) -> None:
        """Persist the tokens issued at login."""
        pass

    @abstractmethod
    def persist_access_token(self, access_token: str) -> None:
        """Persist a refreshed access token."""
        pass

    @abstractmethod
    def load_session(self) -> Dict[str, Optional[str]]:
        """Return previously persisted ``accessToken``/``refreshToken`` values."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all durable credential state."""
        pass


class INotifier(ABC):
    """Shows a short user-visible message."""

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        pass


class INavigator(ABC):
    """Moves the application to another entry point."""

    @abstractmethod
    def redirect(self, path: str) -> None:
        pass

    @property
    @abstractmethod
    def current_path(self) -> Optional[str]:
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_server_url(self) -> str:
        """Get API base URL."""
        pass

    @abstractmethod
    def get_platform(self) -> Platform:
        """Get the platform that selects the credential backend."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass
