"""
Session termination after an unrecoverable refresh failure.

Clears the credential store, tells the user once, and sends the application
back to the login entry point.
"""

import logging
import sys
from typing import Optional, Callable, List, TextIO

from cabledesk_client.auth.credentials import CredentialStore
from cabledesk_shared.interfaces import INotifier, INavigator
from cabledesk_shared.logging_config import AuditLogger

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
DEFAULT_LOGIN_PATH = "/login"


class ConsoleNotifier(INotifier):
    """Writes notices to a terminal stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def notify(self, message: str, level: str = "info") -> None:
        stream = self.stream or sys.stderr
        prefix = "✗" if level == "error" else "!"
        print(f"{prefix} {message}", file=stream)


class AppNavigator(INavigator):
    """Tracks the application's current entry point and reports changes."""

    def __init__(self, initial_path: Optional[str] = None):
        self._current_path = initial_path
        self._callbacks: List[Callable[[str], None]] = []

    @property
    def current_path(self) -> Optional[str]:
        return self._current_path

    def add_redirect_callback(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def redirect(self, path: str) -> None:
        logger.info(f"Redirecting to {path}")
        self._current_path = path
        for callback in self._callbacks:
            try:
                callback(path)
            except Exception as e:
                logger.error(f"Error in redirect callback: {e}")


class SessionTerminator:
    """
    Ends the session once per login.

    ``terminate`` is idempotent: after the first call it does nothing until
    ``rearm`` is called by the next successful login.
    """

    def __init__(
        self,
        store: CredentialStore,
        notifier: Optional[INotifier] = None,
        navigator: Optional[INavigator] = None,
        login_path: str = DEFAULT_LOGIN_PATH
    ):
        self.store = store
        self.notifier = notifier or ConsoleNotifier()
        self.navigator = navigator or AppNavigator()
        self.login_path = login_path
        self._terminated = False
        self._audit = AuditLogger()

    @property
    def terminated(self) -> bool:
        return self._terminated

    def rearm(self) -> None:
        self._terminated = False

    def terminate(self, reason: Optional[str] = None) -> None:
        if self._terminated:
            logger.debug("Session already terminated")
            return
        self._terminated = True

        logger.warning(f"Terminating session: {reason or 'refresh failed'}")
        self.store.clear()
        self._audit.log_termination(reason)

        try:
            self.notifier.notify(SESSION_EXPIRED_MESSAGE, level="error")
        except Exception as e:
            logger.error(f"Failed to show session expired notice: {e}")

        try:
            self.navigator.redirect(self.login_path)
        except Exception as e:
            logger.error(f"Failed to redirect to {self.login_path}: {e}")
