"""
Token Manager for the CableDesk client.

This module provides login, logout and session restore on top of the API
client's credential store, plus read-only inspection of the access token.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from jose import jwt, JWTError

from cabledesk_shared.exceptions import CableDeskError, APIError, ErrorCode
from cabledesk_shared.logging_config import AuditLogger, mask_token
from cabledesk_shared.models import User

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Manages the authenticated session of one API client.

    Refresh is not scheduled here; an expired access token is refreshed by
    the client when the server rejects it.
    """

    def __init__(self, api_client):
        self.api_client = api_client
        self.store = api_client.store
        self.terminator = api_client.terminator
        self._audit = AuditLogger()

        self._auth_callbacks: List[Callable[[bool], None]] = []

        logger.info("Token manager initialized")

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    async def login(self, identifier: str, password: str) -> User:
        """
        Log in with an email address or contact number.

        Returns:
            The logged-in user

        Raises:
            APIError: Credentials rejected or response incomplete
            TransportFailure: Server unreachable
        """
        logger.info(f"Logging in as {identifier}")
        try:
            result = await self.api_client.login(identifier, password)
        except CableDeskError as e:
            self._audit.log_login(identifier, success=False, failure_reason=e.message)
            self._notify_auth_change(False)
            raise

        access_token = result.get('accessToken') if isinstance(result, dict) else None
        if not access_token:
            self._audit.log_login(identifier, success=False, failure_reason="no access token in response")
            raise APIError("Login response did not include an access token", status_code=200,
                           error_code=ErrorCode.API_INVALID_RESPONSE)

        user_data = result.get('user') or {}
        self.store.start_session(access_token, result.get('refreshToken'), user_data)
        self.terminator.rearm()

        user = User.from_api(user_data)
        self._audit.log_login(identifier, user_id=user.id, success=True)
        self._notify_auth_change(True)
        logger.info(f"Logged in as {user.name or identifier} ({mask_token(access_token)})")
        return user

    def restore_session(self) -> bool:
        """
        Load a session persisted by an earlier run.

        Returns:
            True if a stored access token was found
        """
        restored = self.store.restore()
        if restored:
            self.terminator.rearm()
            self._notify_auth_change(True)
        else:
            logger.info("No stored session found")
        return restored

    def logout(self) -> None:
        """
        Logout and clear authentication state.
        """
        logger.info("Logging out and clearing authentication state")
        user = self.store.session.user or {}
        self.store.clear()
        self._audit.log_logout(user.get('id'))
        self._notify_auth_change(False)

    def get_current_token(self) -> Optional[str]:
        return self.store.access_token

    def is_authenticated(self) -> bool:
        """Check whether an access token is held (it may still be expired)."""
        return self.store.access_token is not None

    def get_token_expiry(self, token: Optional[str] = None) -> Optional[datetime]:
        """
        Parse expiration time from the access token.

        Args:
            token: JWT string; defaults to the current access token

        Returns:
            Expiration datetime or None if not available
        """
        token = token or self.store.access_token
        if not token:
            return None
        try:
            # Decode without verification to get expiration
            payload = jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.warning(f"Failed to parse token expiration: {e}")
            return None

        exp = payload.get('exp')
        if exp is None:
            return None
        try:
            return datetime.fromtimestamp(exp)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Invalid exp claim in access token: {exp!r}")
            return None

    def get_status(self) -> Dict[str, Any]:
        """Summarize the session for display."""
        session = self.store.session
        expires_at = self.get_token_expiry()
        return {
            'authenticated': self.is_authenticated(),
            'credential_backend': self.store.backend.name,
            'user': session.user,
            'access_token': mask_token(session.access_token),
            'expires_at': expires_at.isoformat() if expires_at else None,
            'expired': bool(expires_at and expires_at <= datetime.now()),
            'refreshed_at': session.refreshed_at.isoformat() if session.refreshed_at else None,
            'refresh_count': self.api_client.coordinator.refresh_count,
            'terminated': self.terminator.terminated
        }
