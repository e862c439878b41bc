"""
Refresh coordination for the authenticated API client.

Every API call runs through ``RefreshCoordinator.execute``:

    send ──ok──────────────────────────────────────────▶ result
      │
      └─401 (not retried)─▶ refresh ──ok──▶ replay once ▶ result / error
                              │
                              └─fail──▶ terminate session ▶ RefreshFailure

A 401 on a request that was already replayed is returned as-is. Concurrent
401s share a single in-flight refresh.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from cabledesk_client.auth.credentials import CredentialStore
from cabledesk_client.auth.session import OutboundRequest, RefreshOutcome
from cabledesk_client.auth.terminator import SessionTerminator
from cabledesk_shared.exceptions import AuthorizationFailure, RefreshFailure, CableDeskError
from cabledesk_shared.logging_config import AuditLogger, mask_token

logger = logging.getLogger(__name__)

SendFn = Callable[[OutboundRequest], Awaitable[Any]]
RefreshFn = Callable[[Dict[str, Any]], Awaitable[RefreshOutcome]]


class RefreshCoordinator:
    """
    Runs requests and recovers from an expired access token.

    Args:
        store: Credential store holding the session
        terminator: Called when a refresh fails
        send: Sends one request with current credentials; raises
            ``AuthorizationFailure`` on HTTP 401
        refresh_call: Calls the refresh endpoint with the given body and
            reports the outcome without raising
    """

    def __init__(
        self,
        store: CredentialStore,
        terminator: SessionTerminator,
        send: SendFn,
        refresh_call: RefreshFn
    ):
        self.store = store
        self.terminator = terminator
        self._send = send
        self._refresh_call = refresh_call
        self._inflight: Optional[asyncio.Future] = None
        self._audit = AuditLogger()

        self.refresh_count = 0

    @property
    def refresh_in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def execute(self, request: OutboundRequest) -> Any:
        """
        Send ``request``, refreshing and replaying once on HTTP 401.

        Raises:
            AuthorizationFailure: The request was already retried, or the
                replay itself was rejected
            RefreshFailure: The access token could not be refreshed
            TransportFailure / APIError: Passed through from ``send``
        """
        try:
            return await self._send(request)
        except AuthorizationFailure:
            if request.retried:
                logger.warning(f"{request.method} {request.url} rejected after replay; giving up")
                raise
            request.mark_retried()

        if self._token_changed_since(request):
            logger.debug(f"Access token already refreshed; replaying {request.method} {request.url}")
        else:
            await self.refresh()

        logger.debug(f"Replaying {request.method} {request.url}")
        return await self._send(request)

    def _token_changed_since(self, request: OutboundRequest) -> bool:
        current = self.store.access_token
        return current is not None and current != request.sent_with

    async def refresh(self) -> str:
        """
        Obtain a new access token, joining a refresh already in flight.

        Returns:
            The new access token

        Raises:
            RefreshFailure: The refresh was rejected or could not be sent
        """
        if self.terminator.terminated:
            raise RefreshFailure("Session already terminated")

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run_refresh())
            self._inflight.add_done_callback(self._refresh_done)
        else:
            logger.debug("Joining in-flight token refresh")

        # A cancelled caller must not cancel the refresh other callers wait on
        return await asyncio.shield(self._inflight)

    def _refresh_done(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled():
            # Retrieve so an unawaited failure is not reported as unhandled
            future.exception()

    async def _run_refresh(self) -> str:
        self.refresh_count += 1
        logger.info("Refreshing access token")

        try:
            outcome = await self._refresh_call(self.store.backend.refresh_payload())
        except CableDeskError as e:
            outcome = RefreshOutcome.failure(str(e), getattr(e, 'status_code', None))

        if not outcome.succeeded:
            reason = outcome.reason or "refresh rejected"
            logger.error(f"Access token refresh failed: {reason}")
            self._audit.log_refresh(False, reason)
            self.terminator.terminate(reason)
            raise RefreshFailure(f"Token refresh failed: {reason}", status_code=outcome.status_code)

        token = outcome.access_token
        self.store.set_access_token(token)
        self.store.persist(token)
        self._audit.log_refresh(True)
        logger.info(f"Access token refreshed: {mask_token(token)}")
        return token
