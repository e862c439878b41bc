"""
HTTP API Client for the CableDesk client.

This module provides the authenticated HTTP client for the billing back end.
Every authenticated call carries the current bearer token and goes through the
refresh coordinator, which transparently refreshes an expired access token and
replays the call once.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Union
from urllib.parse import urlsplit

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError, CookieJar

from cabledesk_client.auth.authenticator import RequestAuthenticator, AUTHORIZATION_HEADER, bearer
from cabledesk_client.auth.credentials import CredentialStore, create_credential_backend
from cabledesk_client.auth.refresh import RefreshCoordinator
from cabledesk_client.auth.session import OutboundRequest, RefreshOutcome
from cabledesk_client.auth.terminator import SessionTerminator, DEFAULT_LOGIN_PATH
from cabledesk_client.auth.token_storage import SecureTokenStorage
from cabledesk_shared.exceptions import (
    AuthorizationFailure, APIError, TransportFailure, ErrorCode
)
from cabledesk_shared.interfaces import ICredentialBackend, INotifier, INavigator
from cabledesk_shared.models import Platform

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh"
LOGIN_PATH = "/auth/login"


class CableDeskAPIClient:
    """
    HTTP API client for the CableDesk billing back end.

    Owns the aiohttp session, the cookie jar, the credential store and the
    refresh coordinator. Use as an async context manager or call ``close()``.
    """

    def __init__(
        self,
        base_url: str,
        platform: Platform = Platform.WEB,
        timeout: float = 30.0,
        storage: Optional[SecureTokenStorage] = None,
        backend: Optional[ICredentialBackend] = None,
        notifier: Optional[INotifier] = None,
        navigator: Optional[INavigator] = None,
        login_path: str = DEFAULT_LOGIN_PATH
    ):
        self.base_url = (base_url or "").rstrip('/')
        if not self.base_url:
            raise ValueError("CableDeskAPIClient requires 'base_url'")
        if urlsplit(self.base_url).scheme not in ('http', 'https'):
            raise ValueError(f"base_url must start with http:// or https://, got: {self.base_url!r}")

        self.platform = platform
        self.timeout = ClientTimeout(total=timeout)

        # unsafe=True keeps cookies for bare-IP hosts
        self.cookie_jar = CookieJar(unsafe=True)
        self.backend = backend or create_credential_backend(platform, storage, self.cookie_jar)
        self.store = CredentialStore(self.backend)
        self.authenticator = RequestAuthenticator(self.store)
        self.terminator = SessionTerminator(self.store, notifier, navigator, login_path)
        self.coordinator = RefreshCoordinator(
            self.store, self.terminator, self._send, self._call_refresh_endpoint
        )

        self.default_headers: Dict[str, str] = {
            'Accept': 'application/json',
            'User-Agent': 'CableDeskClient/1.0'
        }
        self.store.add_token_callback(self._on_token_change)

        self._session: Optional[ClientSession] = None
        self._closed = False

        logger.info(f"API client initialized for {self.base_url} ({self.backend.name} credentials)")

    @classmethod
    def from_config(cls, config, **kwargs) -> 'CableDeskAPIClient':
        """Build a client from a ``ClientConfiguration``."""
        platform = config.get_platform()
        storage = None
        if platform == Platform.NATIVE:
            storage = SecureTokenStorage(
                service_name=config.get_keyring_service(),
                storage_path=config.get_token_file(),
                use_keyring=config.get_use_keyring()
            )
        return cls(
            base_url=config.get_server_url(),
            platform=platform,
            timeout=config.get_server_timeout(),
            storage=storage,
            login_path=config.get_login_path(),
            **kwargs
        )

    async def __aenter__(self) -> 'CableDeskAPIClient':
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._closed:
            raise RuntimeError("CableDeskAPIClient is closed")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                cookie_jar=self.cookie_jar
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _on_token_change(self, token: Optional[str]) -> None:
        if token:
            self.default_headers[AUTHORIZATION_HEADER] = bearer(token)
        else:
            self.default_headers.pop(AUTHORIZATION_HEADER, None)

    def _url(self, path: str) -> str:
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_error_detail(self, response: aiohttp.ClientResponse) -> str:
        """Extract the server's error message from a failed response."""
        try:
            data = await response.json(content_type=None)
            if isinstance(data, dict):
                return str(data.get('message') or data.get('detail') or data)
            return str(data)
        except (ValueError, ClientError):
            text = await response.text()
            return text or response.reason or "Unknown error"

    async def _read_body(self, response: aiohttp.ClientResponse, expect: str) -> Any:
        if expect == "bytes":
            return await response.read()
        if expect == "text":
            return await response.text()

        raw = await response.read()
        if not raw.strip():
            return {}
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise APIError(
                f"Invalid JSON in response from {response.url}",
                status_code=response.status,
                error_code=ErrorCode.API_INVALID_RESPONSE,
                cause=e
            )

    async def _send(self, request: OutboundRequest, authenticate: bool = True) -> Any:
        """
        Send one request with the current credentials.

        Raises:
            AuthorizationFailure: HTTP 401
            APIError: Any other non-2xx status
            TransportFailure: Connection error or timeout
        """
        await self._ensure_session()
        if authenticate:
            self.authenticator(request)

        data = request.data() if callable(request.data) else request.data
        headers = {**self.default_headers, **request.headers}
        if not authenticate:
            headers.pop(AUTHORIZATION_HEADER, None)

        logger.debug(f"{request.method} {request.url}{' (replay)' if request.retried else ''}")
        try:
            async with self._session.request(
                method=request.method,
                url=request.url,
                params=request.params,
                json=request.json,
                data=data,
                headers=headers
            ) as response:
                if 200 <= response.status < 300:
                    return await self._read_body(response, request.expect)

                detail = await self._get_error_detail(response)
                context = {'method': request.method, 'url': request.url}
                if response.status == 401:
                    raise AuthorizationFailure(f"Unauthorized: {detail}", detail=detail, context=context)
                raise APIError(
                    f"Request failed ({response.status}): {detail}",
                    status_code=response.status,
                    detail=detail,
                    context=context
                )

        except asyncio.TimeoutError as e:
            raise TransportFailure(f"{request.method} {request.url} timed out",
                                   ErrorCode.NETWORK_TIMEOUT, cause=e)
        except ClientError as e:
            raise TransportFailure(f"{request.method} {request.url} failed: {e}",
                                   ErrorCode.NETWORK_CONNECTION_FAILED, cause=e)

    async def _call_refresh_endpoint(self, payload: Dict[str, Any]) -> RefreshOutcome:
        """POST the refresh body; report the outcome without raising."""
        await self._ensure_session()
        url = self._url(REFRESH_PATH)
        headers = {k: v for k, v in self.default_headers.items() if k != AUTHORIZATION_HEADER}

        try:
            async with self._session.post(url, json=payload, headers=headers) as response:
                if not 200 <= response.status < 300:
                    detail = await self._get_error_detail(response)
                    return RefreshOutcome.failure(
                        f"refresh endpoint returned {response.status}: {detail}", response.status
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            return RefreshOutcome.failure("refresh request timed out")
        except (ClientError, ValueError) as e:
            return RefreshOutcome.failure(f"refresh request failed: {e}")

        token = data.get('accessToken') if isinstance(data, dict) else None
        if not token:
            return RefreshOutcome.failure("refresh response did not include an access token", response.status)
        return RefreshOutcome.success(token)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Any] = None,
        expect: str = "json",
        authenticated: bool = True
    ) -> Any:
        """
        Make an API request.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            params: Query parameters (None values are dropped)
            json: JSON body
            data: Raw body, or a zero-argument callable building a fresh body
                for each send (needed for multipart uploads that get replayed)
            expect: ``json``, ``text`` or ``bytes``
            authenticated: False for calls that must not carry or refresh
                credentials (login)

        Returns:
            Decoded response body
        """
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}
        outbound = OutboundRequest(
            method=method.upper(),
            url=self._url(path),
            params=params or None,
            json=json,
            data=data,
            expect=expect
        )
        if not authenticated:
            return await self._send(outbound, authenticate=False)
        return await self.coordinator.execute(outbound)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, expect: str = "json") -> Any:
        return await self.request('GET', path, params=params, expect=expect)

    async def post(self, path: str, json: Optional[Any] = None, data: Optional[Any] = None) -> Any:
        return await self.request('POST', path, json=json, data=data)

    async def put(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PUT', path, json=json)

    async def patch(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PATCH', path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request('DELETE', path)

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        """
        Exchange credentials for tokens.

        ``identifier`` is an email address or a contact number. A 401 here
        means bad credentials and is never treated as an expired session.
        """
        field = 'email' if '@' in identifier else 'contactNumber'
        return await self.request(
            'POST', LOGIN_PATH,
            json={field: identifier, 'password': password},
            authenticated=False
        )

    def is_authenticated(self) -> bool:
        return self.store.access_token is not None

    def build_form(self, field: str, filename: str, content: Union[bytes, str],
                   content_type: str) -> aiohttp.FormData:
        """Build a single-file multipart body."""
        form = aiohttp.FormData()
        form.add_field(field, content, filename=filename, content_type=content_type)
        return form
