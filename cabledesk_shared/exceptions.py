"""
Exception hierarchy for the CableDesk client.

Every error raised by the client derives from ``CableDeskError`` and carries
an ``ErrorCode``, a severity, a context dict and recovery hints, so the API
client, the authentication core and the CLI report failures the same way.

Only ``AuthorizationFailure`` is recovered automatically (by refreshing the
access token and replaying the call once). ``RefreshFailure`` ends the
session; everything else reaches the caller unchanged.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


class ErrorCode(Enum):
    # Authentication (1000-1099)
    AUTH_UNAUTHORIZED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_NOT_LOGGED_IN = "AUTH_1003"
    AUTH_LOGIN_FAILED = "AUTH_1004"
    AUTH_FORBIDDEN = "AUTH_1005"

    # Transport (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # Server responses (3000-3099)
    API_BAD_REQUEST = "API_3001"
    API_NOT_FOUND = "API_3002"
    API_CONFLICT = "API_3003"
    API_SERVER_ERROR = "API_3004"
    API_UNEXPECTED_STATUS = "API_3005"
    API_INVALID_RESPONSE = "API_3006"

    # Input (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_4002"
    VALIDATION_VALUE_OUT_OF_RANGE = "VALIDATION_4004"

    # Durable credential storage (5000-5099)
    STORAGE_WRITE_FAILED = "STORAGE_5001"
    STORAGE_READ_FAILED = "STORAGE_5002"
    STORAGE_REMOVE_FAILED = "STORAGE_5003"

    # Configuration (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8003"
    CONFIG_INVALID_VALUE = "CONFIG_8004"
    CONFIG_WRITE_FAILED = "CONFIG_8005"

    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """What the caller (or the user) can do about an error."""
    RETRY = "retry"
    RECONNECT = "reconnect"
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


def _context(base: Optional[Dict[str, Any]], **items: Any) -> Dict[str, Any]:
    """Copy ``base`` and add the non-None ``items``."""
    merged = dict(base or {})
    merged.update({k: v for k, v in items.items() if v is not None})
    return merged


class CableDeskError(Exception):
    """
    Base class for client errors.

    Attributes:
        message: Technical description, used in logs
        user_message: Text suitable for showing to an operator
        error_code: ``ErrorCode`` member
        severity: ``ErrorSeverity`` member
        context: Extra details (status code, URL, config key, ...)
        recovery_actions: Suggested ``RecoveryAction`` values
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.error_code = error_code
        self.severity = severity
        self.recovery_actions = list(recovery_actions or [])
        self.cause = cause
        self.timestamp = datetime.now()

        self.context = dict(context or {})
        if cause is not None:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON output and structured logs."""
        cause = None
        if self.cause is not None:
            cause = {'type': self.context.get('cause_type'), 'message': self.context.get('cause_message')}
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': cause
            }
        }


class AuthorizationFailure(CableDeskError):
    """An API call was rejected with HTTP 401 (missing or expired access token)."""

    def __init__(self, message: str = "Unauthorized", status_code: int = 401,
                 detail: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            kwargs.pop('error_code', ErrorCode.AUTH_UNAUTHORIZED),
            severity=ErrorSeverity.HIGH,
            context=_context(kwargs.pop('context', None), status_code=status_code),
            recovery_actions=[RecoveryAction.REFRESH_TOKEN],
            **kwargs
        )
        self.status_code = status_code
        self.detail = detail


class RefreshFailure(CableDeskError):
    """The refresh endpoint rejected the refresh or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault('user_message', "Your session has expired. Please log in again.")
        super().__init__(
            message,
            ErrorCode.AUTH_REFRESH_FAILED,
            severity=ErrorSeverity.HIGH,
            context=_context(kwargs.pop('context', None), status_code=status_code),
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            **kwargs
        )
        self.status_code = status_code


class TransportFailure(CableDeskError):
    """Network-level failure (connection refused, DNS, timeout)."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message,
            error_code,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.RECONNECT],
            **kwargs
        )


class APIError(CableDeskError):
    """The server answered with a non-2xx status other than 401."""

    def __init__(self, message: str, status_code: int, detail: Optional[str] = None, **kwargs):
        server_side = status_code >= 500
        kwargs.setdefault('user_message', detail or message)
        super().__init__(
            message,
            kwargs.pop('error_code', error_code_for_status(status_code)),
            severity=ErrorSeverity.HIGH if server_side else ErrorSeverity.MEDIUM,
            context=_context(kwargs.pop('context', None), status_code=status_code),
            recovery_actions=[RecoveryAction.RETRY if server_side else RecoveryAction.USER_INTERVENTION],
            **kwargs
        )
        self.status_code = status_code
        self.detail = detail


class NotLoggedInError(CableDeskError):
    """An operation needs a session but none exists."""

    def __init__(self, message: str = "Not logged in", **kwargs):
        super().__init__(
            message,
            ErrorCode.AUTH_NOT_LOGGED_IN,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            **kwargs
        )


class ValidationError(CableDeskError):
    """Bad input to a billing operation, caught before any request is sent."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT),
            severity=kwargs.pop('severity', ErrorSeverity.LOW),
            context=_context(kwargs.pop('context', None), field_name=field_name),
            recovery_actions=kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION]),
            **kwargs
        )


class TokenStorageError(CableDeskError):
    """Durable credential storage failed to read, write or remove a key."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
                 key: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code,
            severity=ErrorSeverity.LOW,
            context=_context(kwargs.pop('context', None), key=key),
            recovery_actions=[RecoveryAction.IGNORE],
            **kwargs
        )


class ConfigurationError(CableDeskError):
    """Missing, unreadable or invalid client configuration."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code,
            severity=ErrorSeverity.HIGH,
            context=_context(kwargs.pop('context', None), config_key=config_key),
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


_STATUS_CODES = {
    400: ErrorCode.API_BAD_REQUEST,
    401: ErrorCode.AUTH_UNAUTHORIZED,
    403: ErrorCode.AUTH_FORBIDDEN,
    404: ErrorCode.API_NOT_FOUND,
    409: ErrorCode.API_CONFLICT,
}


def error_code_for_status(status_code: int) -> ErrorCode:
    """Map an HTTP status code to the matching error code."""
    if status_code in _STATUS_CODES:
        return _STATUS_CODES[status_code]
    return ErrorCode.API_SERVER_ERROR if status_code >= 500 else ErrorCode.API_UNEXPECTED_STATUS


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> CableDeskError:
    """
    Wrap a standard-library exception in the matching ``CableDeskError``.

    ``CableDeskError`` instances are returned unchanged.
    """
    if isinstance(exception, CableDeskError):
        return exception

    message = str(exception)
    if isinstance(exception, TimeoutError):
        return TransportFailure(message or "Request timed out", ErrorCode.NETWORK_TIMEOUT,
                                context=context, cause=exception)
    if isinstance(exception, ConnectionError):
        return TransportFailure(message, ErrorCode.NETWORK_CONNECTION_FAILED,
                                context=context, cause=exception)
    if isinstance(exception, FileNotFoundError):
        return ConfigurationError(message, ErrorCode.CONFIG_FILE_NOT_FOUND,
                                  context=context, cause=exception)
    if isinstance(exception, ValueError):
        return ValidationError(message, context=context, cause=exception)

    return CableDeskError(message, default_error_code, context=context, cause=exception)
