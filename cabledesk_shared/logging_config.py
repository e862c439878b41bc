"""
Logging configuration for the CableDesk client.

Log records may carry two structured attachments, which the formatters below
render:

* ``error_info``: a ``CableDeskError`` (see ``log_structured_error``)
* ``audit_info``: an authentication lifecycle event (see ``AuditLogger``)

Access and refresh tokens must never be logged in full; use ``mask_token``.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional

from cabledesk_shared.exceptions import CableDeskError

AUDIT_LOGGER_NAME = "cabledesk.audit"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Authentication lifecycle events."""
    LOGIN = "login"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    SESSION_TERMINATED = "session_terminated"


# Attributes every LogRecord has; anything else was passed through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime', 'error_info', 'audit_info', 'taskName'
}


def mask_token(token: Optional[str], visible_chars: int = 6) -> str:
    """Mask a credential, keeping a short prefix for correlation."""
    if not token:
        return "<none>"
    if len(token) <= visible_chars:
        return "***"
    return f"{token[:visible_chars]}...({len(token)} chars)"


def _error_fields(error: CableDeskError) -> Dict[str, Any]:
    return {
        'code': error.error_code.value,
        'severity': error.severity.value,
        'context': error.context,
        'recovery_actions': [action.value for action in error.recovery_actions],
        'user_message': error.user_message
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
            'pid': os.getpid()
        }

        if record.exc_info and record.exc_info[0]:
            entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        error = getattr(record, 'error_info', None)
        if isinstance(error, CableDeskError):
            entry['error'] = _error_fields(error)

        audit = getattr(record, 'audit_info', None)
        if audit is not None:
            entry['audit'] = audit

        if self.include_extra_fields:
            extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
            if extra:
                entry['extra'] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """Multi-line human-readable output with error and audit details."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)-18s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        lines = [super().format(record)]

        error = getattr(record, 'error_info', None)
        if isinstance(error, CableDeskError):
            lines.append(f"  Error Code: {error.error_code.value} ({error.severity.value})")
            if error.context:
                lines.append(f"  Context: {json.dumps(error.context, default=str)}")

        audit = getattr(record, 'audit_info', None)
        if audit is not None:
            lines.append(f"  Audit: {json.dumps(audit, default=str)}")

        return "\n".join(lines)


class AuditLogger:
    """
    Records login, logout, refresh and termination events.

    Events go to the ``cabledesk.audit`` logger at INFO level with an
    ``audit_info`` dict of ``event_type``, ``timestamp``, ``result`` and
    ``context``, plus ``user_id`` when known.
    """

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME):
        self.logger = logging.getLogger(logger_name)

    def _record(self, event: AuditEventType, message: str, result: str,
                user_id: Optional[str] = None, **context: Any) -> None:
        audit_info: Dict[str, Any] = {
            'event_type': event.value,
            'timestamp': datetime.now().isoformat(),
            'result': result,
            'context': {k: v for k, v in context.items() if v is not None}
        }
        if user_id is not None:
            audit_info['user_id'] = user_id
        self.logger.info(message, extra={'audit_info': audit_info})

    def log_login(self, identifier: str, user_id: Optional[str] = None, success: bool = True,
                  failure_reason: Optional[str] = None) -> None:
        outcome = "success" if success else "failure"
        self._record(AuditEventType.LOGIN, f"Login {outcome} for {identifier}", outcome,
                     user_id=user_id, identifier=identifier, failure_reason=failure_reason)

    def log_logout(self, user_id: Optional[str] = None) -> None:
        self._record(AuditEventType.LOGOUT, "User logged out", "success", user_id=user_id)

    def log_refresh(self, success: bool, failure_reason: Optional[str] = None) -> None:
        outcome = "success" if success else "failure"
        self._record(AuditEventType.TOKEN_REFRESH, f"Access token refresh {outcome}", outcome,
                     failure_reason=failure_reason)

    def log_termination(self, reason: Optional[str] = None) -> None:
        self._record(AuditEventType.SESSION_TERMINATED, "Session terminated", "terminated",
                     reason=reason)


def _build_formatter(log_format: LogFormat) -> logging.Formatter:
    if log_format == LogFormat.JSON:
        return StructuredFormatter()
    if log_format == LogFormat.DETAILED:
        return DetailedFormatter()
    return logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = DEFAULT_MAX_BYTES,
    backup_count: int = 5,
    enable_console: bool = True
) -> Dict[str, logging.Logger]:
    """
    Replace the root logger's handlers.

    Console output goes to stderr; stdout is reserved for command output.
    ``log_file`` adds a rotating file handler with the same format.

    Returns:
        The root, api, auth and audit loggers by short name
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(log_level.value)

    formatter = _build_formatter(log_format)

    if enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'
        )
        rotating.setFormatter(formatter)
        root_logger.addHandler(rotating)

    return {
        'root': root_logger,
        'api': logging.getLogger('cabledesk_client.api_client'),
        'auth': logging.getLogger('cabledesk_client.auth'),
        'audit': logging.getLogger(AUDIT_LOGGER_NAME)
    }


def log_structured_error(logger: logging.Logger, error: CableDeskError) -> None:
    """Log ``error`` at ERROR level with its code and context attached."""
    logger.error(error.message, extra={'error_info': error})
