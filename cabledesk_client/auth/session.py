"""
Session state and request records for the authenticated API client.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass
class Session:
    """
    Credentials of the logged-in user.

    Created at login, mutated only through the credential store, destroyed on
    logout or when a refresh fails.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.access_token is not None

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self.created_at = None
        self.refreshed_at = None


@dataclass
class OutboundRequest:
    """
    One logical API call.

    ``retried`` flips to True at most once, when the call is replayed after a
    refresh. ``sent_with`` records the access token attached on the last send.
    """
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    json: Optional[Any] = None
    data: Optional[Any] = None
    expect: str = "json"
    retried: bool = False
    sent_with: Optional[str] = None

    def mark_retried(self) -> None:
        if self.retried:
            raise RuntimeError(f"{self.method} {self.url} was already retried")
        self.retried = True


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of one refresh call: either a new access token or a failure reason."""
    access_token: Optional[str] = None
    reason: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.access_token is not None

    @classmethod
    def success(cls, access_token: str) -> 'RefreshOutcome':
        return cls(access_token=access_token)

    @classmethod
    def failure(cls, reason: str, status_code: Optional[int] = None) -> 'RefreshOutcome':
        return cls(reason=reason, status_code=status_code)
