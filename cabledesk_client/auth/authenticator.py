"""
Attaches the current access token to outbound requests.
"""

from cabledesk_client.auth.credentials import CredentialStore
from cabledesk_client.auth.session import OutboundRequest

AUTHORIZATION_HEADER = "Authorization"


def bearer(token: str) -> str:
    return f"Bearer {token}"


class RequestAuthenticator:
    """Sets ``Authorization: Bearer <token>`` from the credential store, if any."""

    def __init__(self, store: CredentialStore):
        self.store = store

    def __call__(self, request: OutboundRequest) -> OutboundRequest:
        token = self.store.access_token
        if token:
            request.headers[AUTHORIZATION_HEADER] = bearer(token)
        else:
            request.headers.pop(AUTHORIZATION_HEADER, None)
        request.sent_with = token
        return request
