"""
Tests for session records and the request authenticator.
"""

import pytest

from cabledesk_client.auth.authenticator import RequestAuthenticator, AUTHORIZATION_HEADER
from cabledesk_client.auth.credentials import CredentialStore, TransportCredentialBackend
from cabledesk_client.auth.session import Session, OutboundRequest, RefreshOutcome


class TestSession:
    def test_new_session_is_inactive(self):
        assert Session().is_active is False

    def test_clear_drops_everything(self):
        session = Session(access_token="tok1", refresh_token="ref1", user={'id': 'u1'})
        assert session.is_active

        session.clear()

        assert session.access_token is None
        assert session.refresh_token is None
        assert session.user is None
        assert session.is_active is False


class TestOutboundRequest:
    def test_mark_retried_only_once(self):
        request = OutboundRequest(method="GET", url="http://billing.test/api/customers")
        assert request.retried is False

        request.mark_retried()
        assert request.retried is True

        with pytest.raises(RuntimeError):
            request.mark_retried()

    def test_headers_are_per_request(self):
        first = OutboundRequest(method="GET", url="/a")
        second = OutboundRequest(method="GET", url="/b")
        first.headers['X-Test'] = '1'
        assert second.headers == {}


class TestRefreshOutcome:
    def test_success(self):
        outcome = RefreshOutcome.success("tok2")
        assert outcome.succeeded
        assert outcome.access_token == "tok2"
        assert outcome.reason is None

    def test_failure(self):
        outcome = RefreshOutcome.failure("refresh endpoint returned 403", 403)
        assert not outcome.succeeded
        assert outcome.status_code == 403


class TestRequestAuthenticator:
    """Header attachment from the credential store."""

    @pytest.fixture
    def store(self):
        return CredentialStore(TransportCredentialBackend())

    def test_attaches_exact_bearer_header(self, store):
        store.set_access_token("tok1")
        request = RequestAuthenticator(store)(OutboundRequest(method="GET", url="/customers"))

        assert request.headers[AUTHORIZATION_HEADER] == "Bearer tok1"
        assert request.sent_with == "tok1"

    def test_uses_token_current_at_send_time(self, store):
        authenticator = RequestAuthenticator(store)
        request = OutboundRequest(method="GET", url="/customers")
        store.set_access_token("tok1")
        authenticator(request)

        store.set_access_token("tok2")
        authenticator(request)

        assert request.headers[AUTHORIZATION_HEADER] == "Bearer tok2"
        assert request.sent_with == "tok2"

    def test_no_token_removes_header(self, store):
        request = OutboundRequest(method="GET", url="/customers",
                                  headers={AUTHORIZATION_HEADER: "Bearer stale"})

        RequestAuthenticator(store)(request)

        assert AUTHORIZATION_HEADER not in request.headers
        assert request.sent_with is None
