import json

import pytest
import requests

from accounts.credentials import CredentialStore
from accounts.providers import AuthSession, GoTrueClient
from accounts.tests.fakes import DictSession

NOW = 1_741_000_000


def _response(status, payload=None):
    r = requests.Response()
    r.status_code = status
    r._content = json.dumps(payload).encode() if payload is not None else b''
    return r


class FakeHTTP:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _token_payload(access='at-1', refresh='rt-1', **extra):
    payload = {'access_token': access, 'refresh_token': refresh, 'expires_in': 3600,
               'user': {'id': '0b7c1f7e-2d7e-4a55-9a3d-3c7f3b0c9a11', 'email': 'doc@example.com'}}
    payload.update(extra)
    return payload


@pytest.fixture
def store():
    return CredentialStore(DictSession())


def _client(store, *responses):
    http = FakeHTTP(*responses)
    client = GoTrueClient('https://auth.example.com/', 'anon-key', store, http=http, clock=lambda: NOW)
    return client, http


def test_sign_in_stores_session(store):
    client, http = _client(store, _response(200, _token_payload()))
    resp = client.sign_in_with_password('doc@example.com', 'secret')
    assert resp.error is None
    assert resp.session.expires_at == NOW + 3600
    assert store.load() == resp.session
    method, url, kwargs = http.calls[0]
    assert (method, url) == ('POST', 'https://auth.example.com/auth/v1/token')
    assert kwargs['params'] == {'grant_type': 'password'}
    assert kwargs['headers']['apikey'] == 'anon-key'


def test_expires_at_from_provider_wins(store):
    client, _ = _client(store, _response(200, _token_payload(expires_at=NOW + 60)))
    assert client.sign_in_with_password('doc@example.com', 'secret').session.expires_at == NOW + 60


def test_bad_credentials_are_returned_not_raised(store):
    client, _ = _client(store, _response(400, {'error': 'invalid_grant', 'error_description': 'Invalid login credentials'}))
    resp = client.sign_in_with_password('doc@example.com', 'wrong')
    assert resp.session is None
    assert resp.error.code == 'invalid_grant'
    assert resp.error.retryable is False
    assert store.load() is None


def test_network_failure_is_retryable(store):
    client, _ = _client(store, requests.ConnectionError('boom'))
    resp = client.sign_in_with_password('doc@example.com', 'secret')
    assert resp.error.code == 'network_error'
    assert resp.error.retryable is True


def test_provider_5xx_is_retryable(store):
    client, _ = _client(store, _response(503, {'msg': 'unavailable'}))
    store.save(AuthSession('at', 'rt', NOW + 100))
    resp = client.get_user()
    assert resp.error.status == 503
    assert resp.error.retryable


def test_get_user_without_session(store):
    client, http = _client(store)
    resp = client.get_user()
    assert resp.error.code == 'session_missing'
    assert http.calls == []


def test_get_user_sends_bearer(store):
    store.save(AuthSession('at-9', 'rt-9', NOW + 100))
    client, http = _client(store, _response(200, {'id': 'u-1'}))
    assert client.get_user().user == {'id': 'u-1'}
    assert http.calls[0][2]['headers']['Authorization'] == 'Bearer at-9'


def test_refresh_replaces_stored_session(store):
    store.save(AuthSession('at-1', 'rt-1', NOW + 10))
    client, http = _client(store, _response(200, _token_payload(access='at-2', refresh='rt-2')))
    resp = client.refresh_session()
    assert store.load().access_token == 'at-2'
    assert http.calls[0][2]['json'] == {'refresh_token': 'rt-1'}
    assert resp.session.expires_at == NOW + 3600


def test_failed_refresh_keeps_stored_session(store):
    original = AuthSession('at-1', 'rt-1', NOW + 10)
    store.save(original)
    client, _ = _client(store, _response(400, {'error_code': 'refresh_token_not_found'}))
    resp = client.refresh_session()
    assert resp.error.code == 'refresh_token_not_found'
    assert store.load() == original


def test_sign_out_clears_local_session_even_if_provider_fails(store):
    store.save(AuthSession('at-1', 'rt-1', NOW + 10))
    client, _ = _client(store, requests.Timeout('slow'))
    resp = client.sign_out()
    assert resp.error.code == 'network_error'
    assert store.load() is None


def test_sign_up_returns_user_without_storing(store):
    client, _ = _client(store, _response(200, {'id': 'new-user', 'email': 'p@example.com'}))
    resp = client.sign_up('p@example.com', 'password1', {'role': 'patient'})
    assert resp.user['id'] == 'new-user'
    assert store.load() is None


def test_malformed_mirror_is_discarded():
    session = DictSession({CredentialStore.SESSION_KEY: {'refresh_token': 'x'}})
    store = CredentialStore(session)
    assert store.load() is None
    assert CredentialStore.SESSION_KEY not in session
