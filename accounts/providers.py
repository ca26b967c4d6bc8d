"""
Client for the hosted auth provider (GoTrue, the Supabase Auth server).

The provider owns credentials: it exchanges a password for a session,
refreshes it, resolves the user behind an access token and revokes it on
sign-out.  This module talks to its REST API with ``requests`` and keeps
the resulting session in a storage object supplied by the caller (see
``accounts.credentials.CredentialStore``).

Every public method returns an :class:`AuthResponse`; provider errors and
network failures are reported through ``AuthResponse.error`` and never
raised, mirroring the ``{data, error}`` shape of the provider SDKs.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    """A provider session: bearer credentials plus their absolute expiry."""
    access_token: str
    refresh_token: str
    expires_at: int
    user: dict = field(default_factory=dict)
    issued_at: int = 0

    @property
    def user_id(self) -> Optional[str]:
        return (self.user or {}).get('id')

    @classmethod
    def from_payload(cls, data: dict, *, now: float) -> 'AuthSession':
        """Build a session from a ``/token`` response.

        GoTrue sends ``expires_at`` (epoch seconds) on current releases and
        only ``expires_in`` on older ones.
        """
        expires_at = data.get('expires_at')
        if not expires_at:
            expires_at = int(now) + int(data.get('expires_in') or 0)
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token') or '',
            expires_at=int(expires_at),
            user=data.get('user') or {},
            issued_at=int(now),
        )

    def to_dict(self) -> dict:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at,
            'user': self.user,
            'issued_at': self.issued_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AuthSession':
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token') or '',
            expires_at=int(data['expires_at']),
            user=dict(data.get('user') or {}),
            issued_at=int(data.get('issued_at') or 0),
        )


@dataclass(frozen=True)
class AuthError:
    code: str
    message: str = ''
    status: Optional[int] = None

    @property
    def retryable(self) -> bool:
        """Network trouble or a provider-side failure, as opposed to a refusal."""
        return self.code == 'network_error' or (self.status is not None and self.status >= 500)

    @classmethod
    def from_response(cls, status: int, data: Any) -> 'AuthError':
        data = data if isinstance(data, dict) else {}
        code = data.get('error_code') or data.get('error') or f'http_{status}'
        message = data.get('error_description') or data.get('msg') or data.get('message') or ''
        return cls(code=str(code), message=str(message), status=status)


SESSION_MISSING = AuthError('session_missing', 'Auth session missing')


@dataclass(frozen=True)
class AuthResponse:
    session: Optional[AuthSession] = None
    user: Optional[dict] = None
    error: Optional[AuthError] = None


class GoTrueClient:
    """Thin GoTrue REST client bound to one client's credential storage."""

    def __init__(
        self,
        url: str,
        api_key: str,
        storage,
        *,
        timeout: float = 5.0,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url.rstrip('/')
        self.api_key = api_key
        self.storage = storage
        self.timeout = timeout
        self.http = http or requests.Session()
        self.clock = clock

    @classmethod
    def from_settings(cls, storage) -> 'GoTrueClient':
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            storage,
            timeout=settings.SUPABASE_TIMEOUT,
        )

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------
    def _request(self, method: str, path: str, *, params=None, json=None, access_token: Optional[str] = None):
        headers = {
            'apikey': self.api_key,
            'Authorization': f'Bearer {access_token or self.api_key}',
        }
        try:
            r = self.http.request(
                method, f'{self.url}/auth/v1{path}',
                params=params, json=json, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Auth provider unreachable (%s %s): %s", method, path, exc)
            return None, AuthError('network_error', str(exc))
        try:
            data = r.json() if r.content else {}
        except ValueError:
            data = {}
        if r.status_code >= 400:
            err = AuthError.from_response(r.status_code, data)
            logger.info("Auth provider refused %s %s: %s", method, path, err.code)
            return None, err
        return data, None

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------
    def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        data, err = self._request(
            'POST', '/token', params={'grant_type': 'password'},
            json={'email': email, 'password': password},
        )
        if err:
            return AuthResponse(error=err)
        try:
            session = AuthSession.from_payload(data, now=self.clock())
        except (KeyError, TypeError, ValueError):
            return AuthResponse(error=AuthError('malformed_response', 'Token response without access_token'))
        self.storage.save(session)
        return AuthResponse(session=session, user=session.user)

    def sign_up(self, email: str, password: str, data: Optional[dict] = None) -> AuthResponse:
        """Register a provider identity without signing it in here."""
        payload, err = self._request(
            'POST', '/signup', json={'email': email, 'password': password, 'data': data or {}},
        )
        if err:
            return AuthResponse(error=err)
        # Auto-confirming projects answer with a session, the others with the user
        user = payload.get('user') if 'access_token' in payload else payload
        if not isinstance(user, dict) or not user.get('id'):
            return AuthResponse(error=AuthError('malformed_response', 'Signup response without user id'))
        return AuthResponse(user=user)

    def get_session(self) -> AuthResponse:
        """Return the locally stored session; no network round trip."""
        session = self.storage.load()
        return AuthResponse(session=session, user=session.user if session else None)

    def set_session(self, session: AuthSession) -> None:
        self.storage.save(session)

    def get_user(self) -> AuthResponse:
        """Ask the provider who the stored access token belongs to."""
        session = self.storage.load()
        if session is None:
            return AuthResponse(error=SESSION_MISSING)
        data, err = self._request('GET', '/user', access_token=session.access_token)
        if err:
            return AuthResponse(error=err)
        return AuthResponse(user=data)

    def refresh_session(self) -> AuthResponse:
        session = self.storage.load()
        if session is None or not session.refresh_token:
            return AuthResponse(error=SESSION_MISSING)
        data, err = self._request(
            'POST', '/token', params={'grant_type': 'refresh_token'},
            json={'refresh_token': session.refresh_token},
        )
        if err:
            return AuthResponse(error=err)
        try:
            refreshed = AuthSession.from_payload(data, now=self.clock())
        except (KeyError, TypeError, ValueError):
            return AuthResponse(error=AuthError('malformed_response', 'Token response without access_token'))
        self.storage.save(refreshed)
        return AuthResponse(session=refreshed, user=refreshed.user)

    def sign_out(self) -> AuthResponse:
        """Revoke the session remotely; local credentials are dropped regardless."""
        session = self.storage.load()
        err = None
        if session is not None:
            _, err = self._request('POST', '/logout', access_token=session.access_token)
        self.storage.remove()
        return AuthResponse(error=err)
