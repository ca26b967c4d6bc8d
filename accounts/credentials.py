"""
Local credential material.

``CredentialStore`` mirrors the provider session inside the Django
session so that page requests and WebSocket consumers of the same
browser see the same credentials.  ``ClientStateSweep`` removes whatever
the browser itself holds (cookies and web storage) on logout.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.conf import settings
from django.contrib.sessions.backends.base import SessionBase

from .providers import AuthSession

logger = logging.getLogger(__name__)


class CredentialStore:
    """Provider session cached in a Django session under one key.

    ``autosave`` is for callers outside the HTTP request cycle (Channels
    consumers), where no middleware persists the session afterwards and
    other requests (a logout in another tab) may change it at any time:
    reads go back to the session backend and writes are saved at once.
    """
    SESSION_KEY = 'hms.auth'
    name = 'credentials'

    def __init__(self, session, *, autosave: bool = False) -> None:
        self.session = session
        self.autosave = autosave

    def load(self) -> Optional[AuthSession]:
        if self.autosave:
            self._reload()
        raw = self.session.get(self.SESSION_KEY)
        if not raw:
            return None
        try:
            return AuthSession.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed credential mirror")
            self.remove()
            return None

    def save(self, auth_session: AuthSession) -> None:
        self.session[self.SESSION_KEY] = auth_session.to_dict()
        self._persist()

    def remove(self) -> None:
        self.session.pop(self.SESSION_KEY, None)
        self._persist()

    def has_credentials(self) -> bool:
        return bool(self.session.get(self.SESSION_KEY))

    def clear(self) -> None:
        """Drop the mirror and every other key of the Django session."""
        self.session.pop(self.SESSION_KEY, None)
        self.session.flush()

    def _reload(self) -> None:
        if isinstance(self.session, SessionBase) and self.session.session_key:
            # __class__ also sees through the lazy wrapper Channels puts in the scope
            self.session = self.session.__class__(session_key=self.session.session_key)

    def _persist(self) -> None:
        # A session the backend already dropped stays dropped
        if self.autosave and getattr(self.session, "session_key", None):
            self.session.save()


class ClientStateSweep:
    """Expire browser-held state on the response that ends a session.

    ``Clear-Site-Data`` makes the browser drop cookies on every path and
    subdomain plus local and session storage; the explicit deletions cover
    clients that ignore the header.
    """
    name = 'browser'
    HEADER_VALUE = '"cookies", "storage"'

    def __init__(self, request) -> None:
        self.cookie_names = sorted(request.COOKIES)
        self.pending = False

    def clear(self) -> None:
        self.pending = True

    def apply(self, response):
        if not self.pending:
            return response
        response['Clear-Site-Data'] = self.HEADER_VALUE
        for name in self.cookie_names:
            domain = settings.SESSION_COOKIE_DOMAIN if name == settings.SESSION_COOKIE_NAME else None
            response.delete_cookie(name, path='/', domain=domain)
        return response
