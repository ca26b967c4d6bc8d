"""
Auth gateway: who is making this request, and may they proceed?

The provider says which identity a credential belongs to; the local
``User`` row says which role and approval status that identity has.
Every server-side decision about a principal goes through
``resolve_identity`` so that the two lookups are combined the same way
everywhere.  Lookup failures are reported as values (``Identity.failure``)
rather than raised, and callers treat any failure as "no principal".
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Iterable, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.utils.module_loading import import_string

from .credentials import CredentialStore
from .exceptions import AuthRedirect
from .models import User
from .roles import has_permission

logger = logging.getLogger(__name__)


class IdentityFailure(str, Enum):
    ANONYMOUS = 'anonymous'        # no credential at all
    REJECTED = 'rejected'          # provider refused the credential
    UNAVAILABLE = 'unavailable'    # provider or database unreachable; retryable
    NO_PROFILE = 'no_profile'      # valid identity without a live profile row


@dataclass(frozen=True)
class Identity:
    principal: Optional[User] = None
    failure: Optional[IdentityFailure] = None

    @property
    def ok(self) -> bool:
        return self.principal is not None

    @property
    def retryable(self) -> bool:
        return self.failure is IdentityFailure.UNAVAILABLE


def auth_client(store: CredentialStore):
    """Instantiate the configured provider client over ``store``."""
    client_class = import_string(settings.HMS_AUTH_CLIENT_CLASS)
    return client_class.from_settings(store)


def login_url(reason: Optional[str] = None) -> str:
    if not reason:
        return settings.HMS_LOGIN_URL
    return f"{settings.HMS_LOGIN_URL}?{urlencode({'error': reason})}"


def resolve_identity(client) -> Identity:
    try:
        resp = client.get_user()
    except Exception:
        logger.exception("Auth provider lookup raised")
        return Identity(failure=IdentityFailure.UNAVAILABLE)

    if resp.error is not None:
        if resp.error.code == 'session_missing':
            return Identity(failure=IdentityFailure.ANONYMOUS)
        if resp.error.retryable:
            return Identity(failure=IdentityFailure.UNAVAILABLE)
        return Identity(failure=IdentityFailure.REJECTED)

    user_id = (resp.user or {}).get('id')
    if not user_id:
        return Identity(failure=IdentityFailure.REJECTED)

    try:
        principal = User.objects.filter(pk=user_id, deleted_at__isnull=True).first()
    except ValidationError:
        logger.warning("Provider returned a malformed user id %r", user_id)
        return Identity(failure=IdentityFailure.REJECTED)
    except DatabaseError:
        logger.exception("Profile lookup failed for %s", user_id)
        return Identity(failure=IdentityFailure.UNAVAILABLE)

    if principal is None:
        logger.info("Provider identity %s has no profile", user_id)
        return Identity(failure=IdentityFailure.NO_PROFILE)
    return Identity(principal=principal)


def renew_if_expired(client, clock=time.time) -> bool:
    """Trade the refresh token for a new session once the access token has expired.

    Returns True when a new session was stored.  A refused or failed
    renewal leaves the old session for the caller to reject.
    """
    try:
        session = client.get_session().session
        if session is None or not session.refresh_token or clock() < session.expires_at:
            return False
        resp = client.refresh_session()
    except Exception:
        logger.exception("Session renewal raised")
        return False
    if resp.error is not None:
        logger.info("Expired session could not be renewed: %s", resp.error.code)
        return False
    logger.info("Renewed expired session for %s", session.user_id)
    return True


def identify(request) -> Identity:
    """Resolve the principal of ``request`` once and cache it on the request.

    An expired access token is renewed first, so a signed-in browser keeps
    working across token lifetimes as long as its refresh token is good.
    """
    cached = getattr(request, '_hms_identity', None)
    if cached is not None:
        return cached
    client = auth_client(CredentialStore(request.session))
    renew_if_expired(client)
    identity = resolve_identity(client)
    request._hms_identity = identity
    return identity


def get_current_user(request) -> Optional[User]:
    """The request's principal, or None; never raises."""
    try:
        return identify(request).principal
    except Exception:
        logger.exception("Could not resolve the current user")
        return None


def require_auth(request, allowed_roles: Optional[Iterable[str]] = None) -> User:
    """Return the active principal of ``request`` or raise :class:`AuthRedirect`.

    ``allowed_roles=None`` admits any active principal; an empty collection
    admits nobody.
    """
    try:
        identity = identify(request)
    except Exception:
        logger.exception("Could not resolve the current user")
        identity = Identity(failure=IdentityFailure.UNAVAILABLE)

    principal = identity.principal
    if principal is None:
        if identity.retryable:
            raise AuthRedirect(login_url('auth_error'), reason='auth_error')
        raise AuthRedirect(login_url(), reason='unauthenticated')
    if not principal.has_active_status:
        raise AuthRedirect(login_url('account_not_active'), reason='account_not_active', status_code=403)
    if allowed_roles is not None and not has_permission(principal.role, allowed_roles):
        logger.info("Role %s refused for %s", principal.role, request.path)
        raise AuthRedirect(settings.HMS_UNAUTHORIZED_URL, reason='unauthorized', status_code=403)
    request.principal = principal
    return principal


def requires_auth(*roles):
    """View decorator form of :func:`require_auth`; no roles means any active principal."""
    allowed = roles or None

    def decorator(view_func):
        @wraps(view_func)
        def _wrapped(request, *args, **kwargs):
            require_auth(request, allowed)
            return view_func(request, *args, **kwargs)
        return _wrapped
    return decorator
