"""
Session guard for protected pages.

A guard validates the session once when a protected page is opened and
decides whether its content may be shown.  The decision is made here;
keeping the page honest afterwards (warning banner, refresh, forced
logout) is the job of ``accounts.realtime.consumers.SessionGuardConsumer``,
which reuses :class:`SessionGuard` for its own validation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Iterable, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.shortcuts import render

from .gateway import Identity, login_url, resolve_identity
from .roles import has_permission
from .sessions import INVALID, SessionInfo, manager_for

logger = logging.getLogger(__name__)

WS_PATH = '/ws/session/'


class GuardState(str, Enum):
    VALIDATING = 'validating'
    DENIED = 'denied'
    GRANTED = 'granted'


def warning_delay(time_until_expiry: Optional[float], lead: float = 300.0) -> Optional[float]:
    """Seconds until the expiry warning should show, never less than ``lead``.

    A session with 290s left warns after 300s, i.e. after it expired; the
    periodic check logs it out before the banner could matter.
    """
    if not time_until_expiry or time_until_expiry <= 0:
        return None
    return max(lead, time_until_expiry - lead)


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    info: SessionInfo = INVALID
    principal: object = None
    reason: Optional[str] = None
    warning_delay: Optional[float] = None

    @property
    def granted(self) -> bool:
        return self.state is GuardState.GRANTED

    @property
    def redirect_url(self) -> str:
        return login_url(self.reason)


class SessionGuard:

    def __init__(self, *, require_auth: bool = True, allowed_roles: Optional[Iterable[str]] = None,
                 warning_lead: Optional[float] = None) -> None:
        self.require_auth = require_auth
        self.allowed_roles = frozenset(allowed_roles) if allowed_roles is not None else None
        self.warning_lead = settings.HMS_SESSION_WARNING_SECONDS if warning_lead is None else warning_lead
        self.state = GuardState.VALIDATING

    def evaluate(self, info: SessionInfo, identity: Optional[Identity]) -> GuardDecision:
        """Pure decision from the session info and the resolved identity."""
        principal = identity.principal if identity is not None else None
        delay = warning_delay(info.time_until_expiry, self.warning_lead) if info.is_valid else None
        if not self.require_auth:
            decision = GuardDecision(GuardState.GRANTED, info, principal, warning_delay=delay)
        elif not info.is_valid:
            decision = GuardDecision(GuardState.DENIED, info, reason='session_expired')
        elif principal is None:
            reason = 'auth_error' if identity is not None and identity.retryable else 'session_expired'
            decision = GuardDecision(GuardState.DENIED, info, reason=reason)
        elif not principal.has_active_status:
            decision = GuardDecision(GuardState.DENIED, info, principal, reason='account_not_active')
        elif self.allowed_roles is not None and not has_permission(principal.role, self.allowed_roles):
            decision = GuardDecision(GuardState.DENIED, info, principal, reason='access_denied')
        else:
            decision = GuardDecision(GuardState.GRANTED, info, principal, warning_delay=delay)
        self.state = decision.state
        return decision

    def check(self, manager, client, identity: Optional[Identity] = None) -> GuardDecision:
        """Blocking validation through ``manager`` and, when needed, the gateway."""
        try:
            info = manager.get_session_info()
            if identity is None and self.require_auth and info.is_valid:
                identity = resolve_identity(client)
            return self.evaluate(info, identity)
        except Exception:
            logger.exception("Session guard validation failed")
            self.state = GuardState.DENIED
            return GuardDecision(GuardState.DENIED, reason='auth_error')

    def ws_path(self) -> str:
        params = {'require_auth': '1' if self.require_auth else '0'}
        if self.allowed_roles is not None:
            params['roles'] = ','.join(sorted(self.allowed_roles))
        return f'{WS_PATH}?{urlencode(params)}'


def session_guard(view_func=None, *, require_auth: bool = True, allowed_roles: Optional[Iterable[str]] = None):
    """Render the page only if the guard grants it; otherwise a 403 access-denied page.

    Usable bare (``@session_guard``) or with options.
    """
    def decorator(func):
        @wraps(func)
        def _wrapped(request, *args, **kwargs):
            guard = SessionGuard(require_auth=require_auth, allowed_roles=allowed_roles)
            manager = manager_for(request.session)
            principal = getattr(request, 'principal', None)
            identity = Identity(principal=principal) if principal is not None else None
            decision = guard.check(manager, manager.auth, identity)
            if not decision.granted:
                logger.info("Session guard denied %s: %s", request.path, decision.reason)
                return render(
                    request, 'accounts/session_denied.html',
                    {'reason': decision.reason, 'login_url': decision.redirect_url},
                    status=403,
                )
            request.session_guard = decision
            request.session_guard_ws = guard.ws_path()
            return func(request, *args, **kwargs)
        return _wrapped

    if view_func is not None:
        return decorator(view_func)
    return decorator
