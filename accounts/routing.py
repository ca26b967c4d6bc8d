"""
Route classification for page requests.

Pure functions deciding, from the path, whether a credential is present
and the principal's role, whether a request proceeds or is redirected.
``accounts.middleware.SessionRoutingMiddleware`` supplies the inputs.
"""
from __future__ import annotations

from typing import Optional

from django.conf import settings

from .roles import landing_page_for

# Pages anyone may open.
PUBLIC_PATHS = frozenset({"/", "/auth", "/setup", "/superadmin-login"})
PUBLIC_PREFIXES = ("/auth/", "/setup/")

# Pages that only make sense without a session; signed-in principals are sent home.
AUTH_ONLY_PATHS = frozenset({"/auth/login", "/auth/signup"})

# Served by other layers (API auth, websocket guard, static files, ops endpoints).
PASSTHROUGH_PREFIXES = (
    "/api/", "/ws/", "/static/", "/admin/", "/swagger", "/redoc", "/metrics", "/healthz",
)


def normalize(path: str) -> str:
    path = path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def is_passthrough(path: str) -> bool:
    return (path or "/").startswith(PASSTHROUGH_PREFIXES)


def is_public(path: str) -> bool:
    path = normalize(path)
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def wants_landing(path: str) -> bool:
    """Paths where a signed-in principal is redirected to its landing page."""
    path = normalize(path)
    return path == "/" or path in AUTH_ONLY_PATHS


def classify_request(path: str, has_session: bool, role: Optional[str] = None) -> Optional[str]:
    """Return the redirect target for a page request, or None to let it through.

    ``role`` is the role of an active principal, or None when the session
    has no usable principal; only a known role triggers the landing redirect.
    """
    path = normalize(path)
    if is_passthrough(path + "/") or is_passthrough(path):
        return None
    if not has_session:
        return None if is_public(path) else settings.HMS_LOGIN_URL
    if role is not None and wants_landing(path):
        target = landing_page_for(role)
        return None if target == path else target
    return None
