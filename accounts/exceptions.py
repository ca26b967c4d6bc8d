"""
Error types shared by pages and the API, and the DRF error envelope.

Every API error answers ``{"ok": false, "error": {"code", "message"}}``;
validation errors add ``fields`` and auth redirects add ``redirect``.
"""
import logging

from rest_framework import exceptions
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class AuthRedirect(Exception):
    """Short-circuits a request towards the login or unauthorized page.

    Page requests turn it into a 302 (``SessionRoutingMiddleware``); API
    requests get a JSON error carrying the same target.
    """

    def __init__(self, location: str, *, reason: str = 'unauthenticated', status_code: int = 401) -> None:
        super().__init__(reason)
        self.location = location
        self.reason = reason
        self.status_code = status_code


def _error(code, message, status, **extra):
    return Response({'ok': False, 'error': {'code': code, 'message': message, **extra}}, status=status)


def api_exception_handler(exc, context):
    # rest_framework.views loads DEFAULT_AUTHENTICATION_CLASSES, which import the gateway
    from rest_framework.views import exception_handler as drf_exception_handler

    if isinstance(exc, AuthRedirect):
        return _error(exc.reason, exc.reason, exc.status_code, redirect=exc.location)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception("Unhandled API error", exc_info=exc)
        return _error('server_error', 'Internal server error', 500)

    if isinstance(exc, exceptions.ValidationError):
        return _error('invalid', 'Invalid input', resp.status_code, fields=resp.data)
    code = getattr(exc, 'default_code', 'error')
    detail = resp.data.get('detail', resp.data) if isinstance(resp.data, dict) else resp.data
    err = _error(code, str(detail), resp.status_code)
    for header in ('WWW-Authenticate', 'Retry-After'):
        if header in resp:
            err[header] = resp[header]
    return err
