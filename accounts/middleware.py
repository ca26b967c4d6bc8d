"""
Request-level session routing.

Runs on every page request, before any view.  Requests without a
credential are kept to public pages; signed-in principals opening the
login, signup or root page are sent to their landing page.  Views that
raise :class:`~accounts.exceptions.AuthRedirect` are answered with the
redirect here as well.
"""
import logging

from django.http import HttpResponseRedirect

from .credentials import CredentialStore
from .exceptions import AuthRedirect
from .gateway import get_current_user
from .routing import classify_request, is_passthrough, wants_landing

logger = logging.getLogger(__name__)


class SessionRoutingMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        path = request.path_info or "/"
        if is_passthrough(path):
            return self.get_response(request)

        has_session = CredentialStore(request.session).has_credentials()
        role = None
        if has_session and wants_landing(path):
            principal = get_current_user(request)
            if principal is None:
                # Stale or refused credential: let the login page render
                has_session = False
            elif principal.has_active_status:
                role = principal.role

        target = classify_request(path, has_session, role)
        if target is not None:
            logger.debug("Routing %s -> %s", path, target)
            return HttpResponseRedirect(target)
        return self.get_response(request)

    def process_exception(self, request, exception):
        if isinstance(exception, AuthRedirect):
            return HttpResponseRedirect(exception.location)
        return None
