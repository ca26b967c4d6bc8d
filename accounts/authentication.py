"""
DRF authentication backed by the provider session.

API requests carry the same Django session cookie as page requests; the
credential mirror in that session is resolved through the auth gateway,
so API and pages agree on who the principal is.  Only principals with an
active profile authenticate; everyone else is anonymous to DRF.
"""
from __future__ import annotations

from rest_framework import authentication

from .gateway import get_current_user


class ProviderSessionAuthentication(authentication.SessionAuthentication):

    def authenticate(self, request):
        principal = get_current_user(request._request)
        if principal is None or not principal.has_active_status:
            return None
        self.enforce_csrf(request)
        return (principal, None)

    def authenticate_header(self, request):
        # Non-empty so that unauthenticated API calls answer 401, not 403
        return 'Session'
