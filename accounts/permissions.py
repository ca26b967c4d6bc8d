"""
Role based permission classes for the API.

The role lists live in ``accounts.roles``; these classes only adapt them
to DRF.
"""
from rest_framework.permissions import BasePermission

from .roles import Role, has_permission


def _principal(request):
    user = getattr(request, "user", None)
    if user and user.is_authenticated and getattr(user, "has_active_status", False):
        return user
    return None


class IsActivePrincipal(BasePermission):
    """Any authenticated principal whose profile is active."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _principal(request) is not None


class HasRole(BasePermission):
    roles = frozenset()

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = _principal(request)
        return bool(user and has_permission(user.role, self.roles))


class IsSuperAdmin(HasRole):
    """Only the superadmin."""
    roles = frozenset({Role.SUPERADMIN})

