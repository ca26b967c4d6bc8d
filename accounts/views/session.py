"""Session status and refresh for API clients."""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from accounts.permissions import IsActivePrincipal
from accounts.roles import capabilities_for, landing_page_for
from accounts.sessions import manager_for
from accounts.timeutils import expiry_to_eat


def _session_payload(request, info) -> dict:
    user = request.user
    return {
        'ok': True,
        'valid': info.is_valid,
        'expires_at': info.expires_at,
        'expires_at_eat': expiry_to_eat(info.expires_at),
        'time_until_expiry': info.time_until_expiry,
        'principal': {
            'id': str(user.pk),
            'email': user.email,
            'full_name': user.full_name,
            'role': user.role,
            'status': user.status,
            'landing_page': landing_page_for(user.role),
        },
        'capabilities': capabilities_for(user.role),
    }


@api_view(['GET'])
@permission_classes([IsActivePrincipal])
def session_info(request):
    info = manager_for(request.session).get_session_info()
    return Response(_session_payload(request, info))


@api_view(['POST'])
@permission_classes([IsActivePrincipal])
def session_refresh(request):
    """Extend the provider session.

    409 when the provider would not extend it for now; 401 and a logout
    when it refused the refresh token outright.
    """
    manager = manager_for(request.session)
    if not manager.refresh_session():
        if manager.refresh_unrecoverable:
            outcome = manager.force_logout('session_expired')
            return Response({'ok': False, 'error': {'code': 'session_expired', 'message': 'Session ended',
                                                  'redirect': outcome.redirect_url}}, status=401)
        return Response({'ok': False, 'error': {'code': 'refresh_failed', 'message': 'Session could not be refreshed'}},
                        status=409)
    return Response(_session_payload(request, manager.get_session_info()))
