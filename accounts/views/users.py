"""
Administrative user approval endpoints (superadmin only).
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from accounts.models import AuditEvent, User
from accounts.permissions import IsSuperAdmin
from accounts.serializers.users import AuditEventSerializer, UserActionSerializer, UserSerializer
from accounts.services.audit import client_ip
from accounts.services.users import UserActionError, apply_user_action, list_users

MAX_PAGE_SIZE = 200

ERROR_STATUS = {
    'unknown_action': status.HTTP_400_BAD_REQUEST,
    'invalid_transition': status.HTTP_409_CONFLICT,
    'not_found': status.HTTP_404_NOT_FOUND,
    'self_action': status.HTTP_403_FORBIDDEN,
    'protected_account': status.HTTP_403_FORBIDDEN,
}


def _limit(request, default=50):
    try:
        return max(1, min(int(request.query_params.get('limit', default)), MAX_PAGE_SIZE))
    except (TypeError, ValueError):
        return default


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def admin_users(request):
    """List live profiles; filters ``status``, ``role`` and ``q`` (email or name)."""
    qs = list_users(
        status=request.query_params.get('status') or None,
        role=request.query_params.get('role') or None,
        q=(request.query_params.get('q') or '').strip() or None,
    )
    total = qs.count()
    items = UserSerializer(qs[:_limit(request)], many=True).data
    return Response({'ok': True, 'total': total, 'items': items})


@api_view(['POST'])
@permission_classes([IsSuperAdmin])
def admin_user_action(request, user_id, action):
    target = User.objects.filter(pk=user_id).first()
    if target is None:
        return Response({'ok': False, 'error': {'code': 'not_found', 'message': 'user not found'}},
                        status=status.HTTP_404_NOT_FOUND)
    s = UserActionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        user = apply_user_action(actor=request.user, target=target, action=action,
                                 reason=s.validated_data['reason'], ip_address=client_ip(request))
    except UserActionError as e:
        return Response({'ok': False, 'error': {'code': e.code, 'message': e.message}},
                        status=ERROR_STATUS.get(e.code, status.HTTP_400_BAD_REQUEST))
    return Response({'ok': True, 'user': UserSerializer(user).data})


@api_view(['GET'])
@permission_classes([IsSuperAdmin])
def audit_logs(request):
    qs = AuditEvent.objects.select_related('actor')
    action = request.query_params.get('action')
    if action:
        qs = qs.filter(action=action)
    entity = request.query_params.get('entity')
    if entity:
        qs = qs.filter(entity=entity)
    return Response({'ok': True, 'items': AuditEventSerializer(qs[:_limit(request)], many=True).data})
