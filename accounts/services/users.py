"""
Profile lifecycle: registration, one-time setup and administrator actions.

The provider owns the credentials; these functions only touch the local
profile row and the audit log.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.db.models import Q, QuerySet
from django.utils import timezone

from accounts.models import User
from accounts.roles import Role, Status
from accounts.services.audit import log_action

logger = logging.getLogger(__name__)


class UserActionError(Exception):
    def __init__(self, code: str, message: str = '') -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


# action -> (allowed source statuses, new status, audit action)
USER_ACTIONS = {
    'approve': ({Status.PENDING, Status.INACTIVE, Status.SUSPENDED}, Status.ACTIVE, 'USER_APPROVED'),
    'reject': ({Status.PENDING}, Status.INACTIVE, 'USER_REJECTED'),
    'deactivate': ({Status.ACTIVE, Status.SUSPENDED}, Status.INACTIVE, 'USER_DEACTIVATED'),
    'delete': (set(Status), None, 'USER_DELETED'),
}
PROTECTED_ACTIONS = {'deactivate', 'delete'}


def superadmin_exists() -> bool:
    return User.objects.filter(role=Role.SUPERADMIN, deleted_at__isnull=True).exists()


def _create_profile(*, user_id: str, email: str, full_name: str, role: str, status: str) -> User:
    profile = User(
        id=user_id,
        username=email,
        email=email,
        full_name=full_name,
        role=role,
        status=status,
    )
    # Credentials live with the provider
    profile.set_unusable_password()
    profile.save()
    return profile


def register_profile(*, user_id: str, email: str, full_name: str, role: str) -> User:
    """Create the pending profile of a self-registered identity."""
    if role == Role.SUPERADMIN:
        raise UserActionError('invalid_role', 'superadmin accounts come from setup only')
    with transaction.atomic():
        return _create_profile(user_id=user_id, email=email, full_name=full_name, role=role, status=Status.PENDING)


def create_superadmin(*, user_id: str, email: str, full_name: str) -> User:
    with transaction.atomic():
        if superadmin_exists():
            raise UserActionError('setup_complete', 'a superadmin already exists')
        return _create_profile(
            user_id=user_id, email=email, full_name=full_name, role=Role.SUPERADMIN, status=Status.ACTIVE,
        )


def list_users(*, status: Optional[str] = None, role: Optional[str] = None, q: Optional[str] = None) -> QuerySet:
    qs = User.objects.filter(deleted_at__isnull=True).order_by('-created_at')
    if status:
        qs = qs.filter(status=status)
    if role:
        qs = qs.filter(role=role)
    if q:
        qs = qs.filter(Q(email__icontains=q) | Q(full_name__icontains=q))
    return qs


def apply_user_action(*, actor: User, target: User, action: str, reason: str = '',
                      ip_address: Optional[str] = None) -> User:
    """Run an administrator action on ``target`` and audit it."""
    if action not in USER_ACTIONS:
        raise UserActionError('unknown_action', f'unknown action {action!r}')
    if target.is_deleted:
        raise UserActionError('not_found', 'user not found')
    if target.pk == actor.pk:
        raise UserActionError('self_action', 'cannot change your own account')
    if target.role == Role.SUPERADMIN and action in PROTECTED_ACTIONS:
        raise UserActionError('protected_account', 'superadmin accounts cannot be deactivated or deleted')

    sources, new_status, audit_action = USER_ACTIONS[action]
    previous = target.status
    if previous not in sources:
        raise UserActionError('invalid_transition', f'cannot {action} a {previous} account')

    with transaction.atomic():
        if new_status is None:
            target.deleted_at = timezone.now()
            target.save(update_fields=['deleted_at', 'updated_at'])
        else:
            target.status = new_status
            target.save(update_fields=['status', 'updated_at'])

    logger.info("%s by %s on %s", audit_action, actor.pk, target.pk)
    log_action(
        actor=actor,
        entity='users',
        entity_id=target.pk,
        action=audit_action,
        details={
            'email': target.email,
            'previous_status': previous,
            'new_status': new_status or previous,
            'deleted': new_status is None,
        },
        reason=reason,
        severity='medium',
        ip_address=ip_address,
    )
    return target
