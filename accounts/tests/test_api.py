import uuid

import pytest
from django.db import DatabaseError
from rest_framework.test import APIClient

from accounts.models import AuditEvent, User
from accounts.roles import Role, Status

pytestmark = pytest.mark.django_db


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def admin(make_user):
    return make_user(email='root@example.com', role=Role.SUPERADMIN)


@pytest.fixture
def admin_api(api, admin):
    api.force_authenticate(user=admin)
    return api


def _action(api, user, action, **data):
    return api.post(f'/api/admin/users/{user.pk}/{action}', data, format='json')


class TestAdminUsers:

    def test_requires_superadmin(self, api, make_user):
        assert api.get('/api/admin/users').status_code == 401
        api.force_authenticate(user=make_user(role=Role.DOCTOR))
        response = api.get('/api/admin/users')
        assert response.status_code == 403
        assert response.data['ok'] is False

    def test_inactive_superadmin_is_refused(self, api, make_user):
        api.force_authenticate(user=make_user(email='old@example.com', role=Role.SUPERADMIN, status=Status.INACTIVE))
        assert api.get('/api/admin/users').status_code == 403

    def test_list_with_filters(self, admin_api, make_user):
        make_user(email='a@example.com', status=Status.PENDING, full_name='Amina Odhiambo')
        make_user(email='b@example.com', role=Role.NURSE)
        response = admin_api.get('/api/admin/users', {'status': 'pending'})
        assert [u['email'] for u in response.data['items']] == ['a@example.com']
        response = admin_api.get('/api/admin/users', {'role': 'nurse'})
        assert response.data['total'] == 1
        response = admin_api.get('/api/admin/users', {'q': 'amina'})
        assert response.data['items'][0]['email'] == 'a@example.com'

    def test_approve_pending(self, admin_api, admin, make_user):
        pending = make_user(email='new@example.com', status=Status.PENDING)
        response = _action(admin_api, pending, 'approve', reason='verified licence')
        assert response.status_code == 200
        assert response.data['user']['status'] == 'active'
        pending.refresh_from_db()
        assert pending.status == Status.ACTIVE
        event = AuditEvent.objects.get(action='USER_APPROVED')
        assert event.actor == admin
        assert event.severity == 'medium'
        assert event.reason == 'verified licence'
        assert event.details['previous_status'] == 'pending'
        assert event.details['new_status'] == 'active'

    def test_reject_only_pending(self, admin_api, make_user):
        pending = make_user(email='new@example.com', status=Status.PENDING)
        assert _action(admin_api, pending, 'reject').status_code == 200
        pending.refresh_from_db()
        assert pending.status == Status.INACTIVE
        response = _action(admin_api, pending, 'reject')
        assert response.status_code == 409
        assert response.data['error']['code'] == 'invalid_transition'

    def test_deactivate(self, admin_api, make_user):
        doctor = make_user()
        assert _action(admin_api, doctor, 'deactivate').status_code == 200
        doctor.refresh_from_db()
        assert doctor.status == Status.INACTIVE
        assert AuditEvent.objects.filter(action='USER_DEACTIVATED', entity_id=str(doctor.pk)).exists()

    def test_delete_is_soft(self, admin_api, make_user):
        doctor = make_user()
        assert _action(admin_api, doctor, 'delete').status_code == 200
        doctor.refresh_from_db()
        assert doctor.deleted_at is not None
        assert User.objects.filter(pk=doctor.pk).exists()
        assert admin_api.get('/api/admin/users').data['total'] == 1
        assert _action(admin_api, doctor, 'approve').status_code == 404

    def test_cannot_act_on_self(self, admin_api, admin):
        response = _action(admin_api, admin, 'deactivate')
        assert response.status_code == 403
        assert response.data['error']['code'] == 'self_action'

    @pytest.mark.parametrize('action', ['deactivate', 'delete'])
    def test_superadmins_are_protected(self, admin_api, make_user, action):
        other = make_user(email='root2@example.com', role=Role.SUPERADMIN)
        response = _action(admin_api, other, action)
        assert response.status_code == 403
        assert response.data['error']['code'] == 'protected_account'
        other.refresh_from_db()
        assert other.status == Status.ACTIVE and other.deleted_at is None

    def test_unknown_action_and_user(self, admin_api, make_user):
        assert _action(admin_api, make_user(), 'promote').status_code == 400
        response = admin_api.post(f'/api/admin/users/{uuid.uuid4()}/approve', {}, format='json')
        assert response.status_code == 404

    def test_audit_logs(self, admin_api, make_user):
        _action(admin_api, make_user(email='new@example.com', status=Status.PENDING), 'approve')
        response = admin_api.get('/api/admin/audit-logs', {'action': 'USER_APPROVED'})
        assert response.status_code == 200
        item = response.data['items'][0]
        assert item['actor_email'] == 'root@example.com'
        assert item['created_at_eat']


class TestSessionApi:

    def test_session_info(self, api, provider, make_user, sign_in):
        user = make_user(role=Role.NURSE)
        auth_session = sign_in(api, user)
        response = api.get('/api/auth/session')
        assert response.status_code == 200
        assert response.data['valid'] is True
        assert response.data['expires_at'] == auth_session.expires_at
        assert response.data['expires_at_eat'].endswith('+03:00')
        assert response.data['principal']['role'] == 'nurse'
        assert response.data['principal']['landing_page'] == '/dashboard'
        assert response.data['capabilities']['view_patients'] is True
        assert response.data['capabilities']['manage_users'] is False

    def test_refresh_extends_session(self, api, provider, make_user, sign_in, clock):
        auth_session = sign_in(api, make_user())
        clock.advance(60)
        response = api.post('/api/auth/refresh')
        assert response.status_code == 200
        assert response.data['expires_at'] > auth_session.expires_at

    def test_refresh_failure(self, api, provider, make_user, sign_in):
        sign_in(api, make_user())
        provider.refresh_extends = False
        response = api.post('/api/auth/refresh')
        assert response.status_code == 409
        assert response.data['error']['code'] == 'refresh_failed'

    def test_refused_refresh_token_ends_the_session(self, api, provider, make_user, sign_in):
        sign_in(api, make_user())
        provider.refresh_tokens.clear()
        response = api.post('/api/auth/refresh')
        assert response.status_code == 401
        assert response.data['error']['code'] == 'session_expired'
        assert response.data['error']['redirect'] == '/auth/login?error=session_expired'
        assert provider.sign_outs == 1
        assert api.get('/api/auth/session').status_code == 401

    def test_pending_principal_is_unauthenticated(self, api, provider, make_user, sign_in):
        sign_in(api, make_user(status=Status.PENDING))
        assert api.get('/api/auth/session').status_code == 401


def test_audit_failure_does_not_break_the_action(monkeypatch, make_user):
    from accounts.services import audit

    def boom(**kwargs):
        raise DatabaseError('audit table is read-only')

    monkeypatch.setattr(AuditEvent.objects, 'create', boom)
    user = make_user()
    assert audit.log_action(actor=user, entity='auth', action='LOGIN') is None


@pytest.mark.parametrize('role, superadmin', [
    (Role.SUPERADMIN, True),
    (Role.NURSE, False),
    (Role.PATIENT, False),
])
def test_permission_classes_require_an_active_profile(make_user, role, superadmin):
    from types import SimpleNamespace

    from accounts.permissions import IsActivePrincipal, IsSuperAdmin

    request = SimpleNamespace(user=make_user(email=f'{role}@example.com', role=role))
    assert IsActivePrincipal().has_permission(request, None) is True
    assert IsSuperAdmin().has_permission(request, None) is superadmin

    request.user.status = Status.SUSPENDED
    assert IsActivePrincipal().has_permission(request, None) is False
    assert IsSuperAdmin().has_permission(request, None) is False
