import time

import pytest
from django.test import Client

from accounts.credentials import CredentialStore
from accounts.models import AuditEvent, User
from accounts.roles import Role, Status

pytestmark = pytest.mark.django_db

PASSWORD = 'correct-horse'


@pytest.fixture
def registered(provider, make_user):
    """A profile plus the matching provider account."""
    def _registered(email='doc@example.com', **kwargs):
        user = make_user(email=email, **kwargs)
        provider.register(email, PASSWORD, user_id=str(user.pk))
        return user
    return _registered


def _has_credentials(client):
    return CredentialStore(client.session).has_credentials()


class TestLogin:

    def test_success_lands_on_role_page(self, client, registered):
        user = registered()
        response = client.post('/auth/login', {'email': 'doc@example.com', 'password': PASSWORD})
        assert response.status_code == 302
        assert response.url == '/dashboard'
        assert _has_credentials(client)
        assert AuditEvent.objects.filter(action='LOGIN', actor=user).exists()

    def test_email_is_normalised(self, client, registered):
        registered(role=Role.PATIENT)
        response = client.post('/auth/login', {'email': '  DOC@example.com ', 'password': PASSWORD})
        assert response.url == '/patient'

    def test_wrong_password(self, client, registered):
        registered()
        response = client.post('/auth/login', {'email': 'doc@example.com', 'password': 'nope'})
        assert response.status_code == 200
        assert b'Invalid email or password' in response.content
        assert not _has_credentials(client)
        assert AuditEvent.objects.filter(action='LOGIN_FAILED').count() == 1

    def test_pending_account_is_signed_out_again(self, client, registered, provider):
        registered(status=Status.PENDING)
        response = client.post('/auth/login', {'email': 'doc@example.com', 'password': PASSWORD})
        assert b'not active' in response.content
        assert not _has_credentials(client)
        assert provider.sign_outs == 1

    def test_provider_outage(self, client, registered, provider):
        registered()
        provider.offline = True
        response = client.post('/auth/login', {'email': 'doc@example.com', 'password': PASSWORD})
        assert b'could not verify' in response.content

    def test_error_from_query_string(self, client, provider):
        response = client.get('/auth/login?error=session_expired')
        assert b'Your session has expired' in response.content

    def test_unknown_error_code_is_not_echoed(self, client, provider):
        response = client.get('/auth/login?error=<script>')
        assert b'<script>' not in response.content


class TestSuperadminLoginAndSetup:

    def test_redirects_to_setup_until_superadmin_exists(self, client, provider):
        response = client.get('/superadmin-login')
        assert response.status_code == 302
        assert response.url == '/setup'

    def test_setup_creates_active_superadmin_once(self, client, provider):
        response = client.post('/setup', {
            'full_name': 'Root Admin',
            'email': 'root@example.com',
            'password': 'longenough',
            'confirm_password': 'longenough',
        })
        assert response.status_code == 302
        assert response.url == '/superadmin-login?setup=done'
        admin = User.objects.get(email='root@example.com')
        assert admin.role == Role.SUPERADMIN
        assert admin.status == Status.ACTIVE
        assert not admin.has_usable_password()
        event = AuditEvent.objects.get(action='SETUP')
        assert event.severity == 'high'
        assert event.actor == admin

        again = client.get('/setup')
        assert again.status_code == 302
        assert again.url == '/superadmin-login'

    @pytest.mark.parametrize('password,confirm', [('short', 'short'), ('longenough', 'different1')])
    def test_setup_validation(self, client, provider, password, confirm):
        response = client.post('/setup', {
            'full_name': 'Root', 'email': 'root@example.com', 'password': password, 'confirm_password': confirm,
        })
        assert response.status_code == 400
        assert not User.objects.exists()

    def test_only_superadmin_may_use_admin_login(self, client, registered):
        registered(email='root@example.com', role=Role.SUPERADMIN)
        registered(email='doc@example.com')
        response = client.post('/superadmin-login', {'email': 'doc@example.com', 'password': PASSWORD})
        assert b'reserved for the super administrator' in response.content
        assert not _has_credentials(client)
        response = client.post('/superadmin-login', {'email': 'root@example.com', 'password': PASSWORD})
        assert response.url == '/superadmin'


class TestSignup:

    def _post(self, client, **overrides):
        data = {
            'full_name': 'Nia Wanjiru',
            'email': 'nia@example.com',
            'role': 'nurse',
            'password': 'longenough',
            'confirm_password': 'longenough',
        }
        data.update(overrides)
        return client.post('/auth/signup', data)

    def test_creates_pending_profile(self, client, provider):
        response = self._post(client)
        assert response.status_code == 200
        assert b'must approve' in response.content
        user = User.objects.get(email='nia@example.com')
        assert (user.role, user.status) == (Role.NURSE, Status.PENDING)
        assert AuditEvent.objects.filter(action='USER_REGISTERED', entity_id=str(user.pk)).exists()
        assert not _has_credentials(client)

    def test_superadmin_role_is_not_offered(self, client, provider):
        response = self._post(client, role='superadmin')
        assert response.status_code == 400
        assert not User.objects.exists()

    def test_duplicate_provider_account(self, client, provider):
        provider.register('nia@example.com', 'whatever1')
        response = self._post(client)
        assert response.status_code == 400
        assert b'already registered' in response.content


class TestLogout:

    def test_clears_everything(self, client, provider, make_user, sign_in):
        user = make_user()
        sign_in(client, user)
        client.cookies['theme'] = 'dark'
        response = client.post('/auth/logout')
        assert response.status_code == 302
        assert response.url == '/auth/login'
        assert response['Clear-Site-Data'] == '"cookies", "storage"'
        assert response.cookies['theme']['max-age'] == 0
        assert not _has_credentials(client)
        assert provider.sign_outs == 1
        assert AuditEvent.objects.filter(action='LOGOUT', actor=user).exists()

    def test_reason_is_forwarded(self, client, provider, make_user, sign_in):
        sign_in(client, make_user())
        response = client.post('/auth/logout?error=session_expired')
        assert response.url == '/auth/login?error=session_expired'

    def test_unknown_reason_is_dropped(self, client, provider):
        response = client.post('/auth/logout?error=pwned')
        assert response.url == '/auth/login'

    def test_get_does_not_sign_out(self, client, provider, make_user, sign_in):
        sign_in(client, make_user())
        assert client.get('/auth/logout').status_code == 405
        assert _has_credentials(client)
        assert provider.sign_outs == 0

    def test_cross_site_post_is_refused(self, provider, make_user, sign_in):
        client = Client(enforce_csrf_checks=True)
        sign_in(client, make_user())
        assert client.post('/auth/logout').status_code == 403
        assert _has_credentials(client)

    def test_guarded_pages_post_logout_with_a_token(self, client, provider, make_user, sign_in):
        sign_in(client, make_user())
        content = client.get('/dashboard').content
        assert b'id="session-exit" method="post"' in content
        assert b'csrfmiddlewaretoken' in content


class TestLandingPages:

    def test_staff_dashboard(self, client, provider, make_user, sign_in):
        sign_in(client, make_user())
        response = client.get('/dashboard')
        assert response.status_code == 200
        assert b'Staff dashboard' in response.content
        assert b'session-banner' in response.content
        assert b'/ws/session/' in response.content

    def test_patient_cannot_open_dashboard(self, client, provider, make_user, sign_in):
        sign_in(client, make_user(email='p@example.com', role=Role.PATIENT))
        response = client.get('/dashboard')
        assert response.status_code == 302
        assert response.url == '/unauthorized'
        assert client.get('/unauthorized').status_code == 403

    def test_pending_user_is_sent_to_login(self, client, provider, make_user, sign_in):
        sign_in(client, make_user(status=Status.PENDING))
        response = client.get('/patient')
        assert response.url == '/auth/login?error=account_not_active'

    def test_superadmin_console_lists_pending(self, client, provider, make_user, sign_in):
        sign_in(client, make_user(email='root@example.com', role=Role.SUPERADMIN))
        make_user(email='waiting@example.com', status=Status.PENDING)
        response = client.get('/superadmin')
        assert response.status_code == 200
        assert b'waiting@example.com' in response.content

    def test_expired_access_token_is_renewed_on_the_next_page(self, client, provider, make_user, sign_in):
        old = sign_in(client, make_user(), expires_at=int(time.time()) - 5)
        response = client.get('/dashboard')
        assert response.status_code == 200
        renewed = CredentialStore(client.session).load()
        assert renewed.access_token != old.access_token
        assert renewed.expires_at > time.time()

    def test_expired_session_without_a_good_refresh_token(self, client, provider, make_user, sign_in):
        sign_in(client, make_user(), expires_at=int(time.time()) - 5)
        provider.refresh_tokens.clear()
        response = client.get('/dashboard')
        assert response.url == '/auth/login'

    def test_anonymous_is_sent_to_login(self, client, provider):
        response = client.get('/superadmin')
        assert response.url == '/auth/login'


def test_healthz(client):
    response = client.get('/healthz')
    assert response.status_code == 200
    assert response.json()['ok'] is True
