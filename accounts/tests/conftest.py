import pytest

from accounts.credentials import CredentialStore
from accounts.models import User
from accounts.roles import Role, Status
from accounts.tests.fakes import DictSession, FakeAuthClient, FakeClock, FakeProvider


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider(settings, clock):
    settings.HMS_AUTH_CLIENT_CLASS = 'accounts.tests.fakes.FakeAuthClient'
    p = FakeProvider(clock)
    FakeAuthClient.provider = p
    yield p
    FakeAuthClient.provider = None


@pytest.fixture
def store():
    return CredentialStore(DictSession())


@pytest.fixture
def make_user(db):
    def _make(email='doc@example.com', role=Role.DOCTOR, status=Status.ACTIVE, **extra):
        extra.setdefault('full_name', email.split('@')[0].title())
        return User.objects.create(username=email, email=email, role=role, status=status, **extra)
    return _make


@pytest.fixture
def sign_in(provider):
    """Put a provider session for ``user`` into a test client's Django session."""
    def _sign_in(client, user, **kwargs):
        auth_session = provider.issue(str(user.pk), **kwargs)
        session = client.session
        session[CredentialStore.SESSION_KEY] = auth_session.to_dict()
        session.save()
        return auth_session
    return _sign_in
