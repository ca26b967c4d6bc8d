"""
Server-rendered pages: sign-in, registration, one-time setup, logout and
the role landing pages.

Routing between these pages (who may see what) is decided by
``SessionRoutingMiddleware`` and the auth gateway; the views here only
run the flows themselves.
"""
from __future__ import annotations

import logging

from django.db import IntegrityError
from django.http import HttpResponseRedirect
from django.shortcuts import redirect, render
from django.views.decorators.http import require_http_methods, require_POST

from accounts.credentials import ClientStateSweep, CredentialStore
from accounts.gateway import auth_client, get_current_user, requires_auth, resolve_identity
from accounts.guard import session_guard
from accounts.models import AuditEvent, User
from accounts.roles import (
    SIGNUP_ROLES,
    STAFF_ROLES,
    Role,
    Status,
    capabilities_for,
    landing_page_for,
)
from accounts.serializers.auth import LoginSerializer, SetupSerializer, SignupSerializer
from accounts.services.audit import client_ip, log_action
from accounts.services.users import UserActionError, create_superadmin, register_profile, superadmin_exists
from accounts.sessions import manager_for
from accounts.timeutils import expiry_to_eat

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    'session_expired': 'Your session has expired. Please sign in again.',
    'auth_error': 'We could not verify your session. Please sign in again.',
    'invalid_credentials': 'Invalid email or password.',
    'account_not_active': 'Your account is not active. Contact an administrator.',
    'profile_missing': 'No profile exists for this account. Contact an administrator.',
    'not_superadmin': 'This sign-in is reserved for the super administrator.',
}
LOGOUT_REASONS = frozenset({'session_expired', 'auth_error', 'account_not_active'})


def _errors(serializer) -> list:
    return [f'{field}: {msg}' for field, msgs in serializer.errors.items() for msg in msgs]


def _sign_in(request, *, superadmin_only: bool = False):
    """Exchange the posted credentials; return ``(principal, error_code)``."""
    s = LoginSerializer(data=request.POST)
    if not s.is_valid():
        return None, 'invalid_credentials'
    email = s.validated_data['email']

    # New credentials, new session key
    request.session.cycle_key()
    client = auth_client(CredentialStore(request.session))
    resp = client.sign_in_with_password(email, s.validated_data['password'])
    if resp.error is not None:
        log_action(actor=None, entity='auth', action='LOGIN_FAILED', details={'email': email},
                   reason=resp.error.code, severity='medium', ip_address=client_ip(request))
        return None, 'auth_error' if resp.error.retryable else 'invalid_credentials'

    identity = resolve_identity(client)
    principal = identity.principal
    error = None
    if principal is None:
        error = 'auth_error' if identity.retryable else 'profile_missing'
    elif not principal.has_active_status:
        error = 'account_not_active'
    elif superadmin_only and principal.role != Role.SUPERADMIN:
        error = 'not_superadmin'
    if error:
        logger.info("Sign-in of %s refused: %s", email, error)
        client.sign_out()
        return None, error

    log_action(actor=principal, entity='auth', entity_id=principal.pk, action='LOGIN',
               details={'role': principal.role}, ip_address=client_ip(request))
    return principal, None


def home(request):
    return render(request, 'accounts/home.html')


@require_http_methods(['GET', 'POST'])
def login_page(request):
    error = request.GET.get('error')
    if request.method == 'POST':
        principal, error = _sign_in(request)
        if principal is not None:
            return redirect(landing_page_for(principal.role))
    return render(request, 'accounts/login.html', {
        'error': ERROR_MESSAGES.get(error) if error else None,
        'email': request.POST.get('email', ''),
    })


@require_http_methods(['GET', 'POST'])
def superadmin_login_page(request):
    if not superadmin_exists():
        return redirect('setup')
    error = None
    if request.method == 'POST':
        principal, error = _sign_in(request, superadmin_only=True)
        if principal is not None:
            return redirect(landing_page_for(principal.role))
    return render(request, 'accounts/superadmin_login.html', {
        'error': ERROR_MESSAGES.get(error) if error else None,
        'setup_done': request.GET.get('setup') == 'done',
    })


@require_http_methods(['GET', 'POST'])
def signup_page(request):
    ctx = {'roles': [(r.value, r.label) for r in Role if r in SIGNUP_ROLES], 'errors': [], 'registered': False}
    if request.method == 'POST':
        s = SignupSerializer(data=request.POST)
        if not s.is_valid():
            ctx['errors'] = _errors(s)
            return render(request, 'accounts/signup.html', ctx, status=400)
        vd = s.validated_data
        client = auth_client(CredentialStore(request.session))
        resp = client.sign_up(vd['email'], vd['password'], {'full_name': vd['full_name'], 'role': vd['role']})
        if resp.error is not None:
            ctx['errors'] = [resp.error.message or 'Registration failed']
            return render(request, 'accounts/signup.html', ctx, status=400)
        try:
            profile = register_profile(user_id=resp.user['id'], email=vd['email'],
                                       full_name=vd['full_name'], role=vd['role'])
        except IntegrityError:
            ctx['errors'] = ['An account with this email already exists']
            return render(request, 'accounts/signup.html', ctx, status=400)
        log_action(actor=profile, entity='users', entity_id=profile.pk, action='USER_REGISTERED',
                   details={'email': profile.email, 'role': profile.role}, reason='Self registration',
                   ip_address=client_ip(request))
        ctx['registered'] = True
    return render(request, 'accounts/signup.html', ctx)


@require_http_methods(['GET', 'POST'])
def setup_page(request):
    if superadmin_exists():
        return redirect('superadmin-login')
    ctx = {'errors': []}
    if request.method == 'POST':
        s = SetupSerializer(data=request.POST)
        if not s.is_valid():
            ctx['errors'] = _errors(s)
            return render(request, 'accounts/setup.html', ctx, status=400)
        vd = s.validated_data
        client = auth_client(CredentialStore(request.session))
        resp = client.sign_up(vd['email'], vd['password'], {'full_name': vd['full_name'], 'role': Role.SUPERADMIN.value})
        if resp.error is not None:
            ctx['errors'] = [resp.error.message or 'Setup failed']
            return render(request, 'accounts/setup.html', ctx, status=400)
        try:
            admin = create_superadmin(user_id=resp.user['id'], email=vd['email'], full_name=vd['full_name'])
        except UserActionError:
            return redirect('superadmin-login')
        except IntegrityError:
            ctx['errors'] = ['An account with this email already exists']
            return render(request, 'accounts/setup.html', ctx, status=400)
        log_action(actor=admin, entity='system', entity_id=admin.pk, action='SETUP',
                   details={'email': admin.email}, reason='Initial system setup', severity='high',
                   ip_address=client_ip(request))
        return HttpResponseRedirect('/superadmin-login?setup=done')
    return render(request, 'accounts/setup.html', ctx)


@require_POST
def logout_view(request):
    """End the session; POST only so that a cross-site GET cannot sign anyone out."""
    reason = request.GET.get('error')
    if reason not in LOGOUT_REASONS:
        reason = None
    principal = get_current_user(request)
    sweep = ClientStateSweep(request)
    outcome = manager_for(request.session, extra_storage=[sweep]).force_logout(reason)
    if principal is not None:
        log_action(actor=principal, entity='auth', entity_id=principal.pk, action='LOGOUT',
                   details={'reason': reason, 'failures': list(outcome.failures)},
                   ip_address=client_ip(request))
    return sweep.apply(HttpResponseRedirect(outcome.redirect_url))


@requires_auth()
@session_guard
def unauthorized(request):
    return render(request, 'accounts/unauthorized.html', {'principal': request.principal}, status=403)


def _portal(request, title, **extra):
    principal = request.principal
    ctx = {
        'title': title,
        'principal': principal,
        'capabilities': capabilities_for(principal.role),
        'expires_at_eat': expiry_to_eat(request.session_guard.info.expires_at),
    }
    ctx.update(extra)
    return render(request, 'accounts/portal.html', ctx)


@requires_auth(*STAFF_ROLES)
@session_guard(allowed_roles=STAFF_ROLES)
def dashboard(request):
    return _portal(request, 'Staff dashboard')


@requires_auth(Role.SUPERADMIN)
@session_guard(allowed_roles=[Role.SUPERADMIN])
def superadmin_console(request):
    return _portal(
        request, 'Super administrator',
        pending=User.objects.filter(status=Status.PENDING, deleted_at__isnull=True).order_by('created_at')[:20],
        recent_events=AuditEvent.objects.select_related('actor')[:10],
    )


@requires_auth(Role.PATIENT)
@session_guard(allowed_roles=[Role.PATIENT])
def patient_portal(request):
    return _portal(request, 'Patient portal')
