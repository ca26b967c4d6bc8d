"""
URL mappings for the accounts application.

Pages use the paths the browser client expects (no trailing slashes);
JSON endpoints live under ``/api/``.
"""
from django.urls import path

from .views import health, pages, session, users

urlpatterns = [
    # Pages
    path('', pages.home, name='home'),
    path('auth/login', pages.login_page, name='login'),
    path('auth/signup', pages.signup_page, name='signup'),
    path('auth/logout', pages.logout_view, name='logout'),
    path('superadmin-login', pages.superadmin_login_page, name='superadmin-login'),
    path('setup', pages.setup_page, name='setup'),
    path('unauthorized', pages.unauthorized, name='unauthorized'),
    path('dashboard', pages.dashboard, name='dashboard'),
    path('superadmin', pages.superadmin_console, name='superadmin'),
    path('patient', pages.patient_portal, name='patient'),

    # Session API
    path('api/auth/session', session.session_info, name='api-session'),
    path('api/auth/refresh', session.session_refresh, name='api-session-refresh'),

    # User administration
    path('api/admin/users', users.admin_users, name='api-admin-users'),
    path('api/admin/users/<uuid:user_id>/<str:action>', users.admin_user_action, name='api-admin-user-action'),
    path('api/admin/audit-logs', users.audit_logs, name='api-admin-audit-logs'),

    # Ops
    path('healthz', health.healthz, name='healthz'),
]
