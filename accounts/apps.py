from django.apps import AppConfig, apps


class AccountsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'accounts'
    verbose_name = 'Accounts and sessions'

    def ready(self):
        from .sessions import SessionRegistry

        # One registry per process; consumers of the same browser share a manager.
        self.sessions = SessionRegistry()


def get_session_registry():
    return apps.get_app_config('accounts').sessions
