"""
Django admin registrations for profiles and audit events.

Approval happens through the superadmin console and API; the admin site
is for inspection, so audit events are read-only here.
"""

from django.contrib import admin

from .models import AuditEvent, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('email', 'full_name', 'role', 'status', 'created_at', 'deleted_at')
    list_filter = ('role', 'status')
    search_fields = ('email', 'full_name')
    readonly_fields = ('id', 'created_at', 'updated_at')
    exclude = ('password',)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'entity', 'entity_id', 'actor', 'severity')
    list_filter = ('action', 'severity', 'entity')
    search_fields = ('entity_id', 'actor__email', 'reason')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
