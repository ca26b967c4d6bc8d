from rest_framework import serializers

from accounts.models import AuditEvent, User
from accounts.timeutils import format_eat_display


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'email', 'full_name', 'role', 'status', 'created_at', 'updated_at']
        read_only_fields = fields


class UserActionSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class AuditEventSerializer(serializers.ModelSerializer):
    actor_email = serializers.SerializerMethodField()
    created_at_eat = serializers.SerializerMethodField()

    class Meta:
        model = AuditEvent
        fields = ['id', 'actor', 'actor_email', 'entity', 'entity_id', 'action', 'details',
                  'reason', 'severity', 'ip_address', 'created_at', 'created_at_eat']

    def get_actor_email(self, obj):
        return obj.actor.email if obj.actor_id else None

    def get_created_at_eat(self, obj):
        return format_eat_display(obj.created_at)
