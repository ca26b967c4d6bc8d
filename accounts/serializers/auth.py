from rest_framework import serializers

from accounts.roles import SIGNUP_ROLES

MIN_PASSWORD_LENGTH = 8


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False)

    def validate_email(self, v):
        return (v or '').strip().lower()

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required')
        return v


class _NewAccountSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False, min_length=MIN_PASSWORD_LENGTH)
    confirm_password = serializers.CharField(trim_whitespace=False)

    def validate_email(self, v):
        return (v or '').strip().lower()

    def validate(self, attrs):
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError({'confirm_password': 'Passwords do not match'})
        return attrs


class SignupSerializer(_NewAccountSerializer):
    role = serializers.ChoiceField(choices=[r.value for r in sorted(SIGNUP_ROLES)])


class SetupSerializer(_NewAccountSerializer):
    pass
