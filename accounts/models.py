"""
Database models for the accounts application.

``User`` is the profile row joined against the identity issued by the
hosted auth provider: its primary key is the provider's user id, and it
adds the role and approval status the provider does not know about.
Rows are never hard-deleted; ``deleted_at`` is a tombstone.
``AuditEvent`` is the append-only audit log.
"""
from __future__ import annotations

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models

from .roles import Role, Status


class User(AbstractUser):
    """Application profile for an authenticated principal.

    ``username`` mirrors ``email`` so that the Django admin keeps working;
    passwords live with the auth provider and the local password field is
    unusable for everyone except staff created through ``createsuperuser``.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=255, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.PATIENT, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['role', 'status'], name='accounts_user_role_status'),
        ]

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def has_active_status(self) -> bool:
        return self.status == Status.ACTIVE and not self.is_deleted

    def display_name(self) -> str:
        return self.full_name or self.email

    def __str__(self) -> str:
        return f"{self.email} ({self.role}, {self.status})"


class AuditEvent(models.Model):
    SEVERITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    ]
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_events')
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64, blank=True)
    action = models.CharField(max_length=64)
    details = models.JSONField(default=dict, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    severity = models.CharField(max_length=16, choices=SEVERITY_CHOICES, default='low')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['action', 'created_at'], name='accounts_audit_action'),
            models.Index(fields=['entity', 'entity_id', 'created_at'], name='accounts_audit_entity'),
        ]

    def __str__(self):
        return f"{self.action}:{self.entity}/{self.entity_id} by {self.actor_id}"
