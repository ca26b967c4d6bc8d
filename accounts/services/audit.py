"""Append-only audit sink.

Writing an audit row must never break the operation being audited, so
failures are logged and swallowed here rather than at every call site.
"""
import logging
from typing import Any, Dict, Optional

from django.db import DatabaseError, transaction

from accounts.models import AuditEvent, User

logger = logging.getLogger(__name__)


def client_ip(request) -> Optional[str]:
    return request.META.get('REMOTE_ADDR') if request is not None else None


def log_action(
    *,
    actor: Optional[User],
    entity: str,
    action: str,
    entity_id: Any = '',
    details: Optional[Dict[str, Any]] = None,
    reason: str = '',
    severity: str = 'low',
    ip_address: Optional[str] = None,
) -> Optional[AuditEvent]:
    try:
        with transaction.atomic():
            return AuditEvent.objects.create(
                actor=actor if getattr(actor, 'pk', None) else None,
                entity=entity,
                entity_id=str(entity_id or ''),
                action=action,
                details=details or {},
                reason=reason,
                severity=severity,
                ip_address=ip_address,
            )
    except (DatabaseError, ValueError, TypeError):
        logger.exception("Audit write failed for %s on %s/%s", action, entity, entity_id)
        return None
