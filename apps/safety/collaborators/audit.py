# apps/safety/collaborators/audit.py

import logging

from django.db import transaction

from apps.safety.collaborators.base import load_collaborator

logger = logging.getLogger(__name__)


class AuditSink:
    """Write-only audit contract."""

    def record(self, event_type: str, user_id: str, affected_user_id=None, details=None) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    def record(self, event_type, user_id, affected_user_id=None, details=None):
        from apps.safety.models import SafetyAuditLog

        SafetyAuditLog.objects.create(
            event_type=event_type,
            user_id=str(user_id),
            affected_user_id=str(affected_user_id) if affected_user_id else None,
            details=details or {},
        )


def get_audit_sink() -> AuditSink:
    return load_collaborator("AUDIT_SINK")


def record_audit_event(event_type: str, user_id: str, affected_user_id=None, details=None) -> bool:
    """
    Best-effort: an audit failure never breaks the decision being audited.
    The write runs in its own savepoint.
    """
    try:
        with transaction.atomic():
            get_audit_sink().record(event_type, user_id, affected_user_id, details or {})
        return True
    except Exception:
        logger.warning("[Sinks] audit record failed event=%s user=%s", event_type, user_id, exc_info=True)
        return False
