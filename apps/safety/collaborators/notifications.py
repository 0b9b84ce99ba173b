# apps/safety/collaborators/notifications.py

import logging

from django.db import transaction

from apps.safety.constants import PRIORITY_MEDIUM
from apps.safety.collaborators.base import load_collaborator

logger = logging.getLogger(__name__)


class NotificationSink:
    def notify(self, user_id: str, category: str, title: str, body: str, priority: str = PRIORITY_MEDIUM) -> None:
        raise NotImplementedError


class OutboxNotificationSink(NotificationSink):
    """Queues the notification in the local outbox table."""

    def notify(self, user_id, category, title, body, priority=PRIORITY_MEDIUM):
        from apps.safety.models import SafetyNotification

        SafetyNotification.objects.create(
            user_id=str(user_id),
            category=category,
            title=title[:120],
            body=body,
            priority=priority,
        )


def get_notification_sink() -> NotificationSink:
    return load_collaborator("NOTIFICATION_SINK")


def send_safety_notification(*, user_id, category, title, body, priority=PRIORITY_MEDIUM) -> bool:
    try:
        with transaction.atomic():
            get_notification_sink().notify(user_id, category, title, body, priority)
        return True
    except Exception:
        logger.warning("[Sinks] notification failed user=%s category=%s", user_id, category, exc_info=True)
        return False
