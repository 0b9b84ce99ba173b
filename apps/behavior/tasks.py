# apps/behavior/tasks.py

from celery import shared_task
import logging

from apps.behavior.services.memory import purge_expired_entries

logger = logging.getLogger(__name__)


# Drop behavior memory older than the retention window -------------------------------------------
@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def purge_expired_behavior_logs(self, cursor=None):
    """
    Daily. Deletes one bounded page and re-enqueues itself with the
    continuation cursor while more expired rows remain.
    """
    try:
        deleted, next_cursor = purge_expired_entries(cursor=cursor)
    except Exception as e:
        logger.error("[Behavior][Task] purge crashed (cursor=%s)", cursor, exc_info=True)
        raise self.retry(exc=e)

    if next_cursor:
        purge_expired_behavior_logs.apply_async(kwargs={"cursor": next_cursor})

    logger.info("[Behavior][Task] purged=%d next_cursor=%s", deleted, next_cursor)
    return {"deleted": deleted, "next_cursor": next_cursor}
