# apps/detection/tasks.py

from celery import shared_task
import logging

from apps.detection.services.confidence import apply_pending_feedback

logger = logging.getLogger(__name__)


# Fold moderator feedback into confidence rules ---------------------------------------------------
@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def apply_moderation_feedback(self, cursor=None):
    """
    Hourly. Processes one page of event types and re-enqueues itself with the
    continuation cursor until the sweep is done.
    """
    try:
        result = apply_pending_feedback(cursor=cursor)
    except Exception as e:
        logger.error("[Confidence][Task] feedback sweep crashed (cursor=%s)", cursor, exc_info=True)
        raise self.retry(exc=e)

    if result["next_cursor"]:
        apply_moderation_feedback.apply_async(kwargs={"cursor": result["next_cursor"]})

    logger.info("[Confidence][Task] %s", result)
    return result
