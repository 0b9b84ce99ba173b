import os
from celery import Celery
from celery.schedules import crontab


os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'trustcore.settings')
app = Celery('trustcore')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()


# Define all beat schedules in one dictionary
app.conf.beat_schedule = {
    # ✅ Purge Behavior Memory entries past their retention horizon (Daily)
    'purge-expired-behavior-logs-every-day': {
        'task': 'apps.behavior.tasks.purge_expired_behavior_logs',
        'schedule': crontab(hour=3, minute=0),
    },

    # ✅ Apply moderator feedback to detector confidence rules (Hourly)
    'apply-moderation-feedback-every-hour': {
        'task': 'apps.detection.tasks.apply_moderation_feedback',
        'schedule': crontab(minute=15),
    },
}



# celery -A trustcore worker -l info
# celery -A trustcore beat -l info
