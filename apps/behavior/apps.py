from django.apps import AppConfig


class BehaviorConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.behavior'
    verbose_name = 'Long-Term Behavior Memory'
