from django.apps import AppConfig


class ShieldConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.shield'
    verbose_name = 'Harassment Shield'
