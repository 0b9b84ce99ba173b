# apps/safety/collaborators/base.py

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string


def load_collaborator(key: str):
    """
    Instantiate the collaborator configured under settings.SAFETY_COLLABORATORS[key].
    Resolved on every call so override_settings swaps implementations in tests.
    """
    paths = getattr(settings, "SAFETY_COLLABORATORS", {}) or {}
    path = paths.get(key)
    if not path:
        raise ImproperlyConfigured(f"SAFETY_COLLABORATORS['{key}'] is not configured.")
    return import_string(path)()
