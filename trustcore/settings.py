# trustcore/settings.py

import os
import sys
from datetime import timedelta
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


TESTING = "test" in sys.argv or "pytest" in sys.modules or _env_bool("DJANGO_TEST")

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "trustcore-insecure-dev-key")
DEBUG = _env_bool("DJANGO_DEBUG", default=False)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]


# Application definition ---------------------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    "rest_framework",
    "rest_framework_simplejwt",

    "apps.safety",
    "apps.consent",
    "apps.detection",
    "apps.shield",
    "apps.behavior",
    "apps.risk",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "trustcore.urls"
WSGI_APPLICATION = "trustcore.wsgi.application"
ASGI_APPLICATION = "trustcore.asgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database ------------------------------------------------------------------------------
if os.environ.get("POSTGRES_DB") and not TESTING:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", ""),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"


# Cache (django-ratelimit keeps its counters here) -------------------------------------
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

if TESTING or not os.environ.get("REDIS_URL"):
    CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_URL,
        }
    }

RATELIMIT_ENABLE = not TESTING


# REST framework ------------------------------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "EXCEPTION_HANDLER": "apps.safety.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
}


# Celery --------------------------------------------------------------------------------
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ALWAYS_EAGER = TESTING
CELERY_TASK_EAGER_PROPAGATES = TESTING


# Trust & safety ------------------------------------------------------------------------
# Overrides merged on top of the per-app constants (see apps.safety.policy).
# Example: {"shield": {"critical_threshold": 80}, "orchestrator": {"provider_timeout_seconds": 1.5}}
SAFETY_POLICY = {}

SAFETY_COLLABORATORS = {
    "NOTIFICATION_SINK": "apps.safety.collaborators.notifications.OutboxNotificationSink",
    "CASE_SINK": "apps.safety.collaborators.cases.DatabaseCaseSink",
    "ENFORCEMENT_SINK": "apps.safety.collaborators.enforcement.DatabaseEnforcementSink",
    "AUDIT_SINK": "apps.safety.collaborators.audit.DatabaseAuditSink",
}

SAFETY_SIGNAL_PROVIDERS = [
    "apps.risk.services.providers.TrustEngineProvider",
    "apps.risk.services.providers.EnforcementStateProvider",
    "apps.risk.services.providers.NSFWClassifierProvider",
    "apps.risk.services.providers.BehaviorPatternProvider",
    "apps.risk.services.providers.FraudAttemptProvider",
    "apps.risk.services.providers.ConsentViolationProvider",
    "apps.risk.services.providers.RegionSafetyProvider",
]

# External signal providers (empty base URL => provider reports no signal)
TRUST_ENGINE_BASE_URL = os.environ.get("TRUST_ENGINE_BASE_URL", "")
NSFW_CLASSIFIER_BASE_URL = os.environ.get("NSFW_CLASSIFIER_BASE_URL", "")
FRAUD_DETECTION_BASE_URL = os.environ.get("FRAUD_DETECTION_BASE_URL", "")
REGION_POLICY_BASE_URL = os.environ.get("REGION_POLICY_BASE_URL", "")
SIGNAL_PROVIDER_API_KEY = os.environ.get("SIGNAL_PROVIDER_API_KEY", "")


# Logging -------------------------------------------------------------------------------
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "apps": {
            "handlers": ["console"],
            "level": os.environ.get("TRUSTCORE_LOG_LEVEL", "WARNING" if TESTING else "INFO"),
            "propagate": False,
        },
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}
