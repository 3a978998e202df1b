"""
Django settings for the subscription platform - Base Configuration.
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    "django.contrib.contenttypes",
]

LOCAL_APPS: list[str] = [
    "apps.subscriptions",
    "apps.promotions",
]

INSTALLED_APPS: list[str] = DJANGO_APPS + LOCAL_APPS

MIDDLEWARE: list[str] = []

# ===============================================================================
# DATABASE CONFIGURATION
# ===============================================================================

DATABASES: dict[str, dict[str, Any]] = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "subscriptions"),
        "USER": os.environ.get("DB_USER", "subscriptions"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "development_password"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": 60,  # Database connection pooling
        "OPTIONS": {
            "application_name": "subscription_core",
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ===============================================================================
# INTERNATIONALIZATION
# ===============================================================================

LANGUAGE_CODE = "en"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# ===============================================================================
# SECURITY SETTINGS (Base - override in prod.py)
# ===============================================================================

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings

    warnings.warn(
        "Using default SECRET_KEY. Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2,
    )
    SECRET_KEY = "django-insecure-dev-key-only-change-in-production-or-tests"  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith("django-insecure-"):
        raise ValueError("Cannot use insecure SECRET_KEY in production! Set DJANGO_SECRET_KEY.")


# ===============================================================================
# REDIS CACHE CONFIGURATION 🔄
# ===============================================================================

CACHE_VERSION = int(os.environ.get("CACHE_VERSION", "1"))
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/1")

CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            "SOCKET_CONNECT_TIMEOUT": 5,
            "SOCKET_TIMEOUT": 5,
            "CONNECTION_POOL_KWARGS": {
                "max_connections": 50,
                "retry_on_timeout": True,
            },
            "COMPRESSOR": "django_redis.compressors.zlib.ZlibCompressor",
        },
        "KEY_PREFIX": "subs",
        "VERSION": CACHE_VERSION,
        "TIMEOUT": 300,
    }
}

# ===============================================================================
# SUBSCRIPTION CORE SETTINGS
# ===============================================================================

SUBSCRIPTION_PLAN_CACHE_TTL = int(os.environ.get("SUBSCRIPTION_PLAN_CACHE_TTL", "300"))
SUBSCRIPTION_USER_CACHE_TTL = int(os.environ.get("SUBSCRIPTION_USER_CACHE_TTL", "600"))
SUBSCRIPTION_PROMO_CACHE_TTL = int(os.environ.get("SUBSCRIPTION_PROMO_CACHE_TTL", "240"))
SUBSCRIPTION_PROMO_VALIDATION_CACHE_TTL = int(os.environ.get("SUBSCRIPTION_PROMO_VALIDATION_CACHE_TTL", "120"))
SUBSCRIPTION_ANALYTICS_CACHE_TTL = int(os.environ.get("SUBSCRIPTION_ANALYTICS_CACHE_TTL", "3600"))
SUBSCRIPTION_CACHE_SCAN_BATCH_SIZE = 100
SUBSCRIPTION_PROMO_PAGE_SIZE = 10
SUBSCRIPTION_MAX_TRIAL_DAYS = 30
SUBSCRIPTION_DEFAULT_CURRENCY = os.environ.get("SUBSCRIPTION_DEFAULT_CURRENCY", "INR")

# ===============================================================================
# LOGGING
# ===============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {process:d} {thread:d} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "apps": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
