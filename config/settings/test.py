"""
Test settings for the subscription platform
Fast, isolated testing environment.
"""

import os

from .base import *  # noqa: F403

# ===============================================================================
# TEST FLAGS
# ===============================================================================

DEBUG = False

# ===============================================================================
# TEST DATABASE (In-memory for speed)
# ===============================================================================

# TEST_DB_ENGINE=postgresql keeps the PostgreSQL database from base.py for the threaded redemption tests
if os.environ.get("TEST_DB_ENGINE") == "postgresql":
    DATABASES["default"]["NAME"] = os.environ.get("TEST_DB_NAME", "subscriptions_test")  # noqa: F405
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
            "OPTIONS": {
                "timeout": 20,
            },
            "TEST": {
                "NAME": ":memory:",
                "SERIALIZE": False,
            },
        }
    }

# ===============================================================================
# TEST CACHE (Local memory with key scanning)
# ===============================================================================

CACHES = {
    "default": {
        "BACKEND": "tests.helpers.cache.ScanningLocMemCache",
        "LOCATION": "test-cache",
    }
}

# ===============================================================================
# DISABLE MIGRATIONS FOR FASTER TESTS
# ===============================================================================


class DisableMigrations:
    def __contains__(self, item: str) -> bool:
        return True

    def __getitem__(self, item: str) -> None:
        return None


MIGRATION_MODULES = DisableMigrations()

# ===============================================================================
# LOGGING (Minimal for tests)
# ===============================================================================

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "null": {
            "class": "logging.NullHandler",
        },
    },
    "root": {
        "handlers": ["null"],
        "level": "CRITICAL",
    },
}

# ===============================================================================
# SECURITY (Relaxed for tests)
# ===============================================================================

SECRET_KEY = "django-test-key-not-secure"  # noqa: S105
ALLOWED_HOSTS = ["testserver", "localhost", "127.0.0.1"]

# Explicit test flag
TESTING = True
