# ===============================================================================
# PYTEST CONFIGURATION FOR THE SUBSCRIPTION PLATFORM
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- tests/helpers/ holds shared factories and the scanning test cache

Test Discovery:
- Run specific app tests: pytest tests/promotions/
- Run all tests: pytest tests/
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.test")

    # Configure Django
    django.setup()


# ===============================================================================
# PYTEST FIXTURES
# ===============================================================================

import pytest  # noqa: E402
from django.core.cache import cache  # noqa: E402


@pytest.fixture(autouse=True)
def clear_cache():
    """Every test starts with an empty cache"""
    cache.clear()
    yield
    cache.clear()
