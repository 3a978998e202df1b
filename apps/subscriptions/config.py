"""
Centralized subscription configuration.

Cache lifetimes, cache namespaces and business limits used by the plan,
subscription, promo code and analytics services are defined here.
"""

import logging

from django.conf import settings

logger = logging.getLogger(__name__)

# ===============================================================================
# HELPER: SAFE VALUE PARSING
# ===============================================================================


def _get_positive_int(setting_name: str, default: int) -> int:
    """Get a positive integer from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using default %d", setting_name, value, default)
        result = default
    return max(1, result)  # Ensure at least 1


def _get_non_negative_int(setting_name: str, default: int) -> int:
    """Get a non-negative integer from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using default %d", setting_name, value, default)
        result = default
    return max(0, result)


# ===============================================================================
# CACHE NAMESPACES
# ===============================================================================

PLAN_CACHE_NAMESPACE = "subscription:plans:"
SUBSCRIPTION_CACHE_NAMESPACE = "subscription:user-subscriptions:"
PROMO_CACHE_NAMESPACE = "subscription:promos:"
ANALYTICS_CACHE_NAMESPACE = "subscription:analytics:"


# ===============================================================================
# CACHE LIFETIMES (seconds)
# ===============================================================================


def get_plan_cache_ttl() -> int:
    """Plan entries stay short-lived so admin edits propagate quickly."""
    return _get_positive_int("SUBSCRIPTION_PLAN_CACHE_TTL", 300)


def get_subscription_cache_ttl() -> int:
    return _get_positive_int("SUBSCRIPTION_USER_CACHE_TTL", 600)


def get_promo_cache_ttl() -> int:
    return _get_positive_int("SUBSCRIPTION_PROMO_CACHE_TTL", 240)


def get_promo_validation_cache_ttl() -> int:
    """Validation verdicts are advisory; a short lifetime bounds staleness of usage counts."""
    return _get_positive_int("SUBSCRIPTION_PROMO_VALIDATION_CACHE_TTL", 120)


def get_analytics_cache_ttl() -> int:
    return _get_positive_int("SUBSCRIPTION_ANALYTICS_CACHE_TTL", 3600)


def get_cache_scan_batch_size() -> int:
    return _get_positive_int("SUBSCRIPTION_CACHE_SCAN_BATCH_SIZE", 100)


# ===============================================================================
# BUSINESS LIMITS
# ===============================================================================


def get_promo_page_size() -> int:
    return _get_positive_int("SUBSCRIPTION_PROMO_PAGE_SIZE", 10)


def get_max_trial_days() -> int:
    return _get_non_negative_int("SUBSCRIPTION_MAX_TRIAL_DAYS", 30)


def get_default_currency() -> str:
    """Currency for plans created without an explicit one."""
    currency = getattr(settings, "SUBSCRIPTION_DEFAULT_CURRENCY", "") or "INR"
    return str(currency).strip().upper()

PLAN_NAME_MAX_LENGTH = 100
FEATURE_NAME_MAX_LENGTH = 100
