"""
Service wiring for the subscription platform.

Builds every service once, with its namespaced cache, so request handlers
receive explicit instances instead of reaching for module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass

from apps.common.performance.cache import CacheService
from apps.promotions.services import PromoCodeService
from apps.promotions.validation import PromoCodeValidator

from . import config
from .analytics_service import SubscriptionAnalyticsService
from .plan_service import PlanService
from .subscription_service import SubscriptionService


@dataclass(frozen=True)
class ServiceContainer:
    plans: PlanService
    subscriptions: SubscriptionService
    promo_validator: PromoCodeValidator
    promo_codes: PromoCodeService
    analytics: SubscriptionAnalyticsService


def build_service_container(cache_alias: str = "default") -> ServiceContainer:
    """Construct the services, sharing one cache backend across separate namespaces."""
    promo_cache = CacheService(config.PROMO_CACHE_NAMESPACE, cache_alias)
    promo_validator = PromoCodeValidator(promo_cache)
    subscriptions = SubscriptionService(
        CacheService(config.SUBSCRIPTION_CACHE_NAMESPACE, cache_alias),
        promo_validator=promo_validator,
    )
    return ServiceContainer(
        plans=PlanService(CacheService(config.PLAN_CACHE_NAMESPACE, cache_alias)),
        subscriptions=subscriptions,
        promo_validator=promo_validator,
        promo_codes=PromoCodeService(promo_cache, promo_validator, subscription_service=subscriptions),
        analytics=SubscriptionAnalyticsService(CacheService(config.ANALYTICS_CACHE_NAMESPACE, cache_alias)),
    )
