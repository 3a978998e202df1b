"""
Tests for apps.subscriptions.config and service wiring.
"""

from django.test import SimpleTestCase, override_settings

from apps.subscriptions import config
from apps.subscriptions.container import build_service_container


class SubscriptionConfigTestCase(SimpleTestCase):
    def test_defaults(self) -> None:
        self.assertEqual(config.get_plan_cache_ttl(), 300)
        self.assertEqual(config.get_subscription_cache_ttl(), 600)
        self.assertEqual(config.get_promo_cache_ttl(), 240)
        self.assertEqual(config.get_promo_validation_cache_ttl(), 120)
        self.assertEqual(config.get_analytics_cache_ttl(), 3600)
        self.assertEqual(config.get_cache_scan_batch_size(), 100)
        self.assertEqual(config.get_promo_page_size(), 10)

    @override_settings(SUBSCRIPTION_PLAN_CACHE_TTL="not-a-number")
    def test_invalid_value_falls_back_to_default(self) -> None:
        self.assertEqual(config.get_plan_cache_ttl(), 300)

    @override_settings(SUBSCRIPTION_CACHE_SCAN_BATCH_SIZE=0)
    def test_positive_values_are_clamped(self) -> None:
        self.assertEqual(config.get_cache_scan_batch_size(), 1)

    @override_settings(SUBSCRIPTION_MAX_TRIAL_DAYS=-5)
    def test_non_negative_values_are_clamped(self) -> None:
        self.assertEqual(config.get_max_trial_days(), 0)


class ServiceContainerTestCase(SimpleTestCase):
    def test_caches_are_namespaced(self) -> None:
        services = build_service_container()

        self.assertEqual(services.plans.cache.namespace, config.PLAN_CACHE_NAMESPACE)
        self.assertEqual(services.subscriptions.cache.namespace, config.SUBSCRIPTION_CACHE_NAMESPACE)
        self.assertEqual(services.promo_codes.cache.namespace, config.PROMO_CACHE_NAMESPACE)
        self.assertEqual(services.analytics.cache.namespace, config.ANALYTICS_CACHE_NAMESPACE)

    def test_promo_services_share_validator(self) -> None:
        services = build_service_container()

        self.assertIs(services.promo_codes.validator, services.promo_validator)
        self.assertIs(services.subscriptions.promo_validator, services.promo_validator)
        self.assertIs(services.promo_codes.subscription_service, services.subscriptions)
