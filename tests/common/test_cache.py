"""
Tests for apps.common.performance.cache.CacheService.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from django.core.cache import cache
from django.test import SimpleTestCase

from apps.common.performance.cache import CacheService


class CacheServiceBasicsTestCase(SimpleTestCase):
    """Get/set/delete with namespacing and fail-open reads."""

    def setUp(self) -> None:
        cache.clear()
        self.plans = CacheService("subscription:plans:")
        self.promos = CacheService("subscription:promos:")

    def test_set_then_get_returns_value(self) -> None:
        self.assertTrue(self.plans.set("plan:1", {"name": "Pro"}, 60))
        self.assertEqual(self.plans.get("plan:1"), {"name": "Pro"})

    def test_namespaces_do_not_collide(self) -> None:
        self.plans.set("key", "plan-value", 60)
        self.promos.set("key", "promo-value", 60)

        self.assertEqual(self.plans.get("key"), "plan-value")
        self.assertEqual(self.promos.get("key"), "promo-value")
        self.assertEqual(cache.get("subscription:plans:key"), "plan-value")

    def test_missing_key_returns_default(self) -> None:
        self.assertIsNone(self.plans.get("absent"))
        self.assertEqual(self.plans.get("absent", default=[]), [])

    def test_delete_removes_only_that_key(self) -> None:
        self.plans.set("a", 1, 60)
        self.plans.set("b", 2, 60)

        self.assertTrue(self.plans.delete("a"))

        self.assertIsNone(self.plans.get("a"))
        self.assertEqual(self.plans.get("b"), 2)

    def test_delete_many(self) -> None:
        for key in ("a", "b", "c"):
            self.plans.set(key, key, 60)

        self.assertTrue(self.plans.delete_many(["a", "b"]))

        self.assertIsNone(self.plans.get("a"))
        self.assertIsNone(self.plans.get("b"))
        self.assertEqual(self.plans.get("c"), "c")

    def test_delete_many_with_no_keys_is_noop(self) -> None:
        self.assertTrue(self.plans.delete_many([]))

    def test_get_or_set_computes_once(self) -> None:
        factory = MagicMock(return_value=[1, 2, 3])

        first = self.plans.get_or_set("computed", factory, 60)
        second = self.plans.get_or_set("computed", factory, 60)

        self.assertEqual(first, [1, 2, 3])
        self.assertEqual(second, [1, 2, 3])
        factory.assert_called_once()

    def test_get_failure_is_reported_as_miss(self) -> None:
        with patch.object(self.plans._cache, "get", side_effect=ConnectionError("redis down")):
            self.assertIsNone(self.plans.get("plan:1"))
            self.assertEqual(self.plans.get("plan:1", default="fallback"), "fallback")

    def test_set_failure_returns_false(self) -> None:
        with patch.object(self.plans._cache, "set", side_effect=ConnectionError("redis down")):
            self.assertFalse(self.plans.set("plan:1", "value", 60))

    def test_delete_failure_returns_false(self) -> None:
        with patch.object(self.plans._cache, "delete", side_effect=ConnectionError("redis down")):
            self.assertFalse(self.plans.delete("plan:1"))


class CacheServicePatternDeleteTestCase(SimpleTestCase):
    """Pattern deletion through the backend's key scan."""

    def setUp(self) -> None:
        cache.clear()
        self.plans = CacheService("subscription:plans:")
        self.promos = CacheService("subscription:promos:")

    def test_deletes_matching_keys_within_namespace(self) -> None:
        self.plans.set("plans:list:aaa", 1, 60)
        self.plans.set("plans:list:bbb", 2, 60)
        self.plans.set("plan:42", 3, 60)
        self.promos.set("plans:list:aaa", 4, 60)

        deleted = self.plans.delete_pattern("plans:*")

        self.assertEqual(deleted, 2)
        self.assertIsNone(self.plans.get("plans:list:aaa"))
        self.assertIsNone(self.plans.get("plans:list:bbb"))
        self.assertEqual(self.plans.get("plan:42"), 3)
        self.assertEqual(self.promos.get("plans:list:aaa"), 4)

    def test_deletes_in_batches(self) -> None:
        for i in range(7):
            self.plans.set(f"plans:list:{i}", i, 60)

        with patch.object(self.plans._cache, "delete_many", wraps=self.plans._cache.delete_many) as delete_many:
            deleted = self.plans.delete_pattern("plans:*", batch_size=3)

        self.assertEqual(deleted, 7)
        self.assertEqual([len(call.args[0]) for call in delete_many.call_args_list], [3, 3, 1])

    def test_no_matches_deletes_nothing(self) -> None:
        self.plans.set("plan:1", 1, 60)

        self.assertEqual(self.plans.delete_pattern("plans:*"), 0)
        self.assertEqual(self.plans.get("plan:1"), 1)

    def test_backend_without_key_scan_deletes_nothing(self) -> None:
        backend = MagicMock(spec=["get", "set", "delete", "delete_many"])
        with patch.object(self.plans, "_cache", backend):
            self.assertEqual(self.plans.delete_pattern("plans:*"), 0)
        backend.delete_many.assert_not_called()

    def test_scan_failure_returns_partial_count(self) -> None:
        def failing_scan(pattern, itersize=None):
            yield "subscription:plans:plans:list:1"
            raise ConnectionError("scan interrupted")

        backend = MagicMock()
        backend.iter_keys.side_effect = failing_scan
        with patch.object(self.plans, "_cache", backend):
            deleted = self.plans.delete_pattern("plans:*", batch_size=1)

        self.assertEqual(deleted, 1)
        backend.delete_many.assert_called_once_with(["subscription:plans:plans:list:1"])
