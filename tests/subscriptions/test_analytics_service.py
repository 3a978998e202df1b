"""
Tests for apps.subscriptions.analytics_service.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from apps.common.types import ValidationError
from apps.subscriptions.analytics_service import (
    calculate_ltv,
    calculate_mrr,
    monthly_rate,
    percentage,
    plan_distribution,
)
from apps.subscriptions.container import build_service_container
from apps.subscriptions.models import Subscription, SubscriptionPlan
from tests.helpers.factories import make_app, make_plan


def subscribe(plan: SubscriptionPlan, user_id: str, status: str, started_days_ago: int, ends_in_days: int, **extra):
    now = timezone.now()
    return Subscription.objects.create(
        user_id=user_id,
        plan=plan,
        app=plan.app,
        status=status,
        billing_cycle=plan.billing_cycle,
        start_date=now - timedelta(days=started_days_ago),
        end_date=now + timedelta(days=ends_in_days),
        amount=plan.price,
        **extra,
    )


class AnalyticsCalculationTestCase(SimpleTestCase):
    """Pure metric helpers."""

    def test_monthly_rate_normalizes_cycles(self) -> None:
        self.assertEqual(monthly_rate(Decimal("1200"), "yearly"), Decimal("100"))
        self.assertEqual(monthly_rate(Decimal("300"), "quarterly"), Decimal("100"))
        self.assertEqual(monthly_rate(Decimal("100"), "monthly"), Decimal("100"))

    def test_mrr(self) -> None:
        monthly = SubscriptionPlan(price=Decimal("100.00"), billing_cycle="monthly")
        yearly = SubscriptionPlan(price=Decimal("1000.00"), billing_cycle="yearly")

        self.assertEqual(calculate_mrr([(monthly, 2), (yearly, 3)]), Decimal("450.00"))

    def test_percentage_of_zero_is_zero(self) -> None:
        self.assertEqual(percentage(5, 0), Decimal("0.00"))
        self.assertEqual(percentage(1, 3), Decimal("33.33"))

    def test_ltv_without_churn_is_zero(self) -> None:
        self.assertEqual(calculate_ltv(Decimal("100.00"), Decimal("0.00")), Decimal("0.00"))
        self.assertEqual(calculate_ltv(Decimal("100.00"), Decimal("20.00")), Decimal("500.00"))

    def test_plan_distribution_merges_same_names(self) -> None:
        first = SubscriptionPlan(name="Pro")
        second = SubscriptionPlan(name="Pro")
        basic = SubscriptionPlan(name="Basic")

        distribution = plan_distribution([(first, 1), (second, 2), (basic, 1)])

        self.assertEqual(distribution["Pro"], {"count": 3, "percentage": Decimal("75.00")})
        self.assertEqual(distribution["Basic"], {"count": 1, "percentage": Decimal("25.00")})


class SubscriptionAnalyticsServiceTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().analytics
        self.app = make_app("Acme")
        self.basic = make_plan(self.app, name="Basic", price="100.00")
        self.pro = make_plan(self.app, name="Pro", price="1200.00", billing_cycle="yearly")
        self.trial = make_plan(self.app, name="Trial", price="300.00", trial_days=7)

        subscribe(self.basic, "user-1", Subscription.STATUS_ACTIVE, 10, 20)
        subscribe(self.pro, "user-2", Subscription.STATUS_ACTIVE, 5, 360)
        subscribe(self.basic, "user-3", Subscription.STATUS_CANCELED, 20, -1)
        subscribe(
            self.trial,
            "user-4",
            Subscription.STATUS_ACTIVE,
            3,
            27,
            trial_end_date=timezone.now() + timedelta(days=4),
        )
        subscribe(self.trial, "user-5", Subscription.STATUS_TRIALING, 1, 29)

        today = timezone.now().date()
        self.start = today - timedelta(days=30)
        self.end = today

    def test_metrics(self) -> None:
        analytics = self.service.get_analytics(self.start, self.end)

        self.assertEqual(analytics["total_subscribers"], 5)
        self.assertEqual(analytics["active_subscriptions"], 3)
        self.assertEqual(analytics["new_subscribers"], 5)
        self.assertEqual(analytics["churned"], 1)
        self.assertEqual(analytics["free_trial_conversions"], 1)
        self.assertEqual(analytics["monthly_recurring_revenue"], Decimal("500.00"))
        self.assertEqual(analytics["annual_recurring_revenue"], Decimal("6000.00"))
        self.assertEqual(analytics["average_revenue_per_user"], Decimal("100.00"))
        self.assertEqual(analytics["churn_rate"], Decimal("20.00"))
        self.assertEqual(analytics["conversion_rate"], Decimal("20.00"))
        self.assertEqual(analytics["trial_conversion_rate"], Decimal("50.00"))
        self.assertEqual(analytics["lifetime_value"], Decimal("500.00"))

    def test_plan_distribution(self) -> None:
        distribution = self.service.get_analytics(self.start, self.end)["plan_distribution"]

        self.assertEqual(distribution["Basic"], {"count": 2, "percentage": Decimal("40.00")})
        self.assertEqual(distribution["Pro"], {"count": 1, "percentage": Decimal("20.00")})
        self.assertEqual(distribution["Trial"], {"count": 2, "percentage": Decimal("40.00")})

    def test_app_filter(self) -> None:
        other_app = make_app("Other")
        other_plan = make_plan(other_app, name="Other Pro", price="50.00")
        subscribe(other_plan, "user-9", Subscription.STATUS_ACTIVE, 2, 28)

        scoped = self.service.get_analytics(self.start, self.end, app_id=str(self.app.id))
        everything = self.service.get_analytics(self.start, self.end)

        self.assertEqual(scoped["total_subscribers"], 5)
        self.assertEqual(everything["total_subscribers"], 6)
        self.assertNotIn("Other Pro", scoped["plan_distribution"])

    def test_empty_range(self) -> None:
        long_ago = self.start - timedelta(days=400)

        analytics = self.service.get_analytics(long_ago, long_ago + timedelta(days=1))

        self.assertEqual(analytics["total_subscribers"], 0)
        self.assertEqual(analytics["monthly_recurring_revenue"], Decimal("0.00"))
        self.assertEqual(analytics["average_revenue_per_user"], Decimal("0.00"))
        self.assertEqual(analytics["lifetime_value"], Decimal("0.00"))
        self.assertEqual(analytics["plan_distribution"], {})

    def test_results_are_cached(self) -> None:
        first = self.service.get_analytics(self.start, self.end)
        subscribe(self.basic, "user-6", Subscription.STATUS_ACTIVE, 1, 29)

        second = self.service.get_analytics(self.start, self.end)

        self.assertEqual(first, second)
        fresh = self.service.calculate_analytics(timezone.now() - timedelta(days=30), timezone.now() + timedelta(days=1))
        self.assertEqual(fresh["total_subscribers"], 6)

    def test_end_before_start_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.get_analytics(self.end, self.start)
