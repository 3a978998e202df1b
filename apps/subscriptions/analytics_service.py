"""
Subscription analytics for the subscription platform
Read-only revenue and churn metrics over a date range.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import TypedDict

from django.db.models import Count, Q, QuerySet
from django.utils import timezone

from apps.common.performance.cache import CacheService
from apps.common.types import ValidationError

from . import config
from .models import BILLING_CYCLE_MONTHS, Subscription, SubscriptionPlan

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


# ===============================================================================
# TYPE DEFINITIONS
# ===============================================================================


class PlanShare(TypedDict):
    count: int
    percentage: Decimal


class SubscriptionAnalytics(TypedDict):
    """Metrics for one date range."""

    total_subscribers: int
    active_subscriptions: int
    monthly_recurring_revenue: Decimal
    annual_recurring_revenue: Decimal
    average_revenue_per_user: Decimal
    churn_rate: Decimal
    new_subscribers: int
    churned: int
    conversion_rate: Decimal
    trial_conversion_rate: Decimal
    lifetime_value: Decimal
    plan_distribution: dict[str, PlanShare]
    free_trial_conversions: int


# ===============================================================================
# PURE CALCULATIONS
# ===============================================================================


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def monthly_rate(price: Decimal, billing_cycle: str) -> Decimal:
    """Price of one period normalized to a month."""
    return Decimal(price) / BILLING_CYCLE_MONTHS.get(billing_cycle, 1)


def calculate_mrr(plan_counts: Iterable[tuple[SubscriptionPlan, int]]) -> Decimal:
    return _money(sum((monthly_rate(plan.price, plan.billing_cycle) * count for plan, count in plan_counts), ZERO))


def percentage(part: int | Decimal, whole: int | Decimal) -> Decimal:
    """``part`` as a percentage of ``whole``, 0 when ``whole`` is 0."""
    if not whole:
        return ZERO
    return _money(Decimal(part) / Decimal(whole) * HUNDRED)


def calculate_ltv(arpu: Decimal, churn_rate: Decimal) -> Decimal:
    """ARPU over the churn fraction; 0 when nobody churned."""
    if churn_rate <= 0:
        return ZERO
    return _money(arpu / (churn_rate / HUNDRED))


def plan_distribution(plan_counts: Iterable[tuple[SubscriptionPlan, int]]) -> dict[str, PlanShare]:
    plan_counts = list(plan_counts)
    total = sum(count for _, count in plan_counts)
    distribution: dict[str, PlanShare] = {}
    for plan, count in plan_counts:
        share = distribution.setdefault(plan.name, {"count": 0, "percentage": ZERO})
        share["count"] += count
    for share in distribution.values():
        share["percentage"] = percentage(share["count"], total)
    return distribution


# ===============================================================================
# ANALYTICS SERVICE
# ===============================================================================


class SubscriptionAnalyticsService:
    """
    Computes subscription metrics for a date range, optionally per app.

    Results are cached per (start, end, app) for the analytics lifetime;
    nothing here mutates state.
    """

    def __init__(self, cache: CacheService) -> None:
        self.cache = cache

    def get_analytics(
        self,
        start_date: date | datetime,
        end_date: date | datetime,
        app_id: str | None = None,
    ) -> SubscriptionAnalytics:
        start = _as_datetime(start_date, time.min)
        end = _as_datetime(end_date, time.max)
        if end < start:
            raise ValidationError("End date must not be before start date", field="end_date")

        cache_key = f"range:{start.isoformat()}:{end.isoformat()}:{app_id or 'all'}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        analytics = self.calculate_analytics(start, end, app_id)
        self.cache.set(cache_key, analytics, config.get_analytics_cache_ttl())
        return analytics

    def calculate_analytics(self, start: datetime, end: datetime, app_id: str | None = None) -> SubscriptionAnalytics:
        subscriptions = Subscription.objects.all()
        if app_id:
            subscriptions = subscriptions.filter(app_id=app_id)
        overlapping = subscriptions.filter(start_date__lte=end, end_date__gte=start)

        total_subscribers = (
            subscriptions.filter(created_at__range=(start, end)).values("user_id").distinct().count()
        )
        active_subscriptions = overlapping.filter(status=Subscription.STATUS_ACTIVE).count()
        new_subscribers = subscriptions.filter(start_date__range=(start, end)).count()
        churned = subscriptions.filter(status=Subscription.STATUS_CANCELED, end_date__range=(start, end)).count()
        trial_conversions = subscriptions.filter(
            status=Subscription.STATUS_ACTIVE,
            trial_end_date__isnull=False,
            plan__trial_days__gt=0,
            start_date__range=(start, end),
        ).count()

        active_counts = self._plan_counts(overlapping.filter(status=Subscription.STATUS_ACTIVE))
        all_counts = self._plan_counts(overlapping)

        mrr = calculate_mrr(active_counts)
        arpu = _money(mrr / total_subscribers) if total_subscribers else ZERO
        churn_rate = percentage(churned, total_subscribers)
        trial_subscribers = sum(count for plan, count in all_counts if plan.trial_days > 0)

        analytics: SubscriptionAnalytics = {
            "total_subscribers": total_subscribers,
            "active_subscriptions": active_subscriptions,
            "monthly_recurring_revenue": mrr,
            "annual_recurring_revenue": _money(mrr * 12),
            "average_revenue_per_user": arpu,
            "churn_rate": churn_rate,
            "new_subscribers": new_subscribers,
            "churned": churned,
            "conversion_rate": percentage(trial_conversions, new_subscribers),
            "trial_conversion_rate": percentage(trial_conversions, trial_subscribers),
            "lifetime_value": calculate_ltv(arpu, churn_rate),
            "plan_distribution": plan_distribution(all_counts),
            "free_trial_conversions": trial_conversions,
        }
        logger.debug(
            "Analytics calculated for %s - %s",
            start.date(),
            end.date(),
            extra={"app_id": app_id, "total_subscribers": total_subscribers},
        )
        return analytics

    @staticmethod
    def _plan_counts(subscriptions: QuerySet[Subscription]) -> list[tuple[SubscriptionPlan, int]]:
        plans = SubscriptionPlan.objects.annotate(
            subscriber_count=Count("subscriptions", filter=Q(subscriptions__in=subscriptions)),
        ).filter(subscriber_count__gt=0)
        return [(plan, plan.subscriber_count) for plan in plans.order_by("sort_position", "name")]


def _as_datetime(value: date | datetime, at: time) -> datetime:
    """Dates become the start or end of that day in the current time zone."""
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value)
    return timezone.make_aware(datetime.combine(value, at))
