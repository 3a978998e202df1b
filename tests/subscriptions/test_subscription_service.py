"""
Tests for apps.subscriptions.subscription_service.

Covers creation, cancellation, renewal, the status state machine,
pause/resume and cached lookups.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from unittest.mock import patch

from django.core.cache import cache
from django.db import OperationalError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from apps.common.types import (
    ROLE_ADMIN,
    CallerIdentity,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from apps.subscriptions.container import build_service_container
from apps.subscriptions.models import (
    Payment,
    Subscription,
    SubscriptionEvent,
    SubscriptionPlan,
    calculate_period_end,
)
from tests.helpers.factories import make_app, make_plan, make_promo_code, make_subscription


def event_types(subscription: Subscription) -> list[str]:
    return sorted(SubscriptionEvent.objects.filter(subscription=subscription).values_list("event_type", flat=True))


# =============================================================================
# PERIOD ARITHMETIC
# =============================================================================


class CalculatePeriodEndTestCase(SimpleTestCase):
    """Calendar-aware billing periods (pure function)."""

    def test_monthly_adds_one_calendar_month(self) -> None:
        start = datetime(2024, 3, 15, 10, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(calculate_period_end(start, "monthly"), datetime(2024, 4, 15, 10, 0, tzinfo=dt_timezone.utc))

    def test_month_end_clamps_in_leap_year(self) -> None:
        start = datetime(2024, 1, 31, tzinfo=dt_timezone.utc)
        self.assertEqual(calculate_period_end(start, "monthly"), datetime(2024, 2, 29, tzinfo=dt_timezone.utc))

    def test_month_end_clamps_in_common_year(self) -> None:
        start = datetime(2023, 1, 31, tzinfo=dt_timezone.utc)
        self.assertEqual(calculate_period_end(start, "monthly"), datetime(2023, 2, 28, tzinfo=dt_timezone.utc))

    def test_quarterly(self) -> None:
        start = datetime(2024, 11, 30, tzinfo=dt_timezone.utc)
        self.assertEqual(calculate_period_end(start, "quarterly"), datetime(2025, 2, 28, tzinfo=dt_timezone.utc))

    def test_yearly_from_leap_day(self) -> None:
        start = datetime(2024, 2, 29, tzinfo=dt_timezone.utc)
        self.assertEqual(calculate_period_end(start, "yearly"), datetime(2025, 2, 28, tzinfo=dt_timezone.utc))

    def test_unknown_cycle(self) -> None:
        with self.assertRaises(ValueError):
            calculate_period_end(timezone.now(), "weekly")


# =============================================================================
# CREATE
# =============================================================================


class SubscriptionCreateTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.services = build_service_container()
        self.service = self.services.subscriptions
        self.app = make_app("Acme")
        self.plan = make_plan(self.app, name="Pro", price="499.00")

    def test_create_active_subscription(self) -> None:
        before = timezone.now()

        subscription = self.service.create_subscription(str(self.plan.id), "user-1", str(self.app.id))

        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(subscription.amount, Decimal("499.00"))
        self.assertEqual(subscription.billing_cycle, "monthly")
        self.assertGreaterEqual(subscription.start_date, before)
        self.assertEqual(subscription.end_date, calculate_period_end(subscription.start_date, "monthly"))
        self.assertIsNone(subscription.trial_end_date)
        self.assertEqual(event_types(subscription), ["created"])

    def test_create_trial_subscription(self) -> None:
        plan = make_plan(self.app, name="Trial", trial_days=14)

        subscription = self.service.create_subscription(str(plan.id), "user-1", str(self.app.id))

        self.assertEqual(subscription.status, Subscription.STATUS_TRIALING)
        self.assertEqual(subscription.trial_end_date, subscription.start_date + timedelta(days=14))
        self.assertEqual(event_types(subscription), ["trial_started"])

    def test_inactive_plan_not_found(self) -> None:
        plan = make_plan(self.app, name="Old", status=SubscriptionPlan.STATUS_ARCHIVED)

        with self.assertRaises(NotFoundError) as ctx:
            self.service.create_subscription(str(plan.id), "user-1", str(self.app.id))

        self.assertEqual(ctx.exception.message, "Subscription plan not found")

    def test_plan_from_other_app_rejected(self) -> None:
        other_app = make_app("Other")

        with self.assertRaises(ValidationError):
            self.service.create_subscription(str(self.plan.id), "user-1", str(other_app.id))

        self.assertFalse(Subscription.objects.exists())

    def test_valid_promo_is_not_redeemed_on_create(self) -> None:
        promo = make_promo_code("SAVE10", usage_limit=1)

        subscription = self.service.create_subscription(
            str(self.plan.id), "user-1", str(self.app.id), promo_code_id=str(promo.id)
        )

        promo.refresh_from_db()
        self.assertEqual(promo.usage_count, 0)
        self.assertEqual(subscription.amount, Decimal("499.00"))

    def test_invalid_promo_rejects_before_writing(self) -> None:
        promo = make_promo_code("GONE", is_active=False)

        with self.assertRaises(ValidationError) as ctx:
            self.service.create_subscription(
                str(self.plan.id), "user-1", str(self.app.id), promo_code_id=str(promo.id)
            )

        self.assertEqual(ctx.exception.message, "Promo code is inactive")
        self.assertFalse(Subscription.objects.exists())

    def test_create_invalidates_user_listing(self) -> None:
        self.assertEqual(self.service.get_user_subscriptions("user-1"), [])

        self.service.create_subscription(str(self.plan.id), "user-1", str(self.app.id))

        self.assertEqual(len(self.service.get_user_subscriptions("user-1")), 1)


# =============================================================================
# CANCEL
# =============================================================================


class SubscriptionCancelTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().subscriptions
        self.app = make_app("Acme")
        self.plan = make_plan(self.app)
        self.subscription = make_subscription(self.plan, user_id="user-1")

    def test_deferred_cancel_keeps_status(self) -> None:
        subscription = self.service.cancel_subscription(str(self.subscription.id), user_id="user-1")

        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertTrue(subscription.cancel_at_period_end)
        self.assertIsNotNone(subscription.cancel_requested_at)
        self.assertIsNone(subscription.canceled_at)
        self.assertEqual(event_types(subscription), ["canceled"])

    def test_immediate_cancel(self) -> None:
        subscription = self.service.cancel_subscription(
            str(self.subscription.id), user_id="user-1", cancel_immediately=True, reason="too expensive"
        )

        self.assertEqual(subscription.status, Subscription.STATUS_CANCELED)
        self.assertIsNotNone(subscription.canceled_at)
        self.assertFalse(subscription.auto_renew)
        self.assertEqual(subscription.cancellation_reason, "too expensive")

    def test_other_users_subscription_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.cancel_subscription(str(self.subscription.id), user_id="user-2")

        self.subscription.refresh_from_db()
        self.assertFalse(self.subscription.cancel_at_period_end)

    def test_admin_cancel_without_user_scope(self) -> None:
        subscription = self.service.cancel_subscription(str(self.subscription.id), cancel_immediately=True)

        self.assertEqual(subscription.status, Subscription.STATUS_CANCELED)

    def test_cancel_terminal_subscription_conflicts(self) -> None:
        self.service.cancel_subscription(str(self.subscription.id), cancel_immediately=True)

        with self.assertRaises(ConflictError):
            self.service.cancel_subscription(str(self.subscription.id))

    def test_cancel_invalidates_cached_subscription(self) -> None:
        cached = self.service.get_subscription(str(self.subscription.id), user_id="user-1")
        self.assertFalse(cached.cancel_at_period_end)

        self.service.cancel_subscription(str(self.subscription.id), user_id="user-1")

        fresh = self.service.get_subscription(str(self.subscription.id), user_id="user-1")
        self.assertTrue(fresh.cancel_at_period_end)


# =============================================================================
# RENEW
# =============================================================================


class SubscriptionRenewTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().subscriptions
        self.app = make_app("Acme")
        self.plan = make_plan(self.app, price="250.00")

    def test_renew_future_period_starts_at_old_end(self) -> None:
        subscription = make_subscription(self.plan, days_until_end=5)
        old_end = subscription.end_date

        renewed = self.service.renew_subscription(str(subscription.id))

        self.assertEqual(renewed.start_date, old_end)
        self.assertEqual(renewed.end_date, calculate_period_end(old_end, "monthly"))
        self.assertEqual(renewed.status, Subscription.STATUS_ACTIVE)
        payment = Payment.objects.get(subscription=subscription)
        self.assertEqual(payment.status, "succeeded")
        self.assertEqual(payment.amount, Decimal("250.00"))
        self.assertEqual(payment.billing_period_start, old_end)
        self.assertEqual(event_types(subscription), ["expired", "renewed"])

    def test_renew_lapsed_period_starts_now(self) -> None:
        subscription = make_subscription(self.plan, status=Subscription.STATUS_PAST_DUE, days_until_end=-3)
        before = timezone.now()

        renewed = self.service.renew_subscription(str(subscription.id))

        self.assertGreaterEqual(renewed.start_date, before)
        self.assertEqual(renewed.status, Subscription.STATUS_ACTIVE)

    def test_renew_trial_records_trial_end(self) -> None:
        subscription = make_subscription(self.plan, status=Subscription.STATUS_TRIALING)

        self.service.renew_subscription(str(subscription.id))

        self.assertEqual(event_types(subscription), ["expired", "renewed", "trial_ended"])

    def test_renew_after_deferred_cancel_ends_subscription(self) -> None:
        subscription = make_subscription(self.plan, user_id="user-1")
        self.service.cancel_subscription(str(subscription.id), user_id="user-1", cancel_immediately=False)
        old_end = Subscription.objects.get(pk=subscription.pk).end_date

        ended = self.service.renew_subscription(str(subscription.id))

        self.assertEqual(ended.status, Subscription.STATUS_CANCELED)
        self.assertIsNotNone(ended.canceled_at)
        self.assertEqual(ended.end_date, old_end)
        self.assertFalse(Payment.objects.filter(subscription=subscription).exists())
        self.assertEqual(event_types(subscription), ["canceled", "canceled"])

    def test_renew_without_auto_renew_expires(self) -> None:
        subscription = make_subscription(self.plan)
        Subscription.objects.filter(pk=subscription.pk).update(auto_renew=False)

        ended = self.service.renew_subscription(str(subscription.id))

        self.assertEqual(ended.status, Subscription.STATUS_EXPIRED)
        self.assertIsNone(ended.canceled_at)
        self.assertFalse(Payment.objects.filter(subscription=subscription).exists())
        self.assertEqual(event_types(subscription), ["expired"])

        with self.assertRaises(ConflictError):
            self.service.renew_subscription(str(subscription.id))

    def test_renew_canceled_conflicts(self) -> None:
        subscription = make_subscription(self.plan, status=Subscription.STATUS_CANCELED)

        with self.assertRaises(ConflictError):
            self.service.renew_subscription(str(subscription.id))

        self.assertFalse(Payment.objects.exists())


# =============================================================================
# STATUS MACHINE, PAUSE & RESUME
# =============================================================================


class SubscriptionStatusTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().subscriptions
        self.app = make_app("Acme")
        self.plan = make_plan(self.app)
        self.subscription = make_subscription(self.plan)

    def test_allowed_transition_records_event(self) -> None:
        subscription = self.service.update_subscription_status(str(self.subscription.id), Subscription.STATUS_PAST_DUE)

        self.assertEqual(subscription.status, Subscription.STATUS_PAST_DUE)
        self.assertEqual(event_types(subscription), ["payment_failed"])

    def test_disallowed_transition(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.update_status(str(self.subscription.id), Subscription.STATUS_PENDING)

    def test_unknown_status(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.update_status(str(self.subscription.id), "frozen")

    def test_same_status_is_noop(self) -> None:
        subscription = self.service.update_status(str(self.subscription.id), Subscription.STATUS_ACTIVE)

        self.assertEqual(subscription.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(event_types(subscription), [])

    def test_terminal_status_cannot_change(self) -> None:
        self.service.update_status(str(self.subscription.id), Subscription.STATUS_CANCELED)

        with self.assertRaises(ValidationError):
            self.service.update_status(str(self.subscription.id), Subscription.STATUS_ACTIVE)

    def test_pause_and_resume_extend_period(self) -> None:
        original_end = self.subscription.end_date
        self.service.pause_subscription(str(self.subscription.id), user_id="user-1")
        Subscription.objects.filter(pk=self.subscription.pk).update(paused_at=timezone.now() - timedelta(days=2))

        resumed = self.service.resume_subscription(str(self.subscription.id), user_id="user-1")

        self.assertEqual(resumed.status, Subscription.STATUS_ACTIVE)
        self.assertIsNone(resumed.paused_at)
        self.assertGreaterEqual(resumed.end_date, original_end + timedelta(days=2))
        self.assertEqual(event_types(resumed), ["paused", "resumed"])

    def test_resume_requires_paused(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.resume_subscription(str(self.subscription.id))


# =============================================================================
# READS
# =============================================================================


class SubscriptionReadTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().subscriptions
        self.app = make_app("Acme")
        self.other_app = make_app("Other")
        self.plan = make_plan(self.app)
        self.other_plan = make_plan(self.other_app)
        self.mine = make_subscription(self.plan, user_id="user-1")
        self.mine_elsewhere = make_subscription(self.other_plan, user_id="user-1")
        self.theirs = make_subscription(self.plan, user_id="user-2", status=Subscription.STATUS_CANCELED)

    def test_get_subscription_scoped_to_owner(self) -> None:
        subscription = self.service.get_subscription(str(self.mine.id), user_id="user-1")
        self.assertEqual(subscription.id, self.mine.id)

        with self.assertRaises(NotFoundError):
            self.service.get_subscription(str(self.mine.id), user_id="user-2")

    def test_admin_get_subscription(self) -> None:
        subscription = self.service.get_subscription(str(self.theirs.id))
        self.assertEqual(subscription.user_id, "user-2")

    def test_user_subscriptions_by_app(self) -> None:
        self.assertEqual(len(self.service.get_user_subscriptions("user-1")), 2)
        self.assertEqual(
            [s.id for s in self.service.get_user_subscriptions("user-1", str(self.app.id))],
            [self.mine.id],
        )

    def test_subscriptions_by_app(self) -> None:
        ids = {s.id for s in self.service.get_subscriptions_by_app(str(self.app.id))}
        self.assertEqual(ids, {self.mine.id, self.theirs.id})

    def test_all_subscriptions_filtered(self) -> None:
        canceled = self.service.get_all_subscriptions({"status": Subscription.STATUS_CANCELED})
        self.assertEqual([s.id for s in canceled], [self.theirs.id])

        everything = self.service.get_all_subscriptions()
        self.assertEqual(len(everything), 3)

    def test_caller_identity_scopes_lookup(self) -> None:
        owner = CallerIdentity(user_id="user-1")
        stranger = CallerIdentity(user_id="user-2")
        admin = CallerIdentity(user_id="support-1", role=ROLE_ADMIN)

        self.assertEqual(self.service.get_subscription(str(self.mine.id), user_id=owner).id, self.mine.id)
        self.assertEqual(self.service.get_subscription(str(self.mine.id), user_id=admin).id, self.mine.id)
        with self.assertRaises(NotFoundError):
            self.service.get_subscription(str(self.mine.id), user_id=stranger)

    def test_caller_identity_scopes_mutations(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.pause_subscription(str(self.mine.id), user_id=CallerIdentity(user_id="user-2"))

        paused = self.service.pause_subscription(str(self.mine.id), user_id=CallerIdentity(user_id="user-1"))
        self.assertEqual(paused.status, Subscription.STATUS_PAUSED)

        admin = CallerIdentity(user_id="support-1", role=ROLE_ADMIN)
        self.service.resume_subscription(str(self.mine.id), user_id=admin)
        canceled = self.service.cancel_subscription(str(self.mine.id), user_id=admin, cancel_immediately=True)
        self.assertEqual(canceled.status, Subscription.STATUS_CANCELED)


# =============================================================================
# STORAGE FAILURES
# =============================================================================


class SubscriptionStorageFailureTestCase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.service = build_service_container().subscriptions
        self.app = make_app("Acme")
        self.plan = make_plan(self.app)

    def test_database_error_surfaces_as_internal_error(self) -> None:
        with patch.object(SubscriptionEvent.objects, "create", side_effect=OperationalError("connection lost")):
            with self.assertRaises(InternalError) as ctx:
                self.service.create_subscription(str(self.plan.id), "user-1", str(self.app.id))

        self.assertEqual(ctx.exception.to_dict()["code"], "internal")
        self.assertFalse(Subscription.objects.filter(user_id="user-1").exists())

    def test_business_errors_pass_through(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.renew_subscription("00000000-0000-0000-0000-000000000000")
