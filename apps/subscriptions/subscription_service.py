"""
Subscription Service for the subscription platform
Business logic for the subscription lifecycle.

Provides:
- Subscription creation with trial handling and calendar-aware periods
- Deferred and immediate cancellation
- Renewal with a payment record per billing period
- Status changes guarded by the lifecycle state machine
- Pause and resume
- Cached per-user, per-app and filtered subscription lookups
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, ClassVar, TypedDict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.common.decorators import translate_storage_errors
from apps.common.performance.cache import CacheService
from apps.common.types import CallerIdentity, ConflictError, NotFoundError, ValidationError

from . import config
from .models import (
    Payment,
    Subscription,
    SubscriptionEvent,
    SubscriptionPlan,
    calculate_period_end,
)

if TYPE_CHECKING:
    from apps.promotions.validation import PromoCodeValidator

logger = logging.getLogger(__name__)


# ===============================================================================
# TYPE DEFINITIONS
# ===============================================================================


class SubscriptionFilters(TypedDict, total=False):
    """Filters accepted by subscription listing."""

    status: str
    app_id: str
    user_id: str
    plan_id: str


# ===============================================================================
# SUBSCRIPTION SERVICE
# ===============================================================================


class SubscriptionService:
    """
    Core service for subscription management.

    Owns the user-subscription cache. Promo codes are only validated here;
    redemption is the caller's job so a promo failure never leaves a
    half-built subscription behind.
    """

    # Allowed status changes; canceled and expired are terminal
    STATUS_TRANSITIONS: ClassVar[dict[str, frozenset[str]]] = {
        Subscription.STATUS_PENDING: frozenset(
            {
                Subscription.STATUS_TRIALING,
                Subscription.STATUS_ACTIVE,
                Subscription.STATUS_CANCELED,
            }
        ),
        Subscription.STATUS_TRIALING: frozenset(
            {
                Subscription.STATUS_ACTIVE,
                Subscription.STATUS_CANCELED,
                Subscription.STATUS_EXPIRED,
            }
        ),
        Subscription.STATUS_ACTIVE: frozenset(
            {
                Subscription.STATUS_PAST_DUE,
                Subscription.STATUS_CANCELED,
                Subscription.STATUS_EXPIRED,
                Subscription.STATUS_PAUSED,
            }
        ),
        Subscription.STATUS_PAST_DUE: frozenset(
            {
                Subscription.STATUS_ACTIVE,
                Subscription.STATUS_UNPAID,
                Subscription.STATUS_CANCELED,
            }
        ),
        Subscription.STATUS_UNPAID: frozenset(
            {
                Subscription.STATUS_ACTIVE,
                Subscription.STATUS_CANCELED,
                Subscription.STATUS_EXPIRED,
            }
        ),
        Subscription.STATUS_PAUSED: frozenset(
            {
                Subscription.STATUS_ACTIVE,
                Subscription.STATUS_CANCELED,
            }
        ),
        Subscription.STATUS_CANCELED: frozenset(),
        Subscription.STATUS_EXPIRED: frozenset(),
    }

    def __init__(self, cache: CacheService, promo_validator: PromoCodeValidator | None = None) -> None:
        self.cache = cache
        self.promo_validator = promo_validator

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    @translate_storage_errors
    def create_subscription(
        self,
        plan_id: str,
        user_id: str,
        app_id: str,
        promo_code_id: str | None = None,
    ) -> Subscription:
        """
        Create a subscription on an active plan.

        The subscription starts ``trialing`` when the plan has trial days and
        ``active`` otherwise. A supplied promo code is validated up front and
        rejected with ValidationError before anything is written; applying it
        is left to the promo redemption service.
        """
        if not user_id:
            raise ValidationError("User id is required", field="user_id")

        plan = self._get_active_plan(plan_id)
        if str(plan.app_id) != str(app_id):
            raise ValidationError("Plan does not belong to this app", field="plan_id")

        if promo_code_id:
            if self.promo_validator is None:
                raise ValidationError("Promo codes are not supported here", field="promo_code_id")
            verdict = self.promo_validator.validate(promo_code_id, user_id, str(plan.id))
            if not verdict.is_valid:
                raise ValidationError(verdict.message, field="promo_code_id")

        now = timezone.now()
        is_trial = plan.trial_days > 0

        with transaction.atomic():
            subscription = Subscription.objects.create(
                user_id=user_id,
                plan=plan,
                app_id=plan.app_id,
                status=Subscription.STATUS_TRIALING if is_trial else Subscription.STATUS_ACTIVE,
                billing_cycle=plan.billing_cycle,
                start_date=now,
                end_date=calculate_period_end(now, plan.billing_cycle),
                trial_end_date=now + timedelta(days=plan.trial_days) if is_trial else None,
                amount=plan.price,
                currency=plan.currency,
            )
            self._record_event(
                subscription,
                "trial_started" if is_trial else "created",
                {"plan_id": str(plan.id), "trial_days": plan.trial_days, "amount": str(plan.price)},
            )

        logger.info(
            "Subscription created for user %s on plan %s",
            user_id,
            plan.name,
            extra={
                "subscription_id": str(subscription.id),
                "user_id": user_id,
                "plan_id": str(plan.id),
                "status": subscription.status,
            },
        )
        self.invalidate_subscription(subscription)
        return subscription

    @translate_storage_errors
    def cancel_subscription(
        self,
        subscription_id: str,
        user_id: str | CallerIdentity | None = None,
        cancel_immediately: bool = False,
        reason: str = "",
    ) -> Subscription:
        """
        Cancel a subscription.

        Immediate cancellation moves the status to ``canceled`` now. Deferred
        cancellation only sets ``cancel_at_period_end``; the status stays as is
        until the period-end sweep runs. ``cancel_requested_at`` always records
        the decision time, ``canceled_at`` only the effective stop.

        ``user_id`` may be a CallerIdentity; admins are not scoped to an owner.
        """
        user_id = self._scoped_user_id(user_id)
        with transaction.atomic():
            subscription = self._get_subscription(subscription_id, user_id=user_id, for_update=True)
            if subscription.is_terminal:
                raise ConflictError(f"Subscription is already {subscription.status}")

            now = timezone.now()
            subscription.cancel_requested_at = now
            subscription.cancellation_reason = reason
            if cancel_immediately:
                subscription.status = Subscription.STATUS_CANCELED
                subscription.canceled_at = now
                subscription.cancel_at_period_end = False
                subscription.auto_renew = False
            else:
                subscription.cancel_at_period_end = True
            subscription.save()

            self._record_event(
                subscription,
                "canceled",
                {
                    "immediate": cancel_immediately,
                    "reason": reason,
                    "effective_at": (now if cancel_immediately else subscription.end_date).isoformat(),
                },
            )

        logger.info(
            "Subscription canceled (%s)",
            "immediately" if cancel_immediately else "at period end",
            extra={"subscription_id": str(subscription.id), "user_id": subscription.user_id},
        )
        self.invalidate_subscription(subscription)
        return subscription

    @translate_storage_errors
    def renew_subscription(self, subscription_id: str) -> Subscription:
        """
        Close the current billing period and open the next one.

        Records an ``expired`` event for the closed period, a succeeded Payment
        for the new period and a ``renewed`` event. The new period starts where
        the old one ended, or now when the old one has already lapsed.

        A subscription set to cancel at period end, or with auto-renew turned
        off, is ended instead: it becomes ``canceled`` (or ``expired``) and no
        payment is recorded.
        """
        with transaction.atomic():
            subscription = self._get_subscription(subscription_id, for_update=True)
            if subscription.is_terminal:
                raise ConflictError(f"Cannot renew a {subscription.status} subscription")

            now = timezone.now()
            previous_start, previous_end = subscription.start_date, subscription.end_date
            period = {"period_start": previous_start.isoformat(), "period_end": previous_end.isoformat()}

            if subscription.cancel_at_period_end or not subscription.auto_renew:
                if subscription.cancel_at_period_end:
                    subscription.status = Subscription.STATUS_CANCELED
                    subscription.canceled_at = now
                    subscription.cancel_requested_at = subscription.cancel_requested_at or now
                else:
                    subscription.status = Subscription.STATUS_EXPIRED
                subscription.save()
                self._record_event(subscription, self._event_for_status(subscription.status), period)
                payment = None
            else:
                self._record_event(subscription, "expired", period)

                new_start = previous_end if previous_end > now else now
                new_end = calculate_period_end(new_start, subscription.billing_cycle)

                payment = Payment.objects.create(
                    subscription=subscription,
                    user_id=subscription.user_id,
                    amount=subscription.amount,
                    currency=subscription.currency,
                    status="succeeded",
                    billing_period_start=new_start,
                    billing_period_end=new_end,
                )

                if subscription.status == Subscription.STATUS_TRIALING:
                    self._record_event(subscription, "trial_ended", {})
                subscription.start_date = new_start
                subscription.end_date = new_end
                subscription.status = Subscription.STATUS_ACTIVE
                subscription.save()

                self._record_event(
                    subscription,
                    "renewed",
                    {
                        "payment_id": str(payment.id),
                        "period_start": new_start.isoformat(),
                        "period_end": new_end.isoformat(),
                    },
                )

        if payment is None:
            logger.info(
                "Subscription ended at period end: %s",
                subscription.status,
                extra={"subscription_id": str(subscription.id), "user_id": subscription.user_id},
            )
        else:
            logger.info(
                "Subscription renewed until %s",
                subscription.end_date.isoformat(),
                extra={"subscription_id": str(subscription.id), "payment_id": str(payment.id)},
            )
        self.invalidate_subscription(subscription)
        return subscription

    @translate_storage_errors
    def update_subscription_status(self, subscription_id: str, status: str) -> Subscription:
        """Admin status change, restricted to the lifecycle state machine."""
        if status not in self.STATUS_TRANSITIONS:
            raise ValidationError(f"Invalid subscription status: {status}", field="status")

        with transaction.atomic():
            subscription = self._get_subscription(subscription_id, for_update=True)
            previous = subscription.status
            if status == previous:
                return subscription
            if status not in self.STATUS_TRANSITIONS[previous]:
                raise ValidationError(f"Cannot change subscription status from {previous} to {status}", field="status")

            now = timezone.now()
            subscription.status = status
            if status == Subscription.STATUS_CANCELED:
                subscription.canceled_at = now
                subscription.cancel_requested_at = subscription.cancel_requested_at or now
            elif status == Subscription.STATUS_PAUSED:
                subscription.paused_at = now
            subscription.save()

            self._record_event(subscription, self._event_for_status(status), {"from": previous, "to": status})

        logger.info(
            "Subscription status changed: %s -> %s",
            previous,
            status,
            extra={"subscription_id": str(subscription.id)},
        )
        self.invalidate_subscription(subscription)
        return subscription

    update_status = update_subscription_status

    @translate_storage_errors
    def pause_subscription(self, subscription_id: str, user_id: str | CallerIdentity | None = None) -> Subscription:
        user_id = self._scoped_user_id(user_id)
        with transaction.atomic():
            subscription = self._get_subscription(subscription_id, user_id=user_id, for_update=True)
            if subscription.status != Subscription.STATUS_ACTIVE:
                raise ValidationError(f"Only active subscriptions can be paused, not {subscription.status}")
            subscription.status = Subscription.STATUS_PAUSED
            subscription.paused_at = timezone.now()
            subscription.save()
            self._record_event(subscription, "paused", {})

        logger.info("Subscription paused", extra={"subscription_id": str(subscription.id)})
        self.invalidate_subscription(subscription)
        return subscription

    @translate_storage_errors
    def resume_subscription(self, subscription_id: str, user_id: str | CallerIdentity | None = None) -> Subscription:
        """Resume a paused subscription, extending the period by the paused duration."""
        user_id = self._scoped_user_id(user_id)
        with transaction.atomic():
            subscription = self._get_subscription(subscription_id, user_id=user_id, for_update=True)
            if subscription.status != Subscription.STATUS_PAUSED:
                raise ValidationError(f"Only paused subscriptions can be resumed, not {subscription.status}")
            paused_for = timezone.now() - subscription.paused_at if subscription.paused_at else timedelta(0)
            subscription.end_date += paused_for
            subscription.status = Subscription.STATUS_ACTIVE
            subscription.paused_at = None
            subscription.save()
            self._record_event(subscription, "resumed", {"paused_seconds": int(paused_for.total_seconds())})

        logger.info("Subscription resumed", extra={"subscription_id": str(subscription.id)})
        self.invalidate_subscription(subscription)
        return subscription

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    def get_subscription(self, subscription_id: str, user_id: str | CallerIdentity | None = None) -> Subscription:
        """Fetch one subscription; with ``user_id`` the lookup is scoped to that user."""
        user_id = self._scoped_user_id(user_id)
        cache_key = self._single_key(subscription_id, user_id)
        subscription = self.cache.get(cache_key)
        if subscription is not None:
            return subscription

        subscription = self._get_subscription(subscription_id, user_id=user_id)
        self.cache.set(cache_key, subscription, config.get_subscription_cache_ttl())
        return subscription

    def get_user_subscriptions(self, user_id: str, app_id: str | None = None) -> list[Subscription]:
        cache_key = self._user_key(user_id, app_id)
        subscriptions = self.cache.get(cache_key)
        if subscriptions is not None:
            return subscriptions

        queryset = self._base_queryset().filter(user_id=user_id)
        if app_id:
            queryset = queryset.filter(app_id=app_id)
        subscriptions = list(queryset)
        self.cache.set(cache_key, subscriptions, config.get_subscription_cache_ttl())
        return subscriptions

    def get_subscriptions_by_app(self, app_id: str) -> list[Subscription]:
        cache_key = self._app_key(app_id)
        subscriptions = self.cache.get(cache_key)
        if subscriptions is not None:
            return subscriptions

        subscriptions = list(self._base_queryset().filter(app_id=app_id))
        self.cache.set(cache_key, subscriptions, config.get_subscription_cache_ttl())
        return subscriptions

    def get_all_subscriptions(self, filters: SubscriptionFilters | None = None) -> list[Subscription]:
        filters = filters or {}
        cache_key = self._list_key(filters)
        subscriptions = self.cache.get(cache_key)
        if subscriptions is not None:
            return subscriptions

        queryset = self._base_queryset()
        for field in ("status", "app_id", "user_id", "plan_id"):
            if filters.get(field):
                queryset = queryset.filter(**{field: filters[field]})  # type: ignore[literal-required]
        subscriptions = list(queryset)
        self.cache.set(cache_key, subscriptions, config.get_subscription_cache_ttl())
        return subscriptions

    # ---------------------------------------------------------------------------
    # Cache invalidation
    # ---------------------------------------------------------------------------

    def invalidate_subscription(self, subscription: Subscription) -> None:
        """Clear every cached view that may contain ``subscription``."""
        batch_size = config.get_cache_scan_batch_size()
        self.cache.delete_many(
            [
                self._single_key(subscription.id, None),
                self._single_key(subscription.id, subscription.user_id),
                self._user_key(subscription.user_id, subscription.app_id),
                self._user_key(subscription.user_id, None),
                self._app_key(subscription.app_id),
            ]
        )
        self.cache.delete_pattern(f"subscription:{subscription.id}:*", batch_size)
        self.cache.delete_pattern("subscriptions:list:*", batch_size)

    @staticmethod
    def _single_key(subscription_id: Any, user_id: str | None) -> str:
        return f"subscription:{subscription_id}:{user_id or 'admin'}"

    @staticmethod
    def _user_key(user_id: str, app_id: Any | None) -> str:
        return f"subscriptions:user:{user_id}:{app_id or 'all'}"

    @staticmethod
    def _app_key(app_id: Any) -> str:
        return f"subscriptions:app:{app_id}"

    @staticmethod
    def _list_key(filters: SubscriptionFilters) -> str:
        payload = json.dumps(filters, sort_keys=True, default=str)
        return f"subscriptions:list:{hashlib.md5(payload.encode()).hexdigest()}"  # noqa: S324

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    @staticmethod
    def _base_queryset() -> QuerySet[Subscription]:
        return Subscription.objects.select_related("plan", "app").order_by("-created_at")

    @staticmethod
    def _get_active_plan(plan_id: str) -> SubscriptionPlan:
        try:
            return SubscriptionPlan.objects.get(pk=plan_id, status=SubscriptionPlan.STATUS_ACTIVE)
        except (SubscriptionPlan.DoesNotExist, DjangoValidationError):
            raise NotFoundError("Subscription plan not found") from None

    @staticmethod
    def _scoped_user_id(user: str | CallerIdentity | None) -> str | None:
        """Owner to scope a lookup to; a CallerIdentity is scoped unless it is an admin."""
        if isinstance(user, CallerIdentity):
            return user.scoped_user_id
        return user or None

    def _get_subscription(
        self,
        subscription_id: Any,
        user_id: str | None = None,
        for_update: bool = False,
    ) -> Subscription:
        queryset = Subscription.objects.select_related("plan", "app")
        if for_update:
            queryset = queryset.select_for_update()
        if user_id:
            queryset = queryset.filter(user_id=user_id)
        try:
            return queryset.get(pk=subscription_id)
        except (Subscription.DoesNotExist, DjangoValidationError):
            raise NotFoundError("Subscription not found") from None

    @staticmethod
    def _record_event(subscription: Subscription, event_type: str, data: dict[str, Any]) -> SubscriptionEvent:
        return SubscriptionEvent.objects.create(subscription=subscription, event_type=event_type, event_data=data)

    @staticmethod
    def _event_for_status(status: str) -> str:
        return {
            Subscription.STATUS_CANCELED: "canceled",
            Subscription.STATUS_EXPIRED: "expired",
            Subscription.STATUS_PAUSED: "paused",
            Subscription.STATUS_PAST_DUE: "payment_failed",
        }.get(status, "updated")

