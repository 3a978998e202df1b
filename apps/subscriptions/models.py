"""
Subscription models for the subscription platform
Tenant applications, plans, subscriptions, payments and the subscription audit log.

Supports:
- Plans scoped to an application, with owned feature lists
- Billing cycles (monthly, quarterly, yearly) with calendar-aware periods
- Trial periods, deferred and immediate cancellation, pausing
- Append-only subscription event log
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar

from dateutil.relativedelta import relativedelta
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models.functions import Lower
from django.utils.translation import gettext_lazy as _

# ===============================================================================
# CONSTANTS
# ===============================================================================

BILLING_CYCLE_MONTHLY = "monthly"
BILLING_CYCLE_QUARTERLY = "quarterly"
BILLING_CYCLE_YEARLY = "yearly"

# Calendar-aware period lengths
BILLING_CYCLE_DELTAS: dict[str, relativedelta] = {
    BILLING_CYCLE_MONTHLY: relativedelta(months=1),
    BILLING_CYCLE_QUARTERLY: relativedelta(months=3),
    BILLING_CYCLE_YEARLY: relativedelta(years=1),
}

# Divisor normalizing one period's price to a monthly amount
BILLING_CYCLE_MONTHS: dict[str, int] = {
    BILLING_CYCLE_MONTHLY: 1,
    BILLING_CYCLE_QUARTERLY: 3,
    BILLING_CYCLE_YEARLY: 12,
}


def calculate_period_end(start: datetime, billing_cycle: str) -> datetime:
    """
    End of the billing period starting at ``start``.

    Month arithmetic clamps to the last day of shorter months
    (Jan 31 + 1 month = Feb 28/29, Feb 29 + 1 year = Feb 28).
    """
    try:
        delta = BILLING_CYCLE_DELTAS[billing_cycle]
    except KeyError:
        raise ValueError(f"Unknown billing cycle: {billing_cycle}") from None
    return start + delta


# ===============================================================================
# APPLICATION MODEL
# ===============================================================================


class App(models.Model):
    """Tenant application owning subscription plans."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True, help_text=_("Unique application name"))
    description = models.TextField(blank=True)
    owner = models.CharField(max_length=255, blank=True, help_text=_("Owning team or user id"))
    logo_url = models.URLField(blank=True)
    website = models.URLField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "subscription_apps"
        verbose_name = _("Application")
        verbose_name_plural = _("Applications")
        ordering: ClassVar[tuple[str, ...]] = ("name",)

    def __str__(self) -> str:
        return self.name


# ===============================================================================
# PLAN MODELS
# ===============================================================================


class SubscriptionPlan(models.Model):
    """
    Billing offer scoped to one application.
    Names are unique per application; soft deletion archives the plan.
    """

    STATUS_DRAFT = "draft"
    STATUS_ACTIVE = "active"
    STATUS_ARCHIVED = "archived"

    STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        (STATUS_DRAFT, _("Draft")),
        (STATUS_ACTIVE, _("Active")),
        (STATUS_ARCHIVED, _("Archived")),
    )

    BILLING_CYCLE_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        (BILLING_CYCLE_MONTHLY, _("Monthly")),
        (BILLING_CYCLE_QUARTERLY, _("Quarterly")),
        (BILLING_CYCLE_YEARLY, _("Yearly")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    app = models.ForeignKey(App, on_delete=models.PROTECT, related_name="plans")
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)

    # Pricing
    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    annual_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )
    currency = models.CharField(max_length=8, default="INR")
    billing_cycle = models.CharField(max_length=20, choices=BILLING_CYCLE_CHOICES, default=BILLING_CYCLE_MONTHLY)
    trial_days = models.PositiveIntegerField(default=0)

    # Presentation
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    sort_position = models.IntegerField(default=0)
    highlight = models.BooleanField(default=False, help_text=_("Show as recommended plan"))
    version = models.PositiveIntegerField(default=1, help_text=_("Incremented on every update"))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "subscription_plans"
        verbose_name = _("Subscription Plan")
        verbose_name_plural = _("Subscription Plans")
        ordering: ClassVar[tuple[str, ...]] = ("sort_position", "name")
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["app", "status"], name="idx_plan_app_status"),
            models.Index(fields=["status", "sort_position"], name="idx_plan_status_sort"),
        )
        constraints: ClassVar[tuple[models.BaseConstraint, ...]] = (
            models.UniqueConstraint(Lower("name"), "app", name="uniq_plan_name_per_app"),
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.app_id})"

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE


class PlanFeature(models.Model):
    """Feature line item wholly owned by a plan."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.CASCADE, related_name="features")
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    included = models.BooleanField(default=True)
    limit = models.PositiveIntegerField(null=True, blank=True, help_text=_("Numeric quota, empty for unlimited"))
    category = models.CharField(max_length=50, blank=True)
    is_popular = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "subscription_plan_features"
        verbose_name = _("Plan Feature")
        verbose_name_plural = _("Plan Features")
        ordering: ClassVar[tuple[str, ...]] = ("created_at", "id")

    def __str__(self) -> str:
        return self.name


# ===============================================================================
# SUBSCRIPTION MODELS
# ===============================================================================


class Subscription(models.Model):
    """
    A user's binding to one plan within one application.

    ``cancel_requested_at`` records when a cancellation was decided;
    ``canceled_at`` records when the subscription actually stopped.
    """

    STATUS_PENDING = "pending"
    STATUS_TRIALING = "trialing"
    STATUS_ACTIVE = "active"
    STATUS_PAST_DUE = "past_due"
    STATUS_UNPAID = "unpaid"
    STATUS_CANCELED = "canceled"
    STATUS_EXPIRED = "expired"
    STATUS_PAUSED = "paused"

    STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        (STATUS_PENDING, _("Pending")),
        (STATUS_TRIALING, _("Trialing")),
        (STATUS_ACTIVE, _("Active")),
        (STATUS_PAST_DUE, _("Past Due")),
        (STATUS_UNPAID, _("Unpaid")),
        (STATUS_CANCELED, _("Canceled")),
        (STATUS_EXPIRED, _("Expired")),
        (STATUS_PAUSED, _("Paused")),
    )

    TERMINAL_STATUSES: ClassVar[frozenset[str]] = frozenset({STATUS_CANCELED, STATUS_EXPIRED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, db_index=True)
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name="subscriptions")
    app = models.ForeignKey(App, on_delete=models.PROTECT, related_name="subscriptions")

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    billing_cycle = models.CharField(
        max_length=20,
        choices=SubscriptionPlan.BILLING_CYCLE_CHOICES,
        default=BILLING_CYCLE_MONTHLY,
    )

    # Current period
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    trial_end_date = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)

    # Cancellation
    cancel_at_period_end = models.BooleanField(default=False)
    cancel_requested_at = models.DateTimeField(null=True, blank=True, help_text=_("When cancellation was requested"))
    canceled_at = models.DateTimeField(null=True, blank=True, help_text=_("When the subscription stopped"))
    cancellation_reason = models.CharField(max_length=255, blank=True)

    auto_renew = models.BooleanField(default=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=8, default="INR")
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "subscriptions"
        verbose_name = _("Subscription")
        verbose_name_plural = _("Subscriptions")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["user_id", "app"], name="idx_subscription_user_app"),
            models.Index(fields=["app", "status"], name="idx_subscription_app_status"),
            models.Index(fields=["status", "end_date"], name="idx_subscription_status_end"),
            models.Index(fields=["start_date"], name="idx_subscription_start"),
        )

    def __str__(self) -> str:
        return f"{self.user_id} - {self.plan_id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class Payment(models.Model):
    """Payment recorded for one billing period of a subscription."""

    STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("succeeded", _("Succeeded")),
        ("pending", _("Pending")),
        ("failed", _("Failed")),
        ("refunded", _("Refunded")),
        ("partial_refund", _("Partially Refunded")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subscription = models.ForeignKey(Subscription, on_delete=models.PROTECT, related_name="payments")
    user_id = models.CharField(max_length=255, db_index=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="INR")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    billing_period_start = models.DateTimeField()
    billing_period_end = models.DateTimeField()
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "subscription_payments"
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["subscription", "-created_at"], name="idx_payment_subscription"),
        )

    def __str__(self) -> str:
        return f"{self.amount} {self.currency} ({self.status})"


class SubscriptionEvent(models.Model):
    """Append-only audit record of a subscription lifecycle change."""

    EVENT_TYPES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("created", _("Created")),
        ("trial_started", _("Trial Started")),
        ("trial_ended", _("Trial Ended")),
        ("renewed", _("Renewed")),
        ("canceled", _("Canceled")),
        ("expired", _("Expired")),
        ("updated", _("Updated")),
        ("payment_failed", _("Payment Failed")),
        ("paused", _("Paused")),
        ("resumed", _("Resumed")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subscription = models.ForeignKey(Subscription, on_delete=models.PROTECT, related_name="events")
    event_type = models.CharField(max_length=30, choices=EVENT_TYPES)
    event_data = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "subscription_events"
        verbose_name = _("Subscription Event")
        verbose_name_plural = _("Subscription Events")
        ordering: ClassVar[tuple[str, ...]] = ("created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["subscription", "event_type"], name="idx_event_subscription_type"),
        )

    def __str__(self) -> str:
        return f"{self.event_type} @ {self.created_at}"
