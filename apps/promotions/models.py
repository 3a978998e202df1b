"""
Promo code models for the subscription platform.

Supports:
- Percentage and fixed-amount discounts with optional caps
- Validity windows and total usage limits
- Applicability to all plans, specific plans or specific users
- First-time-only codes
- Redemption records, one per subscription and one per user for each code
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, ClassVar

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

# ===============================================================================
# Constants
# ===============================================================================

MAX_DISCOUNT_PERCENT = Decimal("100")
PROMO_CODE_MAX_LENGTH = 50


def normalize_code(code: str) -> str:
    """Normalize promo code to uppercase and trimmed."""
    return (code or "").strip().upper()


# ===============================================================================
# Promo Code Model
# ===============================================================================


class PromoCode(models.Model):
    """
    Discount rule redeemable against subscriptions.

    ``usage_count`` only ever moves through the redemption service, which
    keeps it at or below ``usage_limit`` when a limit is set.
    """

    DISCOUNT_PERCENTAGE = "percentage"
    DISCOUNT_FIXED = "fixed"

    DISCOUNT_TYPES: ClassVar[tuple[tuple[str, Any], ...]] = (
        (DISCOUNT_PERCENTAGE, _("Percentage")),
        (DISCOUNT_FIXED, _("Fixed Amount")),
    )

    APPLICABLE_ALL = "all"
    APPLICABLE_SPECIFIC_PLANS = "specific_plans"
    APPLICABLE_SPECIFIC_USERS = "specific_users"

    APPLICABLE_TO_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        (APPLICABLE_ALL, _("All Plans and Users")),
        (APPLICABLE_SPECIFIC_PLANS, _("Specific Plans")),
        (APPLICABLE_SPECIFIC_USERS, _("Specific Users")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=PROMO_CODE_MAX_LENGTH, db_index=True, help_text=_("Stored uppercase"))
    description = models.TextField(blank=True)

    # Discount
    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPES)
    discount_value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    max_discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Caps percentage discounts"),
    )
    min_purchase_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Minimum plan price the code applies to"),
    )

    # Validity
    start_date = models.DateTimeField(default=timezone.now)
    end_date = models.DateTimeField(null=True, blank=True, help_text=_("Empty for no expiry"))
    usage_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1)],
        help_text=_("Empty for unlimited"),
    )
    usage_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_first_time_only = models.BooleanField(default=False)
    applicable_to = models.CharField(max_length=20, choices=APPLICABLE_TO_CHOICES, default=APPLICABLE_ALL)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "promo_codes"
        verbose_name = _("Promo Code")
        verbose_name_plural = _("Promo Codes")
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["is_active", "start_date", "end_date"], name="idx_promo_validity"),
            models.Index(fields=["discount_type"], name="idx_promo_discount_type"),
        )
        constraints: ClassVar[tuple[models.BaseConstraint, ...]] = (
            models.UniqueConstraint(fields=["code"], condition=Q(is_active=True), name="uniq_active_promo_code"),
            models.CheckConstraint(
                condition=Q(usage_limit__isnull=True) | Q(usage_count__lte=models.F("usage_limit")),
                name="promo_usage_within_limit",
            ),
            models.CheckConstraint(
                condition=Q(end_date__isnull=True) | Q(end_date__gt=models.F("start_date")),
                name="promo_end_after_start",
            ),
        )

    def __str__(self) -> str:
        return self.code

    @property
    def is_expired(self) -> bool:
        return self.end_date is not None and self.end_date < timezone.now()

    @property
    def remaining_uses(self) -> int | None:
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - self.usage_count)


class PromoCodeApplicablePlan(models.Model):
    """Plan a ``specific_plans`` promo code may be redeemed against."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name="applicable_plans")
    plan = models.ForeignKey(
        "subscriptions.SubscriptionPlan",
        on_delete=models.CASCADE,
        related_name="applicable_promo_codes",
    )

    class Meta:
        db_table = "promo_code_applicable_plans"
        constraints: ClassVar[tuple[models.BaseConstraint, ...]] = (
            models.UniqueConstraint(fields=["promo_code", "plan"], name="uniq_promo_applicable_plan"),
        )

    def __str__(self) -> str:
        return f"{self.promo_code_id} -> {self.plan_id}"


class PromoCodeApplicableUser(models.Model):
    """User a ``specific_users`` promo code may be redeemed by."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name="applicable_users")
    user_id = models.CharField(max_length=255)

    class Meta:
        db_table = "promo_code_applicable_users"
        constraints: ClassVar[tuple[models.BaseConstraint, ...]] = (
            models.UniqueConstraint(fields=["promo_code", "user_id"], name="uniq_promo_applicable_user"),
        )

    def __str__(self) -> str:
        return f"{self.promo_code_id} -> {self.user_id}"


# ===============================================================================
# Redemption Model
# ===============================================================================


class SubscriptionPromoCode(models.Model):
    """
    Redemption of a promo code against a subscription.

    Source of truth for "has this user already used this code"; the unique
    constraints close the check-then-insert race at the storage layer.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subscription = models.ForeignKey(
        "subscriptions.Subscription",
        on_delete=models.PROTECT,
        related_name="promo_redemptions",
    )
    promo_code = models.ForeignKey(PromoCode, on_delete=models.PROTECT, related_name="redemptions")
    user_id = models.CharField(max_length=255, db_index=True)
    discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("9999999999.99"))],
    )
    applied_date = models.DateTimeField(default=timezone.now)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "subscription_promo_codes"
        verbose_name = _("Promo Code Redemption")
        verbose_name_plural = _("Promo Code Redemptions")
        ordering: ClassVar[tuple[str, ...]] = ("-applied_date",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["promo_code", "-applied_date"], name="idx_redemption_promo_applied"),
        )
        constraints: ClassVar[tuple[models.BaseConstraint, ...]] = (
            models.UniqueConstraint(fields=["promo_code", "subscription"], name="uniq_redemption_per_subscription"),
            models.UniqueConstraint(fields=["promo_code", "user_id"], name="uniq_redemption_per_user"),
        )

    def __str__(self) -> str:
        return f"{self.promo_code_id} on {self.subscription_id}"
