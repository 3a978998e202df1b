"""
Promo code validation for the subscription platform.
Read-only rule evaluation producing a verdict, plus discount calculation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from apps.common.performance.cache import CacheService
from apps.common.types import ValidationError
from apps.subscriptions import config
from apps.subscriptions.models import Subscription, SubscriptionPlan

from .models import MAX_DISCOUNT_PERCENT, PromoCode, SubscriptionPromoCode, normalize_code

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


# ===============================================================================
# Data Classes for Results
# ===============================================================================


@dataclass
class PromoCodeValidationResult:
    """
    Verdict of promo code validation.

    Attributes:
        is_valid: Whether the code can be redeemed by the user on the plan.
        message: Human-readable reason, shown to the end user as is.
        error_code: Machine-readable code for programmatic handling.
            Codes: NOT_FOUND, INACTIVE, NOT_STARTED, EXPIRED, USAGE_LIMIT_REACHED,
            PLAN_NOT_APPLICABLE, USER_NOT_APPLICABLE, PLAN_NOT_FOUND,
            MIN_PURCHASE_NOT_MET, FIRST_TIME_ONLY, ALREADY_USED
        promo_code: The evaluated promo code, when it exists.
        discount_amount: Discount on the plan price for a valid code.
    """

    is_valid: bool
    message: str
    error_code: str = ""
    promo_code: PromoCode | None = None
    discount_amount: Decimal = Decimal("0.00")


def _invalid(message: str, error_code: str, promo_code: PromoCode | None = None) -> PromoCodeValidationResult:
    return PromoCodeValidationResult(is_valid=False, message=message, error_code=error_code, promo_code=promo_code)


# ===============================================================================
# Discount Calculation
# ===============================================================================


def calculate_discount(promo_code: PromoCode, price: Decimal | int | str) -> Decimal:
    """
    Discount ``promo_code`` grants on ``price``.

    Percentage discounts are capped by ``max_discount_amount``; every discount
    is capped by the price itself and is never negative.
    """
    price = Decimal(str(price))
    if price <= 0:
        return Decimal("0.00")

    value = Decimal(str(promo_code.discount_value))
    if promo_code.discount_type == PromoCode.DISCOUNT_PERCENTAGE:
        discount = price * value / Decimal("100")
        if promo_code.max_discount_amount is not None:
            discount = min(discount, Decimal(str(promo_code.max_discount_amount)))
    else:
        discount = value

    discount = max(Decimal("0"), min(discount, price))
    return discount.quantize(CENTS, rounding=ROUND_HALF_UP)


# ===============================================================================
# Validator
# ===============================================================================


class PromoCodeValidator:
    """
    Evaluates promo code rules in a fixed order, stopping at the first failure:

    1. code exists and is active
    2. current time within the validity window
    3. usage limit not reached
    4. plan applicability
    5. user applicability
    6. minimum purchase amount
    7. first-time-only
    8. not already redeemed by the user

    Verdicts are cached briefly; they are advisory and redemption re-checks
    everything against locked rows.
    """

    def __init__(self, cache: CacheService) -> None:
        self.cache = cache

    def validate(self, code_or_id: str, user_id: str, plan_id: str) -> PromoCodeValidationResult:
        """Cached validation by promo code id or code string."""
        cache_key = self.validation_key(code_or_id, user_id, plan_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        promo_code = self.find_promo_code(code_or_id)
        if promo_code is None:
            result = _invalid("Promo code not found", "NOT_FOUND")
        else:
            result = self.evaluate(promo_code, user_id, plan_id)

        self.cache.set(cache_key, result, config.get_promo_validation_cache_ttl())
        return result

    def evaluate(
        self,
        promo_code: PromoCode,
        user_id: str,
        plan_id: str,
        exclude_subscription_id: Any = None,
        now: datetime | None = None,
    ) -> PromoCodeValidationResult:
        """
        Uncached rule evaluation against ``promo_code`` as given.

        ``exclude_subscription_id`` leaves the subscription being redeemed
        against out of the first-time-only check.
        """
        now = now or timezone.now()

        if not promo_code.is_active:
            return _invalid("Promo code is inactive", "INACTIVE", promo_code)

        if promo_code.start_date and promo_code.start_date > now:
            return _invalid("Promo code is not yet active", "NOT_STARTED", promo_code)
        if promo_code.end_date and promo_code.end_date < now:
            return _invalid("Promo code has expired", "EXPIRED", promo_code)

        if promo_code.usage_limit is not None and promo_code.usage_count >= promo_code.usage_limit:
            return _invalid("Promo code has reached its maximum usage limit", "USAGE_LIMIT_REACHED", promo_code)

        if promo_code.applicable_to == PromoCode.APPLICABLE_SPECIFIC_PLANS:
            if not promo_code.applicable_plans.filter(plan_id=plan_id).exists():
                return _invalid("Promo code is not applicable to this plan", "PLAN_NOT_APPLICABLE", promo_code)

        if promo_code.applicable_to == PromoCode.APPLICABLE_SPECIFIC_USERS:
            if not promo_code.applicable_users.filter(user_id=user_id).exists():
                return _invalid("Promo code is not applicable to this user", "USER_NOT_APPLICABLE", promo_code)

        plan = self._find_plan(plan_id)
        if plan is None:
            return _invalid("Subscription plan not found", "PLAN_NOT_FOUND", promo_code)

        if promo_code.min_purchase_amount is not None and plan.price < promo_code.min_purchase_amount:
            return _invalid(
                "Plan price is below the minimum purchase amount for this promo code",
                "MIN_PURCHASE_NOT_MET",
                promo_code,
            )

        if promo_code.is_first_time_only:
            previous = Subscription.objects.filter(user_id=user_id)
            if exclude_subscription_id is not None:
                previous = previous.exclude(pk=exclude_subscription_id)
            if previous.exists():
                return _invalid("Promo code is only valid for first-time users", "FIRST_TIME_ONLY", promo_code)

        if SubscriptionPromoCode.objects.filter(promo_code=promo_code, user_id=user_id).exists():
            return _invalid("You have already used this promo code", "ALREADY_USED", promo_code)

        return PromoCodeValidationResult(
            is_valid=True,
            message="Promo code is valid",
            promo_code=promo_code,
            discount_amount=calculate_discount(promo_code, plan.price),
        )

    @staticmethod
    def find_promo_code(code_or_id: str) -> PromoCode | None:
        """
        Resolve a promo code by id, else by code.

        An active code wins over inactive ones sharing the same string.
        """
        if _looks_like_uuid(code_or_id):
            try:
                return PromoCode.objects.get(pk=code_or_id)
            except (PromoCode.DoesNotExist, DjangoValidationError):
                return None

        code = normalize_code(code_or_id)
        if not code:
            return None
        return PromoCode.objects.filter(code=code).order_by("-is_active", "-created_at").first()

    @staticmethod
    def validation_key(code_or_id: str, user_id: str, plan_id: str) -> str:
        identifier = str(code_or_id).lower() if _looks_like_uuid(code_or_id) else normalize_code(code_or_id)
        return f"validate:{identifier}:{user_id}:{plan_id}"

    @staticmethod
    def _find_plan(plan_id: Any) -> SubscriptionPlan | None:
        try:
            return SubscriptionPlan.objects.get(pk=plan_id)
        except (SubscriptionPlan.DoesNotExist, DjangoValidationError):
            return None


def _looks_like_uuid(value: Any) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


# ===============================================================================
# Admin Input Validation
# ===============================================================================


def _decimal_or_none(data: dict[str, Any], field: str) -> Decimal | None:
    value = data.get(field)
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None


def validate_promo_code_data(
    data: dict[str, Any],
    is_update: bool = False,
    require_future_end: bool = True,
) -> None:
    """
    Validate promo code fields for create, or the merged result of an update.

    Raises ValidationError naming the offending field.
    """
    if not normalize_code(data.get("code", "")):
        raise ValidationError("Promo code is required", field="code")
    if not is_update and not (data.get("description") or "").strip():
        raise ValidationError("Description is required", field="description")

    discount_type = data.get("discount_type")
    if discount_type not in (PromoCode.DISCOUNT_PERCENTAGE, PromoCode.DISCOUNT_FIXED):
        raise ValidationError('Discount type must be "percentage" or "fixed"', field="discount_type")

    value = _decimal_or_none(data, "discount_value")
    if value is None or value <= 0:
        raise ValidationError("Discount value must be a positive number", field="discount_value")
    if discount_type == PromoCode.DISCOUNT_PERCENTAGE and value > MAX_DISCOUNT_PERCENT:
        raise ValidationError("Percentage discount cannot exceed 100%", field="discount_value")

    start_date = data.get("start_date")
    end_date = data.get("end_date")
    if not start_date:
        raise ValidationError("Start date is required", field="start_date")
    if end_date is not None:
        if end_date <= start_date:
            raise ValidationError("End date must be after start date", field="end_date")
        if require_future_end and end_date <= timezone.now():
            raise ValidationError("End date must be in the future", field="end_date")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None and int(usage_limit) <= 0:
        raise ValidationError("Usage limit must be a positive number", field="usage_limit")

    max_discount = _decimal_or_none(data, "max_discount_amount")
    if max_discount is not None and max_discount <= 0:
        raise ValidationError("Maximum discount amount must be a positive number", field="max_discount_amount")
    min_purchase = _decimal_or_none(data, "min_purchase_amount")
    if min_purchase is not None and min_purchase < 0:
        raise ValidationError("Minimum purchase amount cannot be negative", field="min_purchase_amount")

    applicable_to = data.get("applicable_to", PromoCode.APPLICABLE_ALL)
    if applicable_to not in dict(PromoCode.APPLICABLE_TO_CHOICES):
        raise ValidationError(
            'Applicable type must be "all", "specific_plans", or "specific_users"',
            field="applicable_to",
        )
    if applicable_to == PromoCode.APPLICABLE_SPECIFIC_PLANS and not data.get("applicable_plan_ids"):
        raise ValidationError("At least one plan must be specified for specific plans", field="applicable_plan_ids")
    if applicable_to == PromoCode.APPLICABLE_SPECIFIC_USERS and not data.get("applicable_user_ids"):
        raise ValidationError("At least one user must be specified for specific users", field="applicable_user_ids")
