"""
Promo code services for the subscription platform.
Business logic for promo code administration, validation and redemption.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypedDict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q, QuerySet, Sum
from django.utils import timezone

from apps.common.decorators import translate_storage_errors
from apps.common.performance.cache import CacheService
from apps.common.types import ConflictError, NotFoundError, ValidationError
from apps.subscriptions import config
from apps.subscriptions.models import Subscription, SubscriptionPlan

from .models import (
    PromoCode,
    PromoCodeApplicablePlan,
    PromoCodeApplicableUser,
    SubscriptionPromoCode,
    normalize_code,
)
from .validation import CENTS, PromoCodeValidationResult, PromoCodeValidator, validate_promo_code_data

if TYPE_CHECKING:
    from apps.subscriptions.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


# ===============================================================================
# Constants and TypedDicts
# ===============================================================================

# Verdicts that mean another redemption won the race
CONFLICT_ERROR_CODES = frozenset({"USAGE_LIMIT_REACHED", "ALREADY_USED"})

SORTABLE_FIELDS = frozenset({"id", "code", "created_at", "updated_at", "start_date", "end_date", "discount_value"})
DEFAULT_SORT = "created_at_desc"

PROMO_FIELDS = (
    "code",
    "description",
    "discount_type",
    "discount_value",
    "max_discount_amount",
    "min_purchase_amount",
    "start_date",
    "end_date",
    "usage_limit",
    "is_active",
    "is_first_time_only",
    "applicable_to",
)


class PromoCodeData(TypedDict, total=False):
    """Data for creating or updating a promo code."""

    code: str
    description: str
    discount_type: str
    discount_value: Decimal | str | int
    max_discount_amount: Decimal | str | int | None
    min_purchase_amount: Decimal | str | int | None
    start_date: Any
    end_date: Any
    usage_limit: int | None
    is_active: bool
    is_first_time_only: bool
    applicable_to: str
    applicable_plan_ids: list[str]
    applicable_user_ids: list[str]


class PromoCodeFilters(TypedDict, total=False):
    """Filters accepted by promo code listing."""

    status: str
    discount_type: str
    search: str
    sort: str


class PromoCodePage(TypedDict):
    """One page of promo codes."""

    items: list[PromoCode]
    total_items: int
    total_pages: int
    current_page: int


class MostUsedCode(TypedDict):
    code: str
    redemptions: int
    discount_value: Decimal


class PromoCodeOverview(TypedDict):
    """Aggregate promo code figures."""

    total_codes: int
    active_codes: int
    total_redemptions: int
    total_discount_value: Decimal
    average_discount: Decimal
    most_used_code: MostUsedCode | None


# ===============================================================================
# Promo Code Service
# ===============================================================================


class PromoCodeService:
    """
    Service for promo code administration, validation and redemption.

    ``apply_promo_code`` is the only path that increments ``usage_count``.
    Owns the promo cache: mutations clear the promo's own key, its cached
    verdicts and every list/filter key.
    """

    def __init__(
        self,
        cache: CacheService,
        validator: PromoCodeValidator,
        subscription_service: SubscriptionService | None = None,
    ) -> None:
        self.cache = cache
        self.validator = validator
        self.subscription_service = subscription_service

    # ---------------------------------------------------------------------------
    # Validation & redemption
    # ---------------------------------------------------------------------------

    def validate_promo_code(self, code: str, user_id: str, plan_id: str) -> PromoCodeValidationResult:
        """Advisory check; never raises for an unusable code, the verdict says why."""
        return self.validator.validate(code, user_id, plan_id)

    @translate_storage_errors
    def apply_promo_code(
        self,
        subscription_id: str,
        user_id: str,
        promo_code_id: str,
        discount_amount: Decimal | str | None = None,
    ) -> SubscriptionPromoCode:
        """
        Redeem a promo code against a subscription.

        Locks the promo row, re-validates it without the cache, increments
        ``usage_count`` with a conditional update and records the redemption,
        all in one transaction. Losing a race for the last use or redeeming a
        code twice raises ConflictError; any other failed rule raises
        ValidationError. When ``discount_amount`` is omitted the computed
        discount is used.
        """
        with transaction.atomic():
            subscription = self._get_subscription_for_update(subscription_id, user_id)

            try:
                promo_code = PromoCode.objects.select_for_update().get(pk=promo_code_id)
            except (PromoCode.DoesNotExist, DjangoValidationError):
                raise NotFoundError("Promo code not found") from None

            verdict = self.validator.evaluate(
                promo_code,
                user_id,
                str(subscription.plan_id),
                exclude_subscription_id=subscription.pk,
            )
            if not verdict.is_valid:
                logger.warning(
                    "Promo code validation failed after lock: %s for subscription %s - %s",
                    promo_code.code,
                    subscription.id,
                    verdict.message,
                    extra={
                        "promo_code_id": str(promo_code.id),
                        "subscription_id": str(subscription.id),
                        "error_code": verdict.error_code,
                    },
                )
                if verdict.error_code in CONFLICT_ERROR_CODES:
                    raise ConflictError(verdict.message)
                raise ValidationError(verdict.message, field="promo_code_id")

            amount = self._resolve_discount(discount_amount, verdict.discount_amount)

            updated = (
                PromoCode.objects.filter(pk=promo_code.pk, is_active=True)
                .filter(Q(usage_limit__isnull=True) | Q(usage_count__lt=F("usage_limit")))
                .update(usage_count=F("usage_count") + 1, updated_at=timezone.now())
            )
            if updated == 0:
                logger.warning(
                    "Promo code usage limit reached during redemption: %s",
                    promo_code.code,
                    extra={"promo_code_id": str(promo_code.id), "subscription_id": str(subscription.id)},
                )
                raise ConflictError("Promo code has reached its maximum usage limit")

            try:
                with transaction.atomic():
                    redemption = SubscriptionPromoCode.objects.create(
                        subscription=subscription,
                        promo_code=promo_code,
                        user_id=user_id,
                        discount_amount=amount,
                    )
            except IntegrityError:
                logger.warning(
                    "Duplicate promo code redemption: %s by user %s",
                    promo_code.code,
                    user_id,
                    extra={"promo_code_id": str(promo_code.id), "user_id": user_id},
                )
                raise ConflictError("You have already used this promo code") from None

            subscription.amount = max(Decimal("0.00"), subscription.amount - amount)
            subscription.save(update_fields=["amount", "updated_at"])

        logger.info(
            "Promo code applied: %s to subscription %s for %s",
            promo_code.code,
            subscription.id,
            amount,
            extra={
                "promo_code_id": str(promo_code.id),
                "subscription_id": str(subscription.id),
                "user_id": user_id,
                "discount_amount": str(amount),
                "redemption_id": str(redemption.id),
            },
        )
        self.invalidate_promo(promo_code)
        if self.subscription_service is not None:
            self.subscription_service.invalidate_subscription(subscription)
        return redemption

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    def get_promo_code(self, promo_code_id: str) -> PromoCode:
        cache_key = self._promo_key(promo_code_id)
        promo_code = self.cache.get(cache_key)
        if promo_code is not None:
            return promo_code

        promo_code = self._get_promo_code(promo_code_id, with_applicability=True)
        self.cache.set(cache_key, promo_code, config.get_promo_cache_ttl())
        return promo_code

    def list_promo_codes(self, filters: PromoCodeFilters | None = None, page: int = 1) -> PromoCodePage:
        filters = filters or {}
        page = max(1, int(page))
        page_size = config.get_promo_page_size()

        cache_key = self._list_key(filters, page)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        queryset = self._filtered_queryset(filters)
        total_items = queryset.count()
        offset = (page - 1) * page_size
        result: PromoCodePage = {
            "items": list(queryset[offset : offset + page_size]),
            "total_items": total_items,
            "total_pages": math.ceil(total_items / page_size) if total_items else 0,
            "current_page": page,
        }
        self.cache.set(cache_key, result, config.get_promo_cache_ttl())
        return result

    def get_overview(self) -> PromoCodeOverview:
        """Totals across all promo codes and their redemptions."""
        cached = self.cache.get("analytics:overview")
        if cached is not None:
            return cached

        now = timezone.now()
        active_codes = (
            PromoCode.objects.filter(is_active=True, start_date__lte=now)
            .filter(Q(end_date__isnull=True) | Q(end_date__gte=now))
            .count()
        )
        totals = SubscriptionPromoCode.objects.aggregate(count=Count("id"), total=Sum("discount_amount"))
        total_redemptions = totals["count"] or 0
        total_discount = totals["total"] or Decimal("0.00")
        average = (total_discount / total_redemptions).quantize(CENTS) if total_redemptions else Decimal("0.00")

        most_used: MostUsedCode | None = None
        top = (
            PromoCode.objects.annotate(redemption_count=Count("redemptions"), discount_total=Sum("redemptions__discount_amount"))
            .filter(redemption_count__gt=0)
            .order_by("-redemption_count", "code")
            .first()
        )
        if top is not None:
            most_used = {
                "code": top.code,
                "redemptions": top.redemption_count,
                "discount_value": top.discount_total or Decimal("0.00"),
            }

        overview: PromoCodeOverview = {
            "total_codes": PromoCode.objects.count(),
            "active_codes": active_codes,
            "total_redemptions": total_redemptions,
            "total_discount_value": total_discount,
            "average_discount": average,
            "most_used_code": most_used,
        }
        self.cache.set("analytics:overview", overview, config.get_promo_cache_ttl())
        return overview

    # ---------------------------------------------------------------------------
    # Administration
    # ---------------------------------------------------------------------------

    @translate_storage_errors
    def create_promo_code(self, data: PromoCodeData) -> PromoCode:
        data = dict(data)  # type: ignore[assignment]
        data.setdefault("start_date", timezone.now())
        data.setdefault("applicable_to", PromoCode.APPLICABLE_ALL)
        validate_promo_code_data(data)  # type: ignore[arg-type]
        code = normalize_code(data["code"])

        try:
            with transaction.atomic():
                if PromoCode.objects.filter(code=code, is_active=True).exists():
                    raise ValidationError(f"Promo code {code} already exists", field="code")

                promo_code = PromoCode()
                self._apply_fields(promo_code, data)
                promo_code.code = code
                promo_code.save()
                self._replace_applicability(promo_code, data)
        except IntegrityError:
            raise ValidationError(f"Promo code {code} already exists", field="code") from None

        logger.info(
            "Promo code created: %s",
            promo_code.code,
            extra={"promo_code_id": str(promo_code.id), "discount_type": promo_code.discount_type},
        )
        self.invalidate_promo(promo_code)
        return promo_code

    @translate_storage_errors
    def update_promo_code(self, promo_code_id: str, data: PromoCodeData) -> PromoCode:
        """
        Update a promo code. The discount type is immutable; applicability
        lists passed in replace the stored ones.
        """
        try:
            with transaction.atomic():
                promo_code = self._get_promo_code(promo_code_id, for_update=True)
                previous_code = promo_code.code

                if "discount_type" in data and data["discount_type"] != promo_code.discount_type:
                    raise ValidationError("Discount type cannot be changed", field="discount_type")

                merged: dict[str, Any] = {field: getattr(promo_code, field) for field in PROMO_FIELDS}
                merged.update(data)
                merged["applicable_plan_ids"] = data.get(
                    "applicable_plan_ids",
                    [str(plan_id) for plan_id in promo_code.applicable_plans.values_list("plan_id", flat=True)],
                )
                merged["applicable_user_ids"] = data.get(
                    "applicable_user_ids",
                    list(promo_code.applicable_users.values_list("user_id", flat=True)),
                )
                validate_promo_code_data(merged, is_update=True, require_future_end="end_date" in data)

                if merged.get("usage_limit") is not None and int(merged["usage_limit"]) < promo_code.usage_count:
                    raise ValidationError("Usage limit cannot be lower than the current usage count", field="usage_limit")

                code = normalize_code(merged["code"])
                if merged.get("is_active"):
                    duplicate = PromoCode.objects.filter(code=code, is_active=True).exclude(pk=promo_code.pk).exists()
                    if duplicate:
                        raise ValidationError(f"Promo code {code} already exists", field="code")

                self._apply_fields(promo_code, data)
                promo_code.code = code
                promo_code.save()
                if data.keys() & {"applicable_to", "applicable_plan_ids", "applicable_user_ids"}:
                    self._replace_applicability(promo_code, merged)
        except IntegrityError:
            raise ValidationError("Promo code already exists", field="code") from None

        logger.info(
            "Promo code updated: %s",
            promo_code.code,
            extra={"promo_code_id": str(promo_code.id), "fields": sorted(data.keys())},
        )
        self.invalidate_promo(promo_code, previous_code)
        return promo_code

    @translate_storage_errors
    def delete_promo_code(self, promo_code_id: str) -> PromoCode:
        """Soft delete: deactivate the code, keeping its redemption history."""
        with transaction.atomic():
            promo_code = self._get_promo_code(promo_code_id, for_update=True)
            if promo_code.is_active:
                promo_code.is_active = False
                promo_code.save(update_fields=["is_active", "updated_at"])

        logger.info("Promo code deactivated: %s", promo_code.code, extra={"promo_code_id": str(promo_code.id)})
        self.invalidate_promo(promo_code)
        return promo_code

    @translate_storage_errors
    def add_applicable_plans(self, promo_code_id: str, plan_ids: list[str]) -> PromoCode:
        if not plan_ids:
            raise ValidationError("At least one plan must be specified", field="plan_ids")
        with transaction.atomic():
            promo_code = self._get_promo_code(promo_code_id, for_update=True)
            for plan in self._get_plans(plan_ids):
                PromoCodeApplicablePlan.objects.get_or_create(promo_code=promo_code, plan=plan)

        logger.info("Applicable plans added", extra={"promo_code_id": str(promo_code.id), "plans": len(plan_ids)})
        self.invalidate_promo(promo_code)
        return promo_code

    @translate_storage_errors
    def add_applicable_users(self, promo_code_id: str, user_ids: list[str]) -> PromoCode:
        if not user_ids:
            raise ValidationError("At least one user must be specified", field="user_ids")
        with transaction.atomic():
            promo_code = self._get_promo_code(promo_code_id, for_update=True)
            for user_id in dict.fromkeys(user_ids):
                PromoCodeApplicableUser.objects.get_or_create(promo_code=promo_code, user_id=user_id)

        logger.info("Applicable users added", extra={"promo_code_id": str(promo_code.id), "users": len(user_ids)})
        self.invalidate_promo(promo_code)
        return promo_code

    # ---------------------------------------------------------------------------
    # Cache invalidation
    # ---------------------------------------------------------------------------

    def invalidate_promo(self, promo_code: PromoCode, previous_code: str | None = None) -> None:
        """Clear the promo's own key, its cached verdicts and every list key."""
        batch_size = config.get_cache_scan_batch_size()
        self.cache.delete_many([self._promo_key(promo_code.id), "analytics:overview"])
        self.cache.delete_pattern(f"validate:{str(promo_code.id).lower()}:*", batch_size)
        for code in {promo_code.code, previous_code} - {None}:
            self.cache.delete_pattern(f"validate:{normalize_code(code)}:*", batch_size)
        self.cache.delete_pattern("list:*", batch_size)

    @staticmethod
    def _promo_key(promo_code_id: Any) -> str:
        return f"promo:{promo_code_id}"

    @staticmethod
    def _list_key(filters: PromoCodeFilters, page: int) -> str:
        payload = json.dumps({"filters": filters, "page": page}, sort_keys=True, default=str)
        return f"list:{hashlib.md5(payload.encode()).hexdigest()}"  # noqa: S324

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _filtered_queryset(self, filters: PromoCodeFilters) -> QuerySet[PromoCode]:
        queryset = PromoCode.objects.all()
        now = timezone.now()

        status = filters.get("status")
        if status == "active":
            queryset = queryset.filter(is_active=True).filter(Q(end_date__isnull=True) | Q(end_date__gte=now))
        elif status == "expired":
            queryset = queryset.filter(end_date__lt=now)

        if filters.get("discount_type"):
            queryset = queryset.filter(discount_type=filters["discount_type"])

        search = (filters.get("search") or "").strip()
        if search:
            queryset = queryset.filter(Q(code__icontains=search) | Q(description__icontains=search))

        return queryset.order_by(self._ordering(filters.get("sort") or DEFAULT_SORT), "id")

    @staticmethod
    def _ordering(sort: str) -> str:
        field, _, direction = sort.rpartition("_")
        if field not in SORTABLE_FIELDS or direction not in ("asc", "desc"):
            logger.warning("Invalid promo code sort %r, using %s", sort, DEFAULT_SORT)
            field, direction = "created_at", "desc"
        return f"-{field}" if direction == "desc" else field

    @staticmethod
    def _get_promo_code(promo_code_id: Any, for_update: bool = False, with_applicability: bool = False) -> PromoCode:
        queryset = PromoCode.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        if with_applicability:
            queryset = queryset.prefetch_related("applicable_plans", "applicable_users")
        try:
            return queryset.get(pk=promo_code_id)
        except (PromoCode.DoesNotExist, DjangoValidationError):
            raise NotFoundError("Promo code not found") from None

    @staticmethod
    def _get_subscription_for_update(subscription_id: Any, user_id: str) -> Subscription:
        try:
            return Subscription.objects.select_for_update().get(pk=subscription_id, user_id=user_id)
        except (Subscription.DoesNotExist, DjangoValidationError):
            raise NotFoundError("Subscription not found") from None

    @staticmethod
    def _get_plans(plan_ids: list[str]) -> list[SubscriptionPlan]:
        unique_ids = list(dict.fromkeys(str(plan_id) for plan_id in plan_ids))
        try:
            plans = list(SubscriptionPlan.objects.filter(pk__in=unique_ids))
        except DjangoValidationError:
            raise ValidationError("Invalid plan ids", field="applicable_plan_ids") from None
        if len(plans) != len(unique_ids):
            found = {str(plan.pk) for plan in plans}
            missing = [plan_id for plan_id in unique_ids if plan_id not in found]
            raise ValidationError(f"Invalid plan ids: {', '.join(missing)}", field="applicable_plan_ids")
        return plans

    @staticmethod
    def _resolve_discount(requested: Decimal | str | None, granted: Decimal) -> Decimal:
        if requested is None:
            return granted
        amount = Decimal(str(requested)).quantize(CENTS)
        if amount < 0 or amount > granted:
            raise ValidationError(
                f"Discount amount must be between 0 and {granted} for this promo code",
                field="discount_amount",
            )
        return amount

    @staticmethod
    def _apply_fields(promo_code: PromoCode, data: dict[str, Any]) -> None:
        for field in PROMO_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ("discount_value", "max_discount_amount", "min_purchase_amount") and value not in (None, ""):
                value = Decimal(str(value))
            elif field in ("max_discount_amount", "min_purchase_amount") and value == "":
                value = None
            setattr(promo_code, field, value)

    def _replace_applicability(self, promo_code: PromoCode, data: dict[str, Any]) -> None:
        promo_code.applicable_plans.all().delete()
        promo_code.applicable_users.all().delete()

        if promo_code.applicable_to == PromoCode.APPLICABLE_SPECIFIC_PLANS:
            PromoCodeApplicablePlan.objects.bulk_create(
                [
                    PromoCodeApplicablePlan(promo_code=promo_code, plan=plan)
                    for plan in self._get_plans(data.get("applicable_plan_ids") or [])
                ]
            )
        elif promo_code.applicable_to == PromoCode.APPLICABLE_SPECIFIC_USERS:
            PromoCodeApplicableUser.objects.bulk_create(
                [
                    PromoCodeApplicableUser(promo_code=promo_code, user_id=user_id)
                    for user_id in dict.fromkeys(data.get("applicable_user_ids") or [])
                ]
            )
