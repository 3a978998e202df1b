"""
Plan Service for the subscription platform
Persistence, feature reconciliation and cache ownership for subscription plans.

Provides:
- Filtered, paginated plan listing with cached results
- Plan creation with owned features in one transaction
- Plan updates reconciling existing and new features
- Soft (archive) and hard deletion
- Direct feature mutations
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, TypedDict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError, QuerySet

from apps.common.decorators import translate_storage_errors
from apps.common.performance.cache import CacheService
from apps.common.types import ConflictError, NotFoundError, ValidationError

from . import config
from .models import BILLING_CYCLE_DELTAS, App, PlanFeature, SubscriptionPlan

logger = logging.getLogger(__name__)


# ===============================================================================
# TYPE DEFINITIONS
# ===============================================================================


class FeatureData(TypedDict, total=False):
    """Data for creating or updating a plan feature."""

    name: str
    description: str
    included: bool
    limit: int | None
    category: str
    is_popular: bool


@dataclass(frozen=True)
class ExistingFeature:
    """Feature already persisted on the plan, to be updated in place."""

    id: str
    data: FeatureData


@dataclass(frozen=True)
class NewFeature:
    """Feature to insert on the plan."""

    data: FeatureData


FeatureChange = ExistingFeature | NewFeature


class PlanData(TypedDict, total=False):
    """Data for creating or updating a plan."""

    app_id: str
    name: str
    description: str
    price: Decimal | str | int
    annual_price: Decimal | str | int | None
    currency: str
    billing_cycle: str
    trial_days: int
    status: str
    sort_position: int
    highlight: bool
    features: list[Any]


class PlanFilters(TypedDict, total=False):
    """Filters accepted by plan listing."""

    app_id: str
    status: str
    name: str
    billing_cycle: str
    sort_position: int
    highlight: bool
    include_inactive: bool


# Plan fields copied verbatim from PlanData onto the model
PLAN_SCALAR_FIELDS = (
    "name",
    "description",
    "price",
    "annual_price",
    "currency",
    "billing_cycle",
    "trial_days",
    "status",
    "sort_position",
    "highlight",
)

FEATURE_FIELDS = ("name", "description", "included", "limit", "category", "is_popular")


# ===============================================================================
# VALIDATION
# ===============================================================================


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None


def validate_feature_data(data: FeatureData) -> None:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Feature name is required", field="features.name")
    if len(name) > config.FEATURE_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Feature name must be at most {config.FEATURE_NAME_MAX_LENGTH} characters",
            field="features.name",
        )
    limit = data.get("limit")
    if limit is not None and int(limit) < 0:
        raise ValidationError("Feature limit cannot be negative", field="features.limit")


def validate_plan_data(data: PlanData, partial: bool = False) -> None:
    """
    Validate plan fields. With ``partial`` only the supplied fields are checked.
    """
    if not partial or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Plan name is required", field="name")
        if len(name) > config.PLAN_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Plan name must be at most {config.PLAN_NAME_MAX_LENGTH} characters",
                field="name",
            )

    if not partial or "price" in data:
        if data.get("price") is None:
            raise ValidationError("Plan price is required", field="price")
        if _to_decimal(data["price"], "price") < 0:
            raise ValidationError("Plan price cannot be negative", field="price")

    if data.get("annual_price") is not None and _to_decimal(data["annual_price"], "annual_price") < 0:
        raise ValidationError("Annual price cannot be negative", field="annual_price")

    if not partial or "billing_cycle" in data:
        if data.get("billing_cycle") not in BILLING_CYCLE_DELTAS:
            raise ValidationError("Billing cycle must be monthly, quarterly or yearly", field="billing_cycle")

    if "trial_days" in data:
        max_trial_days = config.get_max_trial_days()
        trial_days = data.get("trial_days") or 0
        if not 0 <= int(trial_days) <= max_trial_days:
            raise ValidationError(f"Trial days must be between 0 and {max_trial_days}", field="trial_days")

    if "status" in data and data["status"] not in dict(SubscriptionPlan.STATUS_CHOICES):
        raise ValidationError(f"Invalid plan status: {data['status']}", field="status")


def _check_unique_feature_names(names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        key = name.strip().lower()
        if key in seen:
            raise ValidationError(f"Duplicate feature name: {name}", field="features")
        seen.add(key)


# ===============================================================================
# PLAN SERVICE
# ===============================================================================


class PlanService:
    """
    Core service for subscription plans.

    Owns the plan cache. Every mutation clears the plan's own key, every
    list/filter key (``plans:*``) and the owning app's dropdown key.
    """

    # Allowed status changes through update_plan
    STATUS_TRANSITIONS: ClassVar[dict[str, frozenset[str]]] = {
        SubscriptionPlan.STATUS_DRAFT: frozenset({SubscriptionPlan.STATUS_ACTIVE}),
        SubscriptionPlan.STATUS_ACTIVE: frozenset({SubscriptionPlan.STATUS_ARCHIVED, SubscriptionPlan.STATUS_DRAFT}),
        SubscriptionPlan.STATUS_ARCHIVED: frozenset(),
    }

    def __init__(self, cache: CacheService) -> None:
        self.cache = cache

    # ---------------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------------

    def get_all_plans(
        self,
        filters: PlanFilters | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[SubscriptionPlan], int]:
        """
        List plans matching ``filters``.

        Only active plans are returned unless ``include_inactive`` is set or an
        explicit ``status`` filter is given. Returns the page and the total count.
        """
        filters = filters or {}
        if page < 1 or limit < 1:
            raise ValidationError("Page and limit must be positive integers", field="page")

        cache_key = self._list_key(filters, page, limit)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        queryset = self._filtered_queryset(filters)
        total = queryset.count()
        offset = (page - 1) * limit
        plans = list(queryset[offset : offset + limit])

        self.cache.set(cache_key, (plans, total), config.get_plan_cache_ttl())
        return plans, total

    def get_plan_by_id(self, plan_id: str) -> SubscriptionPlan:
        cache_key = self._plan_key(plan_id)
        plan = self.cache.get(cache_key)
        if plan is not None:
            return plan

        plan = self._get_plan(plan_id, with_features=True)
        self.cache.set(cache_key, plan, config.get_plan_cache_ttl())
        return plan

    def get_plan_dropdown(self, app_id: str) -> list[dict[str, str]]:
        """Active plans of an app as ``{id, name}`` options."""
        cache_key = self._dropdown_key(app_id)
        options = self.cache.get(cache_key)
        if options is not None:
            return options

        options = [
            {"id": str(plan_id), "name": name}
            for plan_id, name in SubscriptionPlan.objects.filter(
                app_id=app_id,
                status=SubscriptionPlan.STATUS_ACTIVE,
            ).values_list("id", "name")
        ]
        self.cache.set(cache_key, options, config.get_plan_cache_ttl())
        return options

    # ---------------------------------------------------------------------------
    # Plan mutations
    # ---------------------------------------------------------------------------

    @translate_storage_errors
    def create_plan(self, data: PlanData) -> SubscriptionPlan:
        """
        Create a plan together with its features.

        Features may be given as ``FeatureData`` dicts or ``NewFeature`` values;
        at least one is required.
        """
        validate_plan_data(data)
        features = [self._new_feature_data(item) for item in data.get("features") or []]
        if not features:
            raise ValidationError("At least one feature is required", field="features")
        for feature in features:
            validate_feature_data(feature)
        _check_unique_feature_names([feature["name"] for feature in features])

        app = self._get_app(data.get("app_id"))
        name = data["name"].strip()

        try:
            with transaction.atomic():
                if SubscriptionPlan.objects.filter(app=app, name__iexact=name).exists():
                    raise ValidationError(f"A plan named '{name}' already exists for this app", field="name")

                plan = SubscriptionPlan(app=app)
                self._apply_plan_fields(plan, data)
                if not data.get("currency"):
                    plan.currency = config.get_default_currency()
                plan.name = name
                plan.save()

                PlanFeature.objects.bulk_create(
                    [self._build_feature(plan, feature) for feature in features],
                )
        except IntegrityError:
            # Lost a concurrent create race on (app, name)
            logger.warning("Duplicate plan name on create: %s", name, extra={"app_id": str(app.id)})
            raise ValidationError(f"A plan named '{name}' already exists for this app", field="name") from None

        logger.info(
            "Plan created: %s for app %s",
            plan.name,
            app.name,
            extra={"plan_id": str(plan.id), "app_id": str(app.id), "features": len(features)},
        )
        self.invalidate_plan(plan)
        return self._get_plan(plan.id, with_features=True)

    @translate_storage_errors
    def update_plan(self, plan_id: str, data: PlanData) -> SubscriptionPlan:
        """
        Update plan fields and reconcile features.

        When ``features`` is supplied it is the complete desired feature set:
        ``ExistingFeature`` entries are updated, ``NewFeature`` entries are
        inserted and persisted features absent from the set are deleted.
        """
        validate_plan_data(data, partial=True)

        try:
            with transaction.atomic():
                plan = self._get_plan(plan_id, for_update=True)

                new_status = data.get("status")
                if new_status and new_status != plan.status:
                    self._check_status_transition(plan.status, new_status)

                if "name" in data:
                    name = data["name"].strip()
                    duplicate = (
                        SubscriptionPlan.objects.filter(app_id=plan.app_id, name__iexact=name)
                        .exclude(pk=plan.pk)
                        .exists()
                    )
                    if duplicate:
                        raise ValidationError(f"A plan named '{name}' already exists for this app", field="name")

                self._apply_plan_fields(plan, data)
                if "name" in data:
                    plan.name = data["name"].strip()
                plan.version += 1
                plan.save()

                if "features" in data:
                    self._reconcile_features(plan, data.get("features") or [])
        except IntegrityError:
            raise ValidationError("A plan with this name already exists for this app", field="name") from None

        logger.info(
            "Plan updated: %s (version %d)",
            plan.name,
            plan.version,
            extra={"plan_id": str(plan.id), "fields": sorted(data.keys())},
        )
        self.invalidate_plan(plan)
        return self._get_plan(plan.id, with_features=True)

    @translate_storage_errors
    def delete_plan(self, plan_id: str) -> SubscriptionPlan:
        """Soft delete: archive the plan. Subscriptions referencing it are untouched."""
        with transaction.atomic():
            plan = self._get_plan(plan_id, for_update=True)
            if plan.status != SubscriptionPlan.STATUS_ARCHIVED:
                plan.status = SubscriptionPlan.STATUS_ARCHIVED
                plan.save(update_fields=["status", "updated_at"])

        logger.info("Plan archived: %s", plan.name, extra={"plan_id": str(plan.id)})
        self.invalidate_plan(plan)
        return plan

    archive_plan = delete_plan

    @translate_storage_errors
    def hard_delete_plan(self, plan_id: str) -> None:
        """
        Permanently delete a plan and its features.

        Refused with ConflictError while any subscription references the plan.
        """
        with transaction.atomic():
            plan = self._get_plan(plan_id, for_update=True)
            if plan.subscriptions.exists():
                raise ConflictError("Cannot delete a plan that has subscriptions; archive it instead")
            try:
                plan.delete()
            except ProtectedError:
                raise ConflictError("Cannot delete a plan that has subscriptions; archive it instead") from None

        logger.info("Plan deleted permanently: %s", plan.name, extra={"plan_id": str(plan_id)})
        self._invalidate(plan_id, plan.app_id)

    purge_plan = hard_delete_plan

    # ---------------------------------------------------------------------------
    # Feature mutations
    # ---------------------------------------------------------------------------

    @translate_storage_errors
    def add_feature(self, plan_id: str, data: FeatureData) -> PlanFeature:
        validate_feature_data(data)
        with transaction.atomic():
            plan = self._get_plan(plan_id, for_update=True)
            if plan.features.filter(name__iexact=data["name"].strip()).exists():
                raise ValidationError(f"Duplicate feature name: {data['name']}", field="features")
            feature = self._build_feature(plan, data)
            feature.save()

        logger.info("Feature added: %s", feature.name, extra={"plan_id": str(plan.id), "feature_id": str(feature.id)})
        self.invalidate_plan(plan)
        return feature

    @translate_storage_errors
    def update_feature(self, plan_id: str, feature_id: str, data: FeatureData) -> PlanFeature:
        if "name" in data:
            validate_feature_data(data)
        with transaction.atomic():
            plan = self._get_plan(plan_id, for_update=True)
            feature = self._get_feature(plan, feature_id)
            if "name" in data:
                duplicate = (
                    plan.features.filter(name__iexact=data["name"].strip()).exclude(pk=feature.pk).exists()
                )
                if duplicate:
                    raise ValidationError(f"Duplicate feature name: {data['name']}", field="features")
            self._apply_feature_fields(feature, data)
            feature.save()

        logger.info("Feature updated: %s", feature.name, extra={"plan_id": str(plan.id), "feature_id": str(feature.id)})
        self.invalidate_plan(plan)
        return feature

    @translate_storage_errors
    def delete_feature(self, plan_id: str, feature_id: str) -> None:
        with transaction.atomic():
            plan = self._get_plan(plan_id, for_update=True)
            feature = self._get_feature(plan, feature_id)
            feature.delete()

        logger.info("Feature deleted", extra={"plan_id": str(plan.id), "feature_id": str(feature_id)})
        self.invalidate_plan(plan)

    # ---------------------------------------------------------------------------
    # Cache invalidation
    # ---------------------------------------------------------------------------

    def invalidate_plan(self, plan: SubscriptionPlan) -> None:
        self._invalidate(plan.id, plan.app_id)

    def _invalidate(self, plan_id: Any, app_id: Any) -> None:
        self.cache.delete(self._plan_key(plan_id))
        self.cache.delete(self._dropdown_key(app_id))
        self.cache.delete_pattern("plans:*", config.get_cache_scan_batch_size())

    @staticmethod
    def _plan_key(plan_id: Any) -> str:
        return f"plan:{plan_id}"

    @staticmethod
    def _dropdown_key(app_id: Any) -> str:
        return f"plans:dropdown:{app_id}"

    @staticmethod
    def _list_key(filters: PlanFilters, page: int, limit: int) -> str:
        payload = json.dumps({"filters": filters, "page": page, "limit": limit}, sort_keys=True, default=str)
        digest = hashlib.md5(payload.encode()).hexdigest()  # noqa: S324
        return f"plans:list:{digest}"

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    def _filtered_queryset(self, filters: PlanFilters) -> QuerySet[SubscriptionPlan]:
        queryset = SubscriptionPlan.objects.select_related("app").prefetch_related("features")

        if filters.get("status"):
            queryset = queryset.filter(status=filters["status"])
        elif not filters.get("include_inactive"):
            queryset = queryset.filter(status=SubscriptionPlan.STATUS_ACTIVE)

        if filters.get("app_id"):
            queryset = queryset.filter(app_id=filters["app_id"])
        if filters.get("name"):
            queryset = queryset.filter(name__icontains=filters["name"])
        if filters.get("billing_cycle"):
            queryset = queryset.filter(billing_cycle=filters["billing_cycle"])
        if filters.get("sort_position") is not None:
            queryset = queryset.filter(sort_position=filters["sort_position"])
        if filters.get("highlight") is not None:
            queryset = queryset.filter(highlight=filters["highlight"])

        return queryset.order_by("sort_position", "name")

    def _get_plan(self, plan_id: Any, with_features: bool = False, for_update: bool = False) -> SubscriptionPlan:
        queryset = SubscriptionPlan.objects.select_related("app")
        if for_update:
            queryset = queryset.select_for_update()
        if with_features:
            queryset = queryset.prefetch_related("features")
        try:
            return queryset.get(pk=plan_id)
        except (SubscriptionPlan.DoesNotExist, DjangoValidationError):
            raise NotFoundError(f"Subscription plan {plan_id} not found") from None

    @staticmethod
    def _get_app(app_id: Any) -> App:
        if not app_id:
            raise ValidationError("App id is required", field="app_id")
        try:
            return App.objects.get(pk=app_id)
        except (App.DoesNotExist, DjangoValidationError):
            raise ValidationError(f"App {app_id} does not exist", field="app_id") from None

    @staticmethod
    def _get_feature(plan: SubscriptionPlan, feature_id: Any) -> PlanFeature:
        try:
            return plan.features.get(pk=feature_id)
        except (PlanFeature.DoesNotExist, DjangoValidationError):
            raise NotFoundError(f"Feature {feature_id} not found on plan {plan.id}") from None

    def _check_status_transition(self, current: str, new: str) -> None:
        if new not in self.STATUS_TRANSITIONS.get(current, frozenset()):
            raise ValidationError(f"Cannot change plan status from {current} to {new}", field="status")

    @staticmethod
    def _apply_plan_fields(plan: SubscriptionPlan, data: PlanData) -> None:
        for field in PLAN_SCALAR_FIELDS:
            if field in data:
                value = data[field]  # type: ignore[literal-required]
                if field in ("price", "annual_price") and value is not None:
                    value = Decimal(str(value))
                if field == "trial_days":
                    value = value or 0
                setattr(plan, field, value)

    @staticmethod
    def _apply_feature_fields(feature: PlanFeature, data: FeatureData) -> None:
        for field in FEATURE_FIELDS:
            if field in data:
                value = data[field]  # type: ignore[literal-required]
                setattr(feature, field, value.strip() if field == "name" else value)

    def _build_feature(self, plan: SubscriptionPlan, data: FeatureData) -> PlanFeature:
        feature = PlanFeature(plan=plan)
        self._apply_feature_fields(feature, data)
        return feature

    @staticmethod
    def _new_feature_data(item: Any) -> FeatureData:
        if isinstance(item, NewFeature):
            return item.data
        if isinstance(item, ExistingFeature):
            raise ValidationError("New plans cannot reference existing features", field="features")
        return item

    def _reconcile_features(self, plan: SubscriptionPlan, changes: list[FeatureChange]) -> None:
        if not changes:
            raise ValidationError("At least one feature is required", field="features")

        for change in changes:
            if not isinstance(change, (ExistingFeature, NewFeature)):
                raise ValidationError("Features must be ExistingFeature or NewFeature values", field="features")
            if isinstance(change, NewFeature) or "name" in change.data:
                validate_feature_data(change.data)

        persisted = {str(feature.id): feature for feature in plan.features.all()}
        kept_ids = {str(change.id) for change in changes if isinstance(change, ExistingFeature)}
        unknown = kept_ids - persisted.keys()
        if unknown:
            raise NotFoundError(f"Features not found on plan {plan.id}: {', '.join(sorted(unknown))}")

        names = []
        for change in changes:
            if isinstance(change, ExistingFeature):
                names.append(change.data.get("name") or persisted[str(change.id)].name)
            else:
                names.append(change.data["name"])
        _check_unique_feature_names(names)

        removed = [feature_id for feature_id in persisted if feature_id not in kept_ids]
        if removed:
            PlanFeature.objects.filter(plan=plan, pk__in=removed).delete()

        for change in changes:
            if isinstance(change, ExistingFeature):
                feature = persisted[str(change.id)]
                self._apply_feature_fields(feature, change.data)
                feature.save()
            else:
                self._build_feature(plan, change.data).save()

        logger.debug(
            "Features reconciled",
            extra={"plan_id": str(plan.id), "kept": len(kept_ids), "removed": len(removed)},
        )
