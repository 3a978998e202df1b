# Generated manually for Promotions App - promo codes, applicability and redemptions

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("subscriptions", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PromoCode",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(db_index=True, help_text="Stored uppercase", max_length=50)),
                ("description", models.TextField(blank=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed", "Fixed Amount")],
                        max_length=20,
                    ),
                ),
                (
                    "discount_value",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                    ),
                ),
                (
                    "max_discount_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Caps percentage discounts",
                        max_digits=12,
                        null=True,
                    ),
                ),
                (
                    "min_purchase_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Minimum plan price the code applies to",
                        max_digits=12,
                        null=True,
                    ),
                ),
                ("start_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("end_date", models.DateTimeField(blank=True, help_text="Empty for no expiry", null=True)),
                (
                    "usage_limit",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Empty for unlimited",
                        null=True,
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                ("usage_count", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_first_time_only", models.BooleanField(default=False)),
                (
                    "applicable_to",
                    models.CharField(
                        choices=[
                            ("all", "All Plans and Users"),
                            ("specific_plans", "Specific Plans"),
                            ("specific_users", "Specific Users"),
                        ],
                        default="all",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Promo Code",
                "verbose_name_plural": "Promo Codes",
                "db_table": "promo_codes",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["is_active", "start_date", "end_date"], name="idx_promo_validity"),
                    models.Index(fields=["discount_type"], name="idx_promo_discount_type"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("code",),
                        name="uniq_active_promo_code",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("usage_limit__isnull", True),
                            ("usage_count__lte", models.F("usage_limit")),
                            _connector="OR",
                        ),
                        name="promo_usage_within_limit",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("end_date__isnull", True),
                            ("end_date__gt", models.F("start_date")),
                            _connector="OR",
                        ),
                        name="promo_end_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromoCodeApplicablePlan",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="applicable_promo_codes",
                        to="subscriptions.subscriptionplan",
                    ),
                ),
                (
                    "promo_code",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="applicable_plans",
                        to="promotions.promocode",
                    ),
                ),
            ],
            options={
                "db_table": "promo_code_applicable_plans",
                "constraints": [
                    models.UniqueConstraint(fields=("promo_code", "plan"), name="uniq_promo_applicable_plan"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PromoCodeApplicableUser",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.CharField(max_length=255)),
                (
                    "promo_code",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="applicable_users",
                        to="promotions.promocode",
                    ),
                ),
            ],
            options={
                "db_table": "promo_code_applicable_users",
                "constraints": [
                    models.UniqueConstraint(fields=("promo_code", "user_id"), name="uniq_promo_applicable_user"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionPromoCode",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.CharField(db_index=True, max_length=255)),
                (
                    "discount_amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("9999999999.99")),
                        ],
                    ),
                ),
                ("applied_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "promo_code",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redemptions",
                        to="promotions.promocode",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="promo_redemptions",
                        to="subscriptions.subscription",
                    ),
                ),
            ],
            options={
                "verbose_name": "Promo Code Redemption",
                "verbose_name_plural": "Promo Code Redemptions",
                "db_table": "subscription_promo_codes",
                "ordering": ("-applied_date",),
                "indexes": [
                    models.Index(fields=["promo_code", "-applied_date"], name="idx_redemption_promo_applied"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("promo_code", "subscription"),
                        name="uniq_redemption_per_subscription",
                    ),
                    models.UniqueConstraint(fields=("promo_code", "user_id"), name="uniq_redemption_per_user"),
                ],
            },
        ),
    ]
