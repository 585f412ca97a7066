import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AddressORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.UUIDField()),
                ("line", models.CharField(max_length=255)),
                ("city", models.CharField(max_length=128)),
                ("country", models.CharField(max_length=64)),
            ],
            options={
                "indexes": [models.Index(fields=["user_id"], name="address_user_idx")],
            },
        ),
        migrations.CreateModel(
            name="CartORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.UUIDField(unique=True)),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="ProductORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("original_price", models.DecimalField(decimal_places=2, max_digits=12)),
            ],
            options={
                "indexes": [models.Index(fields=["name"], name="product_name_idx")],
            },
        ),
        migrations.CreateModel(
            name="VariantORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sku", models.CharField(blank=True, default="", max_length=64)),
                ("stock_quantity", models.PositiveIntegerField(default=0)),
                ("additional_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "product",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="variants",
                        to="orders.productorm",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["product"], name="variant_product_idx")],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("stock_quantity__gte", 0)),
                        name="variant_stock_non_negative",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="CartItemORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.PositiveIntegerField()),
                (
                    "cart",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.cartorm",
                    ),
                ),
                (
                    "variant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to="orders.variantorm",
                    ),
                ),
            ],
            options={
                "unique_together": {("cart", "variant")},
            },
        ),
        migrations.CreateModel(
            name="VoucherORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixedAmount", "Fixed amount")],
                        max_length=16,
                    ),
                ),
                ("discount_value", models.DecimalField(decimal_places=2, max_digits=12)),
                ("max_discount_value", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("min_order_value", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("valid_from", models.DateTimeField()),
                ("valid_until", models.DateTimeField()),
                ("usage_limit", models.PositiveIntegerField()),
                ("used", models.PositiveIntegerField(default=0)),
                (
                    "applicable_products",
                    models.ManyToManyField(blank=True, related_name="vouchers", to="orders.productorm"),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("used__lte", models.F("usage_limit"))),
                        name="voucher_used_within_limit",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("user_id", models.UUIDField()),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("COD", "Cash on delivery"), ("CARD", "Card"), ("BANK_TRANSFER", "Bank transfer")],
                        max_length=32,
                    ),
                ),
                ("products_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("shipping_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("voucher_discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("Pending", "Pending"),
                            ("Processing", "Processing"),
                            ("Shipped", "Shipped"),
                            ("Delivered", "Delivered"),
                            ("Cancelled", "Cancelled"),
                        ],
                        default="Pending",
                        max_length=16,
                    ),
                ),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=0)),
                (
                    "shipping_address",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to="orders.addressorm",
                    ),
                ),
                (
                    "vouchers",
                    models.ManyToManyField(blank=True, related_name="orders", to="orders.voucherorm"),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["user_id", "status"], name="order_user_status_idx"),
                    models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLineORM",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.PositiveIntegerField()),
                ("position", models.PositiveIntegerField(default=0)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="orders.orderorm",
                    ),
                ),
                (
                    "variant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="order_lines",
                        to="orders.variantorm",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "indexes": [models.Index(fields=["order"], name="order_line_order_idx")],
            },
        ),
    ]
