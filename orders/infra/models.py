from __future__ import annotations

from uuid import uuid4

from django.db import models


PAYMENT_METHOD = (
    ("COD", "Cash on delivery"),
    ("CARD", "Card"),
    ("BANK_TRANSFER", "Bank transfer"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ProductORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    original_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        indexes = [
            models.Index(fields=("name",), name="product_name_idx"),
        ]

    def __str__(self):
        return self.name


class VariantORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    product = models.ForeignKey(
        ProductORM,
        on_delete=models.SET_NULL,
        null=True,
        related_name="variants",
    )
    sku = models.CharField(max_length=64, blank=True, default="")
    stock_quantity = models.PositiveIntegerField(default=0)
    additional_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta:
        indexes = [
            models.Index(fields=("product",), name="variant_product_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_quantity__gte=0),
                name="variant_stock_non_negative",
            ),
        ]


class AddressORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    user_id = models.UUIDField()
    line = models.CharField(max_length=255)
    city = models.CharField(max_length=128)
    country = models.CharField(max_length=64)

    class Meta:
        indexes = [
            models.Index(fields=("user_id",), name="address_user_idx"),
        ]


class CartORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    user_id = models.UUIDField(unique=True)


class CartItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    cart = models.ForeignKey(
        CartORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    variant = models.ForeignKey(
        VariantORM,
        on_delete=models.CASCADE,
        related_name="+",
    )
    quantity = models.PositiveIntegerField()

    class Meta:
        unique_together = [("cart", "variant")]


class VoucherORM(TimeStampedModel):
    DISCOUNT_TYPE_CHOICES = (
        ("percentage", "Percentage"),
        ("fixedAmount", "Fixed amount"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    is_active = models.BooleanField(default=True)
    discount_type = models.CharField(max_length=16, choices=DISCOUNT_TYPE_CHOICES)
    discount_value = models.DecimalField(max_digits=12, decimal_places=2)
    max_discount_value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    min_order_value = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    usage_limit = models.PositiveIntegerField()
    used = models.PositiveIntegerField(default=0)
    applicable_products = models.ManyToManyField(
        ProductORM,
        related_name="vouchers",
        blank=True,
    )

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(used__lte=models.F("usage_limit")),
                name="voucher_used_within_limit",
            ),
        ]


class OrderORM(TimeStampedModel):

    STATUS_CHOICES = (
        ("Pending", "Pending"),
        ("Processing", "Processing"),
        ("Shipped", "Shipped"),
        ("Delivered", "Delivered"),
        ("Cancelled", "Cancelled"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    user_id = models.UUIDField()
    payment_method = models.CharField(max_length=32, choices=PAYMENT_METHOD)
    products_price = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_price = models.DecimalField(max_digits=12, decimal_places=2)
    voucher_discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="Pending")
    shipping_address = models.ForeignKey(
        AddressORM,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    vouchers = models.ManyToManyField(
        VoucherORM,
        related_name="orders",
        blank=True,
    )
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        indexes = [
            models.Index(fields=("user_id", "status"), name="order_user_status_idx"),
            models.Index(fields=("status", "created_at"), name="order_status_created_idx"),
        ]


class OrderLineORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    variant = models.ForeignKey(
        VariantORM,
        on_delete=models.PROTECT,
        related_name="order_lines",
    )
    quantity = models.PositiveIntegerField()
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position"]
        indexes = [
            models.Index(fields=("order",), name="order_line_order_idx"),
        ]
