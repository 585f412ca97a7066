from django.contrib import admin

from orders.infra.models import (
    AddressORM,
    CartItemORM,
    CartORM,
    OrderLineORM,
    OrderORM,
    ProductORM,
    VariantORM,
    VoucherORM,
)


@admin.register(ProductORM)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "original_price", "created_at")
    search_fields = ("name",)


@admin.register(VariantORM)
class VariantAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "sku", "stock_quantity", "additional_price")
    search_fields = ("sku", "product__name")
    # Stock moves only through the inventory ledger
    readonly_fields = ("stock_quantity",)


@admin.register(AddressORM)
class AddressAdmin(admin.ModelAdmin):
    list_display = ("id", "user_id", "city", "country")
    search_fields = ("user_id", "city")


class CartItemInline(admin.TabularInline):
    model = CartItemORM
    extra = 0


@admin.register(CartORM)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user_id", "updated_at")
    inlines = [CartItemInline]


@admin.register(VoucherORM)
class VoucherAdmin(admin.ModelAdmin):
    list_display = ("code", "discount_type", "discount_value", "used", "usage_limit", "is_active", "valid_until")
    list_filter = ("discount_type", "is_active")
    search_fields = ("code",)
    filter_horizontal = ("applicable_products",)
    readonly_fields = ("used",)


class OrderLineInline(admin.TabularInline):
    model = OrderLineORM
    extra = 0
    readonly_fields = ("variant", "quantity", "position")
    can_delete = False


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "user_id", "status", "payment_method", "total_price", "created_at")
    list_filter = ("status", "payment_method", "created_at")
    search_fields = ("id", "user_id")
    inlines = [OrderLineInline]
    readonly_fields = (
        "products_price",
        "shipping_price",
        "voucher_discount",
        "total_price",
        "status",
        "delivered_at",
        "cancelled_at",
        "version",
    )
