"""
Infrastructure repositories for domain entities.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import UUID

from django.db.models import F
from django.utils import timezone

from orders.domain.catalog import Address, Product, Variant
from orders.domain.errors import ConflictError
from orders.domain.order import Order, OrderLine
from orders.domain.status import OrderStatus
from orders.domain.voucher import DiscountType, Voucher
from orders.infra.models import (
    AddressORM,
    CartItemORM,
    OrderLineORM,
    OrderORM,
    ProductORM,
    VariantORM,
    VoucherORM,
)
import logging

logger = logging.getLogger(__name__)


class CatalogRepository:
    """Read access to products and variants."""

    def get_product(self, product_id: UUID) -> Product | None:
        product_orm = ProductORM.objects.filter(id=product_id).first()
        return self._product_to_domain(product_orm) if product_orm else None

    def get_variant(self, variant_id: UUID) -> Variant | None:
        variant_orm = (
            VariantORM.objects
            .select_related("product")
            .filter(id=variant_id)
            .first()
        )
        return self._variant_to_domain(variant_orm) if variant_orm else None

    def get_variants(self, variant_ids: Iterable[UUID]) -> dict[UUID, Variant]:
        """Get variants by ID (missing ids are simply absent)."""
        variants_orm = (
            VariantORM.objects
            .select_related("product")
            .filter(id__in=list(variant_ids))
        )
        return {v.id: self._variant_to_domain(v) for v in variants_orm}

    def _product_to_domain(self, product_orm: ProductORM) -> Product:
        return Product(
            id=product_orm.id,
            name=product_orm.name,
            original_price=product_orm.original_price,
        )

    def _variant_to_domain(self, variant_orm: VariantORM) -> Variant:
        return Variant(
            id=variant_orm.id,
            product_id=variant_orm.product_id,
            stock_quantity=variant_orm.stock_quantity,
            additional_price=variant_orm.additional_price,
            product=self._product_to_domain(variant_orm.product) if variant_orm.product else None,
        )


class AddressRepository:

    def get_by_id(self, address_id: UUID) -> Address | None:
        address_orm = AddressORM.objects.filter(id=address_id).first()
        if not address_orm:
            return None
        return Address(
            id=address_orm.id,
            user_id=address_orm.user_id,
            line=address_orm.line,
            city=address_orm.city,
            country=address_orm.country,
        )


class CartRepository:

    def remove_lines(self, user_id: UUID, variant_ids: Iterable[UUID]) -> int:
        """Drop the given variants from the user's cart."""
        deleted, _ = CartItemORM.objects.filter(
            cart__user_id=user_id,
            variant_id__in=list(variant_ids),
        ).delete()
        return deleted


class VoucherRepository:

    def get_many(self, voucher_ids: Iterable[UUID]) -> dict[UUID, Voucher]:
        vouchers_orm = (
            VoucherORM.objects
            .filter(id__in=list(voucher_ids))
            .prefetch_related("applicable_products")
        )
        return {v.id: self._to_domain(v) for v in vouchers_orm}

    def consume_use(self, voucher_id: UUID) -> None:
        """Count one use; a concurrent writer that took the last use wins."""
        updated = (
            VoucherORM.objects
            .filter(id=voucher_id, used__lt=F("usage_limit"))
            .update(used=F("used") + 1)
        )
        if not updated:
            raise ConflictError(f"Voucher {voucher_id} usage changed concurrently")

    def release_use(self, voucher_id: UUID) -> None:
        VoucherORM.objects.filter(id=voucher_id, used__gt=0).update(used=F("used") - 1)

    def _to_domain(self, voucher_orm: VoucherORM) -> Voucher:
        return Voucher(
            id=voucher_orm.id,
            code=voucher_orm.code,
            discount_type=DiscountType(voucher_orm.discount_type),
            discount_value=voucher_orm.discount_value,
            max_discount_value=voucher_orm.max_discount_value,
            min_order_value=voucher_orm.min_order_value,
            valid_from=voucher_orm.valid_from,
            valid_until=voucher_orm.valid_until,
            usage_limit=voucher_orm.usage_limit,
            used=voucher_orm.used,
            is_active=voucher_orm.is_active,
            applicable_product_ids=frozenset(p.id for p in voucher_orm.applicable_products.all()),
        )


class OrderRepository:
    """Repository for Order aggregate."""

    def _queryset(self):
        return OrderORM.objects.prefetch_related("lines", "vouchers")

    def get_by_id(self, order_id: UUID) -> Order | None:
        """Get order by ID with lines and vouchers."""
        order_orm = self._queryset().filter(id=order_id).first()
        return self._to_domain(order_orm) if order_orm else None

    def get_for_update(self, order_id: UUID) -> Order | None:
        """Get order and lock its row until the transaction ends."""
        locked = OrderORM.objects.select_for_update().filter(id=order_id).values_list("id", flat=True).first()
        if locked is None:
            return None
        return self.get_by_id(order_id)

    def search(
        self,
        user_id: UUID | None = None,
        status: OrderStatus | None = None,
        payment_method: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        product_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """List orders, newest first, with optional filters."""
        orders_orm = self._queryset()
        if user_id is not None:
            orders_orm = orders_orm.filter(user_id=user_id)
        if status is not None:
            orders_orm = orders_orm.filter(status=status.value)
        if payment_method:
            orders_orm = orders_orm.filter(payment_method=payment_method)
        if created_from:
            orders_orm = orders_orm.filter(created_at__gte=created_from)
        if created_to:
            orders_orm = orders_orm.filter(created_at__lte=created_to)
        if product_name and product_name.strip():
            orders_orm = orders_orm.filter(
                lines__variant__product__name__icontains=product_name.strip()
            ).distinct()
        orders_orm = orders_orm.order_by("-created_at")[offset:offset + limit]
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    def add(self, order: Order) -> UUID:
        """Insert a new order."""
        order_orm = OrderORM.objects.create(
            id=order.id,
            user_id=order.user_id,
            shipping_address_id=order.shipping_address_id,
            **self._field_values(order),
        )
        self._write_lines(order_orm, order)
        order_orm.vouchers.set(order.voucher_ids)

        order.created_at = order_orm.created_at
        order.updated_at = order_orm.updated_at
        order.version = order_orm.version
        return order_orm.id

    def save(self, order: Order) -> None:
        """
        Persist changes to an existing order.

        The row is only written if its version still matches the one the
        order was loaded with; otherwise ``ConflictError`` is raised.
        """
        now = timezone.now()
        updated = (
            OrderORM.objects
            .filter(id=order.id, version=order.version)
            .update(
                shipping_address_id=order.shipping_address_id,
                version=F("version") + 1,
                updated_at=now,
                **self._field_values(order),
            )
        )
        if not updated:
            logger.warning("order_version_conflict", extra={"order_id": str(order.id)})
            raise ConflictError(f"Order {order.id} was modified concurrently")

        order_orm = OrderORM.objects.get(id=order.id)
        OrderLineORM.objects.filter(order=order_orm).delete()
        self._write_lines(order_orm, order)
        order_orm.vouchers.set(order.voucher_ids)

        order.version += 1
        order.updated_at = now

    def _field_values(self, order: Order) -> dict:
        return {
            "payment_method": order.payment_method,
            "products_price": order.products_price,
            "shipping_price": order.shipping_price,
            "voucher_discount": order.voucher_discount,
            "total_price": order.total_price,
            "status": order.status.value,
            "delivered_at": order.delivered_at,
            "cancelled_at": order.cancelled_at,
        }

    def _write_lines(self, order_orm: OrderORM, order: Order) -> None:
        OrderLineORM.objects.bulk_create([
            OrderLineORM(
                order=order_orm,
                variant_id=line.variant_id,
                quantity=line.quantity,
                position=position,
            )
            for position, line in enumerate(order.lines)
        ])

    def _to_domain(self, order_orm: OrderORM) -> Order:
        """Convert ORM model to domain entity."""
        # Build lines directly (bypass replace_lines() validation for loading from DB)
        lines = [
            OrderLine(variant_id=line_orm.variant_id, quantity=line_orm.quantity)
            for line_orm in order_orm.lines.all()
        ]

        return Order(
            id=order_orm.id,
            user_id=order_orm.user_id,
            shipping_address_id=order_orm.shipping_address_id,
            payment_method=order_orm.payment_method,
            lines=lines,
            status=OrderStatus(order_orm.status),
            products_price=order_orm.products_price,
            shipping_price=order_orm.shipping_price,
            voucher_discount=order_orm.voucher_discount,
            total_price=order_orm.total_price,
            voucher_ids=[voucher.id for voucher in order_orm.vouchers.all()],
            delivered_at=order_orm.delivered_at,
            cancelled_at=order_orm.cancelled_at,
            created_at=order_orm.created_at,
            updated_at=order_orm.updated_at,
            version=order_orm.version,
        )
