"""
Domain model for Order aggregate.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from orders.domain.errors import InvalidStateError, ValidationError
from orders.domain.status import (
    MUTABLE_STATUSES,
    OrderStatus,
    can_transition,
)


class OrderLine:
    """Order line value object."""

    def __init__(self, variant_id: UUID, quantity: int):
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        self.variant_id = variant_id
        self.quantity = quantity

    def __eq__(self, other):
        if not isinstance(other, OrderLine):
            return NotImplemented
        return (self.variant_id, self.quantity) == (other.variant_id, other.quantity)

    def __repr__(self):
        return f"OrderLine(variant_id={self.variant_id!r}, quantity={self.quantity})"


def build_lines(items: Iterable[tuple[UUID, int]]) -> list[OrderLine]:
    """
    Normalize requested (variant_id, quantity) pairs into order lines.

    Duplicate variants are merged keeping first-seen order, zero quantities
    are dropped, negative quantities are rejected.
    """
    quantities: dict[UUID, int] = {}
    for variant_id, quantity in items:
        quantity = int(quantity)
        if quantity < 0:
            raise ValidationError(f"Quantity for variant {variant_id} must not be negative")
        quantities[variant_id] = quantities.get(variant_id, 0) + quantity
    return [
        OrderLine(variant_id, quantity)
        for variant_id, quantity in quantities.items()
        if quantity > 0
    ]


def line_deltas(current: Iterable[OrderLine], requested: Iterable[OrderLine]) -> dict[UUID, int]:
    """Signed quantity change per variant; unchanged variants are omitted."""
    before = {line.variant_id: line.quantity for line in current}
    after = {line.variant_id: line.quantity for line in requested}
    deltas = {}
    for variant_id in before.keys() | after.keys():
        difference = after.get(variant_id, 0) - before.get(variant_id, 0)
        if difference:
            deltas[variant_id] = difference
    return deltas


class Order:
    """Order aggregate root."""

    def __init__(
        self,
        user_id: UUID,
        shipping_address_id: UUID,
        payment_method: str,
        id: UUID | None = None,
        lines: list[OrderLine] | None = None,
        status: OrderStatus = OrderStatus.PENDING,
        products_price: Decimal = Decimal("0.00"),
        shipping_price: Decimal = Decimal("0.00"),
        voucher_discount: Decimal = Decimal("0.00"),
        total_price: Decimal = Decimal("0.00"),
        voucher_ids: list[UUID] | None = None,
        delivered_at: datetime | None = None,
        cancelled_at: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ):
        self.id = id or uuid4()
        self.user_id = user_id
        self.shipping_address_id = shipping_address_id
        self.payment_method = payment_method
        self._lines = lines or []
        self._status = status
        self.products_price = products_price
        self.shipping_price = shipping_price
        self.voucher_discount = voucher_discount
        self.total_price = total_price
        self._voucher_ids = voucher_ids or []
        self.delivered_at = delivered_at
        self.cancelled_at = cancelled_at
        self.created_at = created_at
        self.updated_at = updated_at
        self.version = version

    @property
    def lines(self) -> list[OrderLine]:
        """Get order lines (immutable)."""
        return list(self._lines)

    @property
    def voucher_ids(self) -> list[UUID]:
        return list(self._voucher_ids)

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def is_mutable(self) -> bool:
        return self._status in MUTABLE_STATUSES

    def ensure_mutable(self) -> None:
        """Content can only change while the order is pending or processing."""
        if not self.is_mutable:
            raise InvalidStateError(f"Cannot update order with status: {self._status.value}")

    def replace_lines(self, lines: list[OrderLine]) -> None:
        self.ensure_mutable()
        if not lines:
            raise ValidationError("Order must contain at least one product")
        self._lines = list(lines)

    def change_shipping_address(self, address_id: UUID) -> None:
        self.ensure_mutable()
        self.shipping_address_id = address_id

    def apply_pricing(self, quote, voucher_ids: list[UUID]) -> None:
        """Store a reconciled price quote and the vouchers that produced it."""
        self.products_price = quote.products_price
        self.shipping_price = quote.shipping_price
        self.voucher_discount = quote.voucher_discount
        self.total_price = quote.total_price
        self._voucher_ids = list(voucher_ids)

    def transition_to(self, target: OrderStatus, now: datetime) -> bool:
        """
        Move to ``target``. Returns False when the order is already there,
        so callers can skip side effects.
        """
        if target == self._status:
            return False
        if not can_transition(self._status, target):
            raise InvalidStateError(
                f"Cannot change order status from {self._status.value} to {target.value}"
            )

        self._status = target
        if target == OrderStatus.DELIVERED:
            self.delivered_at = now
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = now
        return True
