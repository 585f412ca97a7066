"""
Application services for order operations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from orders.domain import pricing
from orders.domain.catalog import Address
from orders.domain.errors import (
    ForbiddenError,
    NotFoundError,
    OrderError,
    ValidationError,
)
from orders.domain.order import Order, build_lines, line_deltas
from orders.domain.status import Actor, OrderStatus, authorize_status_change
from orders.domain.voucher import RejectionReason, VoucherEvaluation, VoucherEvaluator
from orders.infra.ledger import InventoryLedger
from orders.infra.locks import order_lock
from orders.infra.models import PAYMENT_METHOD
from orders.infra.repositories import (
    AddressRepository,
    CartRepository,
    CatalogRepository,
    OrderRepository,
    VoucherRepository,
)
from orders.infra.retry import retry_with_backoff

logger = logging.getLogger(__name__)

PAYMENT_METHODS = frozenset(code for code, _ in PAYMENT_METHOD)


@dataclass
class OrderMutationResult:
    """Order after a create/update, plus the requested vouchers that were dropped."""
    order: Order
    rejected_vouchers: dict[UUID, RejectionReason] = field(default_factory=dict)


@dataclass
class BatchFailure:
    order_id: UUID
    code: str
    message: str


@dataclass
class BatchStatusResult:
    """Per-order outcome of a batch status change."""
    order_ids: list[UUID]
    status: OrderStatus
    updated: list[UUID] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}")


class OrderService:
    """Service for order operations."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        catalog_repo: CatalogRepository | None = None,
        address_repo: AddressRepository | None = None,
        cart_repo: CartRepository | None = None,
        voucher_repo: VoucherRepository | None = None,
        ledger: InventoryLedger | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.catalog_repo = catalog_repo or CatalogRepository()
        self.address_repo = address_repo or AddressRepository()
        self.cart_repo = cart_repo or CartRepository()
        self.voucher_repo = voucher_repo or VoucherRepository()
        self.ledger = ledger or InventoryLedger()

    @retry_with_backoff()
    @transaction.atomic
    def create_order(
        self,
        user_id: UUID,
        lines: Iterable[tuple[UUID, int]],
        payment_method: str,
        shipping_address_id: UUID,
        shipping_price: Decimal,
        voucher_ids: Iterable[UUID] = (),
    ) -> OrderMutationResult:
        """Reserve stock, price the order and check it out of the user's cart."""
        order_lines = build_lines(lines)
        if not order_lines:
            raise ValidationError("Order must contain at least one product")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}")
        shipping_price = self._parse_shipping_price(shipping_price)
        self._resolve_address(shipping_address_id, owner_id=user_id)

        # Same lock order for every writer
        for line in sorted(order_lines, key=lambda line: str(line.variant_id)):
            self.ledger.reserve(line.variant_id, line.quantity)

        order = Order(
            user_id=user_id,
            shipping_address_id=shipping_address_id,
            payment_method=payment_method,
            lines=order_lines,
        )
        evaluation = self._reprice(order, list(voucher_ids), shipping_price)
        for voucher_id in evaluation.applied_ids:
            self.voucher_repo.consume_use(voucher_id)

        self.order_repo.add(order)
        self.cart_repo.remove_lines(user_id, [line.variant_id for line in order_lines])

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "user_id": str(user_id),
                "total_price": str(order.total_price),
                "lines_count": len(order_lines),
            },
        )
        return OrderMutationResult(order=order, rejected_vouchers=evaluation.rejected)

    @retry_with_backoff()
    @transaction.atomic
    def update_order(
        self,
        order_id: UUID,
        actor: Actor,
        shipping_address_id: UUID | None = None,
        lines: Iterable[tuple[UUID, int]] | None = None,
        voucher_ids: Iterable[UUID] | None = None,
    ) -> OrderMutationResult:
        """
        Change address, lines and/or vouchers of a pending or processing order.

        Stock moves by the per-variant difference between current and
        requested lines. Prices and vouchers are always re-evaluated; when
        ``voucher_ids`` is omitted the currently applied vouchers are
        re-checked against the new lines.
        """
        with order_lock(order_id):
            order = self._load_for_update(order_id)
            self._authorize_access(order, actor)
            order.ensure_mutable()

            if shipping_address_id is not None:
                self._resolve_address(shipping_address_id, owner_id=order.user_id)
                order.change_shipping_address(shipping_address_id)

            if lines is not None:
                requested = build_lines(lines)
                if not requested:
                    raise ValidationError("Order must contain at least one product")
                deltas = line_deltas(order.lines, requested)
                for variant_id in sorted(deltas, key=str):
                    self.ledger.delta(variant_id, deltas[variant_id])
                order.replace_lines(requested)

            previous = order.voucher_ids
            requested_vouchers = list(voucher_ids) if voucher_ids is not None else previous
            evaluation = self._reprice(
                order,
                requested_vouchers,
                order.shipping_price,
                already_applied=previous,
            )
            self._sync_voucher_uses(previous, evaluation.applied_ids)

            self.order_repo.save(order)

        logger.info(
            "order_updated",
            extra={
                "order_id": str(order.id),
                "user_id": str(actor.user_id),
                "total_price": str(order.total_price),
                "rejected_vouchers": [str(v) for v in evaluation.rejected],
            },
        )
        return OrderMutationResult(order=order, rejected_vouchers=evaluation.rejected)

    @retry_with_backoff()
    @transaction.atomic
    def set_order_status(self, order_id: UUID, actor: Actor, new_status) -> Order:
        """Apply a status transition. Requesting the current status is a no-op."""
        target = parse_status(new_status)
        with order_lock(order_id):
            order = self._load_for_update(order_id)
            authorize_status_change(actor, order.user_id, order.status, target)

            previous = order.status
            if not order.transition_to(target, timezone.now()):
                logger.info(
                    "order_status_unchanged",
                    extra={"order_id": str(order_id), "status": target.value},
                )
                return order

            if target == OrderStatus.CANCELLED:
                self._release_reservations(order)

            self.order_repo.save(order)

        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order_id),
                "user_id": str(actor.user_id),
                "from_status": previous.value,
                "status": target.value,
            },
        )
        return order

    def set_order_status_batch(
        self,
        order_ids: Iterable[UUID],
        actor: Actor,
        new_status,
    ) -> BatchStatusResult:
        """
        Apply ``set_order_status`` to each order independently.

        Every order gets its own transaction; failures are collected per id
        instead of aborting the batch. A customer asking for anything other
        than cancellation is refused up front.
        """
        target = parse_status(new_status)
        if not actor.is_admin and target != OrderStatus.CANCELLED:
            raise ForbiddenError("You are not authorized to update these orders")

        order_ids = list(order_ids)
        result = BatchStatusResult(order_ids=order_ids, status=target)
        for order_id in dict.fromkeys(order_ids):
            try:
                self.set_order_status(order_id, actor, target)
            except OrderError as e:
                logger.warning(
                    "batch_status_failed",
                    extra={"order_id": str(order_id), "status": target.value, "error": e.code},
                )
                result.failed.append(BatchFailure(order_id=order_id, code=e.code, message=e.message))
            else:
                result.updated.append(order_id)
        return result

    def get_order(self, order_id: UUID, actor: Actor) -> Order:
        order = self.order_repo.get_by_id(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        self._authorize_access(order, actor)
        return order

    def list_orders(
        self,
        actor: Actor,
        status=None,
        payment_method: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        product_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Admins see every order, customers only their own."""
        return self.order_repo.search(
            user_id=None if actor.is_admin else actor.user_id,
            status=parse_status(status) if status else None,
            payment_method=payment_method,
            created_from=created_from,
            created_to=created_to,
            product_name=product_name,
            limit=limit,
            offset=offset,
        )

    def _load_for_update(self, order_id: UUID) -> Order:
        order = self.order_repo.get_for_update(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _authorize_access(self, order: Order, actor: Actor) -> None:
        if not actor.is_admin and not actor.owns(order.user_id):
            raise ForbiddenError("You are not authorized to access this order")

    def _resolve_address(self, address_id: UUID, owner_id: UUID) -> Address:
        address = self.address_repo.get_by_id(address_id)
        if not address or address.user_id != owner_id:
            raise NotFoundError("Shipping address not found")
        return address

    def _parse_shipping_price(self, value) -> Decimal:
        try:
            shipping_price = pricing.to_money(value)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid shipping price: {value}")
        if shipping_price < 0:
            raise ValidationError("Shipping price must be non-negative")
        return shipping_price

    def _reprice(
        self,
        order: Order,
        voucher_ids: list[UUID],
        shipping_price: Decimal,
        already_applied: Iterable[UUID] = (),
    ) -> VoucherEvaluation:
        variants = self.catalog_repo.get_variants(line.variant_id for line in order.lines)
        products_price = pricing.products_price(order.lines, variants)

        evaluation = VoucherEvaluator(now=timezone.now()).evaluate(
            requested_ids=voucher_ids,
            vouchers=self.voucher_repo.get_many(voucher_ids),
            lines=order.lines,
            variants=variants,
            products_price=products_price,
            already_applied=already_applied,
        )
        quote = pricing.order_total(products_price, shipping_price, evaluation.total_discount)
        order.apply_pricing(quote, evaluation.applied_ids)
        return evaluation

    def _sync_voucher_uses(self, previous: list[UUID], applied: list[UUID]) -> None:
        for voucher_id in applied:
            if voucher_id not in previous:
                self.voucher_repo.consume_use(voucher_id)
        for voucher_id in previous:
            if voucher_id not in applied:
                self.voucher_repo.release_use(voucher_id)

    def _release_reservations(self, order: Order) -> None:
        """Give back the stock and voucher uses held by a cancelled order."""
        for line in sorted(order.lines, key=lambda line: str(line.variant_id)):
            self.ledger.release(line.variant_id, line.quantity)
        for voucher_id in order.voucher_ids:
            self.voucher_repo.release_use(voucher_id)
