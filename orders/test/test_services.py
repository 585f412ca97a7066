"""
Tests for order application services.
"""
from decimal import Decimal
from uuid import uuid4

from django.test import TestCase, override_settings

from orders.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from orders.domain.status import Actor, OrderStatus, Role
from orders.domain.voucher import RejectionReason
from orders.infra.models import CartItemORM, OrderLineORM, OrderORM, VariantORM, VoucherORM
from orders.infra.repositories import OrderRepository
from orders.infra.retry import retry_with_backoff
from orders.services import OrderService
from orders.test.factories import (
    make_address,
    make_cart,
    make_product,
    make_variant,
    make_voucher,
)


@override_settings(ORDERS_RETRY_INITIAL_DELAY=0)
class OrderServiceTestCase(TestCase):
    """Shared catalog: shirt 100 + 20 (stock 5), cap 50 (stock 2)."""

    def setUp(self):
        self.service = OrderService()
        self.user_id = uuid4()
        self.customer = Actor(self.user_id, Role.CUSTOMER)
        self.admin = Actor(uuid4(), Role.ADMIN)
        self.address = make_address(self.user_id)

        self.shirt = make_product("Shirt", "100.00")
        self.cap = make_product("Cap", "50.00")
        self.shirt_variant = make_variant(self.shirt, stock=5, additional_price="20.00")
        self.cap_variant = make_variant(self.cap, stock=2)

    def stock(self, variant):
        return VariantORM.objects.get(id=variant.id).stock_quantity

    def create(self, lines=None, voucher_ids=(), shipping_price="15.00"):
        if lines is None:
            lines = [(self.shirt_variant.id, 2), (self.cap_variant.id, 1)]
        return self.service.create_order(
            user_id=self.user_id,
            lines=lines,
            payment_method="COD",
            shipping_address_id=self.address.id,
            shipping_price=Decimal(shipping_price),
            voucher_ids=voucher_ids,
        )


class CreateOrderTest(OrderServiceTestCase):

    def test_create_order_reserves_stock_and_prices(self):
        """Test creating order decrements stock and computes totals."""
        order = self.create().order

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.products_price, Decimal("290.00"))
        self.assertEqual(order.shipping_price, Decimal("15.00"))
        self.assertEqual(order.voucher_discount, Decimal("0.00"))
        self.assertEqual(order.total_price, Decimal("305.00"))
        self.assertEqual(self.stock(self.shirt_variant), 3)
        self.assertEqual(self.stock(self.cap_variant), 1)

        stored = OrderORM.objects.get(id=order.id)
        self.assertEqual(stored.total_price, Decimal("305.00"))
        self.assertEqual(
            list(stored.lines.values_list("variant_id", "quantity")),
            [(self.shirt_variant.id, 2), (self.cap_variant.id, 1)],
        )

    def test_out_of_stock_leaves_nothing_behind(self):
        """Test that a failing line aborts the whole order."""
        empty = make_variant(self.cap, stock=0)

        with self.assertRaises(OutOfStockError) as context:
            self.create(lines=[(self.shirt_variant.id, 1), (empty.id, 1)])

        self.assertEqual(context.exception.variant_id, empty.id)
        self.assertEqual(self.stock(self.shirt_variant), 5)
        self.assertEqual(self.stock(empty), 0)
        self.assertEqual(OrderORM.objects.count(), 0)

    def test_unknown_variant(self):
        with self.assertRaises(NotFoundError):
            self.create(lines=[(self.shirt_variant.id, 1), (uuid4(), 1)])
        self.assertEqual(self.stock(self.shirt_variant), 5)

    def test_last_unit_sold_once(self):
        """Test that the second order for the last unit fails."""
        last = make_variant(self.cap, stock=1)
        self.create(lines=[(last.id, 1)])

        with self.assertRaises(OutOfStockError):
            self.create(lines=[(last.id, 1)])

        self.assertEqual(self.stock(last), 0)
        self.assertEqual(OrderORM.objects.count(), 1)

    def test_foreign_address_rejected(self):
        other_address = make_address(uuid4())
        with self.assertRaises(NotFoundError):
            self.service.create_order(
                user_id=self.user_id,
                lines=[(self.shirt_variant.id, 1)],
                payment_method="COD",
                shipping_address_id=other_address.id,
                shipping_price=Decimal("0"),
            )
        self.assertEqual(self.stock(self.shirt_variant), 5)

    def test_empty_order_rejected(self):
        with self.assertRaises(ValidationError):
            self.create(lines=[(self.shirt_variant.id, 0)])

    def test_unknown_payment_method_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.create_order(
                user_id=self.user_id,
                lines=[(self.shirt_variant.id, 1)],
                payment_method="BARTER",
                shipping_address_id=self.address.id,
                shipping_price=Decimal("0"),
            )

    def test_negative_shipping_price_rejected(self):
        with self.assertRaises(ValidationError):
            self.create(shipping_price="-1.00")

    def test_purchased_lines_leave_the_cart(self):
        other = make_variant(self.cap, stock=3)
        make_cart(self.user_id, [(self.shirt_variant, 2), (self.cap_variant, 1), (other, 1)])

        self.create()

        remaining = list(CartItemORM.objects.filter(cart__user_id=self.user_id).values_list("variant_id", flat=True))
        self.assertEqual(remaining, [other.id])

    def test_vouchers_applied_and_rejected(self):
        voucher = make_voucher([self.shirt], discount_value="10")
        unknown = uuid4()

        result = self.create(voucher_ids=[voucher.id, unknown])

        order = result.order
        self.assertEqual(order.voucher_ids, [voucher.id])
        self.assertEqual(order.voucher_discount, Decimal("29.00"))
        self.assertEqual(order.total_price, Decimal("276.00"))
        self.assertEqual(result.rejected_vouchers, {unknown: RejectionReason.NOT_FOUND})
        voucher.refresh_from_db()
        self.assertEqual(voucher.used, 1)


class UpdateOrderTest(OrderServiceTestCase):

    def setUp(self):
        super().setUp()
        self.order = self.create().order

    def test_increase_quantity_reserves_difference(self):
        result = self.service.update_order(
            self.order.id,
            self.customer,
            lines=[(self.shirt_variant.id, 4), (self.cap_variant.id, 1)],
        )

        self.assertEqual(self.stock(self.shirt_variant), 1)
        self.assertEqual(self.stock(self.cap_variant), 1)
        self.assertEqual(result.order.products_price, Decimal("530.00"))
        self.assertEqual(result.order.total_price, Decimal("545.00"))

    def test_removed_line_releases_stock(self):
        result = self.service.update_order(
            self.order.id,
            self.customer,
            lines=[(self.shirt_variant.id, 2), (self.cap_variant.id, 0)],
        )

        self.assertEqual(self.stock(self.cap_variant), 2)
        self.assertEqual(len(result.order.lines), 1)
        self.assertEqual(result.order.products_price, Decimal("240.00"))
        self.assertEqual(OrderLineORM.objects.filter(order_id=self.order.id).count(), 1)

    def test_insufficient_stock_changes_nothing(self):
        """Test that a failed reservation leaves stock and order untouched."""
        with self.assertRaises(OutOfStockError):
            self.service.update_order(
                self.order.id,
                self.customer,
                lines=[(self.cap_variant.id, 0), (self.shirt_variant.id, 10)],
            )

        self.assertEqual(self.stock(self.shirt_variant), 3)
        self.assertEqual(self.stock(self.cap_variant), 1)
        stored = OrderRepository().get_by_id(self.order.id)
        self.assertEqual(len(stored.lines), 2)
        self.assertEqual(stored.total_price, Decimal("305.00"))
        self.assertEqual(stored.version, self.order.version)

    def test_update_shipped_order_fails(self):
        self.service.set_order_status(self.order.id, self.admin, OrderStatus.SHIPPED)

        with self.assertRaises(InvalidStateError):
            self.service.update_order(
                self.order.id,
                self.customer,
                lines=[(self.shirt_variant.id, 1)],
            )

        self.assertEqual(self.stock(self.shirt_variant), 3)
        stored = OrderRepository().get_by_id(self.order.id)
        self.assertEqual(stored.lines[0].quantity, 2)

    def test_other_customer_cannot_update(self):
        with self.assertRaises(ForbiddenError):
            self.service.update_order(
                self.order.id,
                Actor(uuid4(), Role.CUSTOMER),
                lines=[(self.shirt_variant.id, 1)],
            )

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            self.service.update_order(uuid4(), self.admin, lines=[(self.shirt_variant.id, 1)])

    def test_change_shipping_address(self):
        new_address = make_address(self.user_id)
        result = self.service.update_order(self.order.id, self.customer, shipping_address_id=new_address.id)
        self.assertEqual(result.order.shipping_address_id, new_address.id)
        self.assertEqual(OrderORM.objects.get(id=self.order.id).shipping_address_id, new_address.id)

    def test_unknown_shipping_address(self):
        with self.assertRaises(NotFoundError):
            self.service.update_order(self.order.id, self.customer, shipping_address_id=uuid4())

    def test_voucher_dropped_below_minimum(self):
        voucher = make_voucher([self.shirt], discount_value="10", min_order_value="250.00")
        result = self.service.update_order(self.order.id, self.customer, voucher_ids=[voucher.id])
        self.assertEqual(result.order.voucher_ids, [voucher.id])
        self.assertEqual(result.order.voucher_discount, Decimal("29.00"))
        voucher.refresh_from_db()
        self.assertEqual(voucher.used, 1)

        # Shrinking the order below the minimum drops the voucher again
        result = self.service.update_order(
            self.order.id,
            self.customer,
            lines=[(self.shirt_variant.id, 1)],
        )
        self.assertEqual(result.order.voucher_ids, [])
        self.assertEqual(result.rejected_vouchers, {voucher.id: RejectionReason.BELOW_MINIMUM})
        self.assertEqual(result.order.total_price, Decimal("135.00"))
        voucher.refresh_from_db()
        self.assertEqual(voucher.used, 0)

    def test_voucher_at_usage_limit_stays_on_its_order(self):
        voucher = make_voucher([self.shirt], usage_limit=1)
        self.service.update_order(self.order.id, self.customer, voucher_ids=[voucher.id])

        result = self.service.update_order(
            self.order.id,
            self.customer,
            lines=[(self.shirt_variant.id, 3), (self.cap_variant.id, 1)],
        )

        self.assertEqual(result.order.voucher_ids, [voucher.id])
        self.assertEqual(VoucherORM.objects.get(id=voucher.id).used, 1)

    def test_totals_reconcile(self):
        voucher = make_voucher([self.shirt], discount_type="fixedAmount", discount_value="1000")
        result = self.service.update_order(self.order.id, self.customer, voucher_ids=[voucher.id])
        order = result.order
        self.assertEqual(order.voucher_discount, order.products_price)
        self.assertEqual(order.total_price, order.shipping_price)
        self.assertEqual(
            order.total_price,
            order.products_price + order.shipping_price - order.voucher_discount,
        )

    def test_stale_version_conflicts(self):
        repo = OrderRepository()
        first = repo.get_by_id(self.order.id)
        second = repo.get_by_id(self.order.id)
        repo.save(first)
        with self.assertRaises(ConflictError):
            repo.save(second)


class SetOrderStatusTest(OrderServiceTestCase):

    def setUp(self):
        super().setUp()
        self.order = self.create().order

    def test_customer_cannot_mark_delivered(self):
        with self.assertRaises(ForbiddenError):
            self.service.set_order_status(self.order.id, self.customer, OrderStatus.DELIVERED)
        self.assertEqual(OrderORM.objects.get(id=self.order.id).status, "Pending")

    def test_customer_cancel_releases_stock(self):
        order = self.service.set_order_status(self.order.id, self.customer, OrderStatus.CANCELLED)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)
        self.assertEqual(self.stock(self.shirt_variant), 5)
        self.assertEqual(self.stock(self.cap_variant), 2)

    def test_cancel_twice_is_noop(self):
        self.service.set_order_status(self.order.id, self.customer, OrderStatus.CANCELLED)
        version = OrderORM.objects.get(id=self.order.id).version

        self.service.set_order_status(self.order.id, self.customer, OrderStatus.CANCELLED)

        self.assertEqual(self.stock(self.shirt_variant), 5)
        self.assertEqual(OrderORM.objects.get(id=self.order.id).version, version)

    def test_cancel_returns_voucher_use(self):
        voucher = make_voucher([self.shirt])
        self.service.update_order(self.order.id, self.customer, voucher_ids=[voucher.id])
        self.service.set_order_status(self.order.id, self.customer, OrderStatus.CANCELLED)
        voucher.refresh_from_db()
        self.assertEqual(voucher.used, 0)

    def test_admin_fulfilment_flow(self):
        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            order = self.service.set_order_status(self.order.id, self.admin, status)
            self.assertEqual(order.status, status)
        self.assertIsNotNone(order.delivered_at)
        self.assertEqual(self.stock(self.shirt_variant), 3)

    def test_admin_cannot_leave_terminal_status(self):
        self.service.set_order_status(self.order.id, self.admin, OrderStatus.CANCELLED)
        with self.assertRaises(InvalidStateError):
            self.service.set_order_status(self.order.id, self.admin, OrderStatus.PROCESSING)

    def test_admin_cannot_move_backwards(self):
        self.service.set_order_status(self.order.id, self.admin, OrderStatus.SHIPPED)
        with self.assertRaises(InvalidStateError):
            self.service.set_order_status(self.order.id, self.admin, "Processing")

    def test_customer_cannot_cancel_shipped_order(self):
        self.service.set_order_status(self.order.id, self.admin, OrderStatus.SHIPPED)
        with self.assertRaises(ForbiddenError):
            self.service.set_order_status(self.order.id, self.customer, OrderStatus.CANCELLED)

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.service.set_order_status(self.order.id, self.admin, "Lost")

    def test_batch_reports_each_order(self):
        cancelled = self.create(lines=[(self.shirt_variant.id, 1)]).order
        self.service.set_order_status(cancelled.id, self.admin, OrderStatus.CANCELLED)
        missing = uuid4()

        result = self.service.set_order_status_batch(
            [self.order.id, cancelled.id, missing],
            self.admin,
            OrderStatus.SHIPPED,
        )

        self.assertEqual(result.order_ids, [self.order.id, cancelled.id, missing])
        self.assertEqual(result.status, OrderStatus.SHIPPED)
        self.assertEqual(result.updated, [self.order.id])
        self.assertEqual(
            [(f.order_id, f.code) for f in result.failed],
            [(cancelled.id, "INVALID_STATE"), (missing, "NOT_FOUND")],
        )
        self.assertEqual(OrderORM.objects.get(id=self.order.id).status, "Shipped")

    def test_batch_customer_may_only_cancel(self):
        with self.assertRaises(ForbiddenError):
            self.service.set_order_status_batch([self.order.id], self.customer, OrderStatus.SHIPPED)

    def test_batch_customer_cancel(self):
        result = self.service.set_order_status_batch([self.order.id], self.customer, OrderStatus.CANCELLED)
        self.assertEqual(result.updated, [self.order.id])
        self.assertEqual(result.failed, [])


class QueryOrdersTest(OrderServiceTestCase):

    def test_get_order_owner_and_admin(self):
        order = self.create().order
        self.assertEqual(self.service.get_order(order.id, self.customer).id, order.id)
        self.assertEqual(self.service.get_order(order.id, self.admin).id, order.id)
        with self.assertRaises(ForbiddenError):
            self.service.get_order(order.id, Actor(uuid4()))

    def test_list_orders_scoped_to_customer(self):
        mine = self.create().order
        other_user = uuid4()
        other_address = make_address(other_user)
        theirs = self.service.create_order(
            user_id=other_user,
            lines=[(self.cap_variant.id, 1)],
            payment_method="CARD",
            shipping_address_id=other_address.id,
            shipping_price=Decimal("0"),
        ).order

        self.assertEqual([o.id for o in self.service.list_orders(self.customer)], [mine.id])
        self.assertEqual(
            {o.id for o in self.service.list_orders(self.admin)},
            {mine.id, theirs.id},
        )
        self.assertEqual(
            [o.id for o in self.service.list_orders(self.admin, payment_method="CARD")],
            [theirs.id],
        )
        self.assertEqual(
            [o.id for o in self.service.list_orders(self.admin, product_name="shirt")],
            [mine.id],
        )


class RetryTest(TestCase):
    """Tests for conflict retries."""

    def test_retries_conflicts_then_succeeds(self):
        calls = []

        @retry_with_backoff(max_retries=2, initial_delay=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConflictError("busy")
            return "done"

        self.assertEqual(flaky(), "done")
        self.assertEqual(len(calls), 3)

    def test_gives_up_after_max_retries(self):
        calls = []

        @retry_with_backoff(max_retries=1, initial_delay=0)
        def always_conflicts():
            calls.append(1)
            raise ConflictError("busy")

        with self.assertRaises(ConflictError):
            always_conflicts()
        self.assertEqual(len(calls), 2)

    def test_other_errors_are_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=3, initial_delay=0)
        def fails():
            calls.append(1)
            raise InvalidStateError("no")

        with self.assertRaises(InvalidStateError):
            fails()
        self.assertEqual(len(calls), 1)
