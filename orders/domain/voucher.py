"""
Voucher rules and evaluation against an order.

Vouchers that fail any check are dropped from the order rather than failing
the whole mutation. The evaluation result keeps both sides so callers can
report which requested vouchers were not applied and why.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping
from uuid import UUID

from orders.domain.catalog import Variant
from orders.domain.order import OrderLine
from orders.domain.pricing import ZERO, to_money


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixedAmount"


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_EXHAUSTED = "usage_exhausted"
    NOT_APPLICABLE = "not_applicable"
    BELOW_MINIMUM = "below_minimum"


@dataclass(frozen=True)
class Voucher:
    id: UUID
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    usage_limit: int
    used: int = 0
    min_order_value: Decimal = Decimal("0.00")
    max_discount_value: Decimal | None = None
    is_active: bool = True
    applicable_product_ids: frozenset[UUID] = frozenset()

    def discount_for(self, products_price: Decimal) -> Decimal:
        if self.discount_type == DiscountType.PERCENTAGE:
            return to_money(products_price * self.discount_value / Decimal(100))
        cap = self.max_discount_value if self.max_discount_value is not None else self.discount_value
        return to_money(min(self.discount_value, cap))


@dataclass
class VoucherEvaluation:
    """Applied vouchers with their discounts, and rejected ones with reasons."""
    applied: dict[UUID, Decimal] = field(default_factory=dict)
    rejected: dict[UUID, RejectionReason] = field(default_factory=dict)

    @property
    def applied_ids(self) -> list[UUID]:
        return list(self.applied)

    @property
    def total_discount(self) -> Decimal:
        return to_money(sum(self.applied.values(), ZERO))


class VoucherEvaluator:
    """Checks eligibility, applicability and minimum order for each voucher."""

    def __init__(self, now: datetime):
        self.now = now

    def evaluate(
        self,
        requested_ids: Iterable[UUID],
        vouchers: Mapping[UUID, Voucher],
        lines: Iterable[OrderLine],
        variants: Mapping[UUID, Variant],
        products_price: Decimal,
        already_applied: Iterable[UUID] = (),
    ) -> VoucherEvaluation:
        """
        ``already_applied`` lists vouchers this order already holds a use of;
        their own use does not count against the usage limit.
        """
        result = VoucherEvaluation()
        held = set(already_applied)
        order_product_ids = {
            variants[line.variant_id].product_id
            for line in lines
            if line.variant_id in variants
        }

        for voucher_id in dict.fromkeys(requested_ids):
            voucher = vouchers.get(voucher_id)
            if voucher is None:
                result.rejected[voucher_id] = RejectionReason.NOT_FOUND
                continue
            reason = self._rejection_reason(
                voucher, order_product_ids, products_price, voucher_id in held
            )
            if reason is not None:
                result.rejected[voucher_id] = reason
                continue
            result.applied[voucher_id] = voucher.discount_for(products_price)

        return result

    def _rejection_reason(
        self,
        voucher: Voucher,
        order_product_ids: set,
        products_price: Decimal,
        held: bool,
    ) -> RejectionReason | None:
        if not voucher.is_active:
            return RejectionReason.INACTIVE
        if self.now < voucher.valid_from:
            return RejectionReason.NOT_STARTED
        if self.now > voucher.valid_until:
            return RejectionReason.EXPIRED
        used = voucher.used - 1 if held else voucher.used
        if used >= voucher.usage_limit:
            return RejectionReason.USAGE_EXHAUSTED
        if not order_product_ids & voucher.applicable_product_ids:
            return RejectionReason.NOT_APPLICABLE
        if products_price < voucher.min_order_value:
            return RejectionReason.BELOW_MINIMUM
        return None
