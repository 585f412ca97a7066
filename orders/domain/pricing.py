"""
Pricing engine: line totals, products price and order total.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping
from uuid import UUID

from orders.domain.catalog import Variant
from orders.domain.errors import NotFoundError
from orders.domain.order import OrderLine

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Quantize to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def unit_price(variant: Variant) -> Decimal:
    if variant.product is None:
        raise NotFoundError(f"Product for variant {variant.id} not found")
    return to_money(variant.product.original_price + variant.additional_price)


def line_total(variant: Variant, quantity: int) -> Decimal:
    """(originalPrice + additionalPrice) * quantity."""
    return to_money(unit_price(variant) * quantity)


def products_price(lines: Iterable[OrderLine], variants: Mapping[UUID, Variant]) -> Decimal:
    """Sum of line totals over all lines."""
    total = ZERO
    for line in lines:
        variant = variants.get(line.variant_id)
        if variant is None:
            raise NotFoundError(f"Product variant {line.variant_id} not found")
        total += line_total(variant, line.quantity)
    return to_money(total)


@dataclass(frozen=True)
class PriceQuote:
    """Reconciled order prices."""
    products_price: Decimal
    shipping_price: Decimal
    voucher_discount: Decimal
    total_price: Decimal


def order_total(
    products_price: Decimal,
    shipping_price: Decimal,
    voucher_discount: Decimal,
) -> PriceQuote:
    """
    Build a quote where total = products + shipping - discount.

    The discount never exceeds the products price, so the total floors at
    the shipping price.
    """
    products_price = to_money(products_price)
    shipping_price = to_money(shipping_price)
    discount = min(to_money(voucher_discount), products_price)
    if discount < 0:
        discount = ZERO
    return PriceQuote(
        products_price=products_price,
        shipping_price=shipping_price,
        voucher_discount=discount,
        total_price=products_price + shipping_price - discount,
    )
