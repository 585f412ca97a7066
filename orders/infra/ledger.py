"""
Inventory ledger: the only writer of variant stock.

Every change is a single conditional UPDATE evaluated by the database, so two
transactions can never both consume the last unit of a variant.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.db.models import F

from orders.domain.errors import NotFoundError, OutOfStockError
from orders.infra.models import VariantORM

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Atomic reserve/release of variant stock."""

    def reserve(self, variant_id: UUID, quantity: int) -> None:
        """Decrement stock by ``quantity`` or fail without touching it."""
        if quantity <= 0:
            raise ValueError("Reserved quantity must be positive")

        updated = (
            VariantORM.objects
            .filter(id=variant_id, stock_quantity__gte=quantity)
            .update(stock_quantity=F("stock_quantity") - quantity)
        )
        if updated:
            logger.info(
                "stock_reserved",
                extra={"variant_id": str(variant_id), "quantity": quantity},
            )
            return

        available = (
            VariantORM.objects
            .filter(id=variant_id)
            .values_list("stock_quantity", flat=True)
            .first()
        )
        if available is None:
            raise NotFoundError(f"Product variant {variant_id} not found")

        logger.warning(
            "stock_insufficient",
            extra={"variant_id": str(variant_id), "quantity": quantity, "available": available},
        )
        raise OutOfStockError(variant_id, requested=quantity, available=available)

    def release(self, variant_id: UUID, quantity: int) -> None:
        """Return ``quantity`` units to stock."""
        if quantity <= 0:
            raise ValueError("Released quantity must be positive")

        updated = (
            VariantORM.objects
            .filter(id=variant_id)
            .update(stock_quantity=F("stock_quantity") + quantity)
        )
        if not updated:
            raise NotFoundError(f"Product variant {variant_id} not found")

        logger.info(
            "stock_released",
            extra={"variant_id": str(variant_id), "quantity": quantity},
        )

    def delta(self, variant_id: UUID, signed_quantity: int) -> None:
        """Positive amounts reserve, negative amounts release."""
        if signed_quantity > 0:
            self.reserve(variant_id, signed_quantity)
        elif signed_quantity < 0:
            self.release(variant_id, -signed_quantity)

    def stock_of(self, variant_id: UUID) -> int | None:
        return (
            VariantORM.objects
            .filter(id=variant_id)
            .values_list("stock_quantity", flat=True)
            .first()
        )
