"""
Domain errors for order operations.
"""
from __future__ import annotations

from uuid import UUID


class OrderError(Exception):
    """Base error carrying a machine-readable code."""

    code = "ORDER_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(OrderError):
    """Malformed input (negative quantity, empty order, ...)."""

    code = "VALIDATION_ERROR"


class NotFoundError(OrderError):
    """Referenced variant/product/address/order does not exist."""

    code = "NOT_FOUND"


class OutOfStockError(OrderError):
    """Requested quantity exceeds available stock."""

    code = "OUT_OF_STOCK"

    def __init__(self, variant_id: UUID, requested: int, available: int):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Variant {variant_id} is out of stock. "
            f"Available: {available}, requested: {requested}"
        )


class ForbiddenError(OrderError):
    """Caller is not allowed to perform the operation."""

    code = "FORBIDDEN"


class InvalidStateError(OrderError):
    """Operation is not permitted from the current order status."""

    code = "INVALID_STATE"


class ConflictError(OrderError):
    """Concurrent modification detected; safe to retry."""

    code = "CONFLICT"
