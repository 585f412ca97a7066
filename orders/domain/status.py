"""
Order status state machine and status-change authorization.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from orders.domain.errors import ForbiddenError


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


MUTABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

_FORWARD = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Forward moves along the fulfilment chain, or cancel while still mutable."""
    if current in TERMINAL_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return current in MUTABLE_STATUSES
    return _FORWARD.index(target) > _FORWARD.index(current)


class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Actor:
    """Identity of the caller as supplied by the identity collaborator."""
    user_id: UUID
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, owner_id: UUID) -> bool:
        return self.user_id == owner_id


def authorize_status_change(
    actor: Actor,
    owner_id: UUID,
    current: OrderStatus,
    target: OrderStatus,
) -> None:
    """
    Admins may request any status. Customers may only cancel their own
    order, and only while it is pending or processing.
    """
    if actor.is_admin:
        return
    if target != OrderStatus.CANCELLED:
        raise ForbiddenError("You are not authorized to update this order")
    if not actor.owns(owner_id):
        raise ForbiddenError("You are not authorized to update this order")
    if current != target and current not in MUTABLE_STATUSES:
        raise ForbiddenError("You can only cancel pending or processing orders")
