from orders.domain.order import Order, OrderLine
from orders.domain.status import Actor, OrderStatus, Role
from orders.domain.voucher import Voucher, VoucherEvaluation

__all__ = ["Order", "OrderLine", "Actor", "OrderStatus", "Role", "Voucher", "VoucherEvaluation"]
