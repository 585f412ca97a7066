"""
Row and advisory locks for order mutations.
"""
from contextlib import contextmanager
from uuid import UUID

from django.db import connection, transaction


@contextmanager
def order_lock(order_id: UUID):
    """
    Serialize writers of one order for the rest of the current transaction.

    Usage:
        with transaction.atomic(), order_lock(order_id):
            # read and mutate the order
            pass

    On PostgreSQL a transaction-scoped advisory lock is taken as well, so
    writers that have not yet loaded the row still queue behind each other.
    The row lock itself is taken by ``OrderRepository.get_for_update``.
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("order_lock() must be used inside transaction.atomic()")

    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            # Released automatically when the transaction ends
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
                [f"order:{order_id}"],
            )
    yield
