"""
GraphQL schema definition using Ariadne.
"""
from ariadne import (
    MutationType,
    ObjectType,
    QueryType,
    ScalarType,
    load_schema_from_path,
    make_executable_schema,
)
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from orders.domain.errors import ForbiddenError
from orders.services import OrderService

# Load schema from .graphql files
SCHEMAS_DIR = Path(__file__).parent / "schemas"
type_defs = load_schema_from_path(SCHEMAS_DIR)

query = QueryType()
mutation = MutationType()
order = ObjectType("Order")
order_mutation_result = ObjectType("OrderMutationResult")
batch_status_result = ObjectType("BatchStatusResult")


def get_actor(info):
    """Caller identity resolved by the view from request headers."""
    actor = info.context.get("actor")
    if actor is None:
        raise ForbiddenError("Caller identity is required")
    return actor


def get_service(info) -> OrderService:
    return info.context.get("order_service") or OrderService()


def _lines(items):
    if items is None:
        return None
    return [(item["variant_id"], item["quantity"]) for item in items]


@query.field("order")
def resolve_order(_, info, id):
    """Resolve order query."""
    return get_service(info).get_order(id, get_actor(info))


@query.field("orders")
def resolve_orders(_, info, filter=None):
    """Resolve orders list with optional filters."""
    filter = filter or {}
    return get_service(info).list_orders(
        get_actor(info),
        status=filter.get("status"),
        payment_method=filter.get("payment_method"),
        created_from=filter.get("created_from"),
        created_to=filter.get("created_to"),
        product_name=filter.get("product_name"),
        limit=filter.get("limit") or 50,
        offset=filter.get("offset") or 0,
    )


@mutation.field("createOrder")
def resolve_create_order(_, info, input: dict):
    """Resolve create order mutation."""
    actor = get_actor(info)
    return get_service(info).create_order(
        user_id=actor.user_id,
        lines=_lines(input["lines"]),
        payment_method=input["payment_method"],
        shipping_address_id=input["shipping_address_id"],
        shipping_price=input["shipping_price"],
        voucher_ids=input.get("voucher_ids") or [],
    )


@mutation.field("updateOrder")
def resolve_update_order(_, info, id, input: dict):
    """Resolve update order mutation."""
    return get_service(info).update_order(
        id,
        get_actor(info),
        shipping_address_id=input.get("shipping_address_id"),
        lines=_lines(input.get("lines")),
        voucher_ids=input.get("voucher_ids"),
    )


@mutation.field("setOrderStatus")
def resolve_set_order_status(_, info, id, status):
    return get_service(info).set_order_status(id, get_actor(info), status)


@mutation.field("setOrderStatusBatch")
def resolve_set_order_status_batch(_, info, ids, status):
    return get_service(info).set_order_status_batch(ids, get_actor(info), status)


@order.field("status")
def resolve_order_status(order_obj, info):
    return order_obj.status.value


@order_mutation_result.field("rejectedVouchers")
def resolve_rejected_vouchers(result, info):
    return [
        {"voucher_id": voucher_id, "reason": reason.value}
        for voucher_id, reason in result.rejected_vouchers.items()
    ]


@batch_status_result.field("status")
def resolve_batch_status(result, info):
    return result.status.value


# Define custom scalars
decimal_scalar = ScalarType("Decimal")
uuid_scalar = ScalarType("UUID")
datetime_scalar = ScalarType("DateTime")


@decimal_scalar.serializer
def serialize_decimal(value):
    """Serialize Decimal to string."""
    return str(value)


@decimal_scalar.value_parser
def parse_decimal_value(value):
    """Parse Decimal from string."""
    return Decimal(str(value))


@uuid_scalar.serializer
def serialize_uuid(value):
    """Serialize UUID to string."""
    return str(value)


@uuid_scalar.value_parser
def parse_uuid_value(value):
    """Parse UUID from string."""
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


@datetime_scalar.serializer
def serialize_datetime(value):
    """Serialize DateTime to ISO format string."""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@datetime_scalar.value_parser
def parse_datetime_value(value):
    """Parse DateTime from string."""
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


# Create executable schema
schema = make_executable_schema(
    type_defs,
    query,
    mutation,
    order,
    order_mutation_result,
    batch_status_result,
    datetime_scalar,
    decimal_scalar,
    uuid_scalar,
    convert_names_case=True,
)
