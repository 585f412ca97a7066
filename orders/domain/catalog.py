"""
Catalog value objects consumed by order logic.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class Product:
    """Product as seen by pricing."""
    id: UUID
    name: str
    original_price: Decimal


@dataclass(frozen=True)
class Variant:
    """Stock-keeping unit. ``product`` is None when the catalog entry is gone."""
    id: UUID
    product_id: UUID | None
    stock_quantity: int
    additional_price: Decimal = Decimal("0.00")
    product: Product | None = None


@dataclass(frozen=True)
class Address:
    id: UUID
    user_id: UUID
    line: str = ""
    city: str = ""
    country: str = ""
