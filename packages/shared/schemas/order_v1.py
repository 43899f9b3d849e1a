"""Shared order schema (v1).

Status values are the wire names used by the storefront and admin clients.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class OrderStatusV1(str, Enum):
    UNPAID = "unpaid"
    PACKED = "packed"
    SHIPPED = "shipped"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentStatusV1(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ShippingAddressV1(BaseModel):
    """Destination snapshot copied onto the order at checkout."""

    recipient_name: str
    phone: str = ""
    address_line: str
    city: str = ""
    province: str = ""
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., pattern=r"^[A-Za-z]{2}$")


class OrderLineV1(BaseModel):
    variant_id: str
    name: str
    quantity: int = Field(..., ge=1)
    # Minor currency units, snapshotted at checkout.
    unit_price: int = Field(..., ge=0)

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity
