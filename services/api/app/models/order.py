from __future__ import annotations

from pydantic import BaseModel, Field

from packages.shared.schemas.order_v1 import (
    OrderLineV1,
    OrderStatusV1,
    PaymentStatusV1,
    ShippingAddressV1,
)
from packages.shared.schemas.shipping_v1 import ShippingQuoteV1


class OrderOut(BaseModel):
    id: str
    user_id: str | None = None

    status: OrderStatusV1
    payment_status: PaymentStatusV1

    currency: str
    total_amount: int = Field(..., ge=0)
    shipping_cost: int = Field(..., ge=0)

    items: list[OrderLineV1]
    address: ShippingAddressV1
    shipping_quote: ShippingQuoteV1

    tracking_number: str | None = None
    courier: str | None = None

    created_at: str
    updated_at: str


class OrderTransitionRequest(BaseModel):
    status: OrderStatusV1


class OrderTransitionResponse(BaseModel):
    order: OrderOut
    changed: bool


class OrderActionOut(BaseModel):
    target: OrderStatusV1
    label: str
    color: str
    enabled: bool
    reason: str | None = None


class OrderActionsResponse(BaseModel):
    order_id: str
    status: OrderStatusV1
    status_label: str
    status_color: str
    terminal: bool
    actions: list[OrderActionOut]


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatusV1


class PaymentStatusOut(BaseModel):
    order_id: str
    payment_status: PaymentStatusV1
