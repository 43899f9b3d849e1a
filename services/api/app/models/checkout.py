from __future__ import annotations

from pydantic import BaseModel, Field

from packages.shared.schemas.order_v1 import ShippingAddressV1
from packages.shared.schemas.shipping_v1 import ShippingQuoteV1


class CartLineInput(BaseModel):
    variant_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0)
    # Grams per unit.
    weight: int = Field(1000, gt=0)


class CheckoutSessionCreate(BaseModel):
    user_id: str | None = None
    items: list[CartLineInput] = Field(..., min_length=1)
    address: ShippingAddressV1 | None = None


class CheckoutDestinationUpdate(BaseModel):
    address: ShippingAddressV1


class CheckoutSelectRequest(BaseModel):
    quote_id: str


class CheckoutSessionOut(BaseModel):
    session_id: str
    user_id: str | None = None
    items: list[CartLineInput]
    address: ShippingAddressV1 | None = None

    request_key: str | None = None
    pending: bool = False
    shipping_available: bool | None = None
    shipping_unavailable_reason: str | None = None
    provider: str | None = None
    quotes: list[ShippingQuoteV1] = Field(default_factory=list)
    selected: ShippingQuoteV1 | None = None

    subtotal: int
    shipping_cost: int | None = None
    total: int | None = None
