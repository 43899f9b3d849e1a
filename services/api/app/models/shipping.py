from __future__ import annotations

from pydantic import BaseModel, Field

from packages.shared.schemas.shipping_v1 import ParcelItemV1, RateLocationV1, ShippingQuoteV1


class ShippingRatesRequest(BaseModel):
    # Defaults to the configured warehouse when omitted.
    origin: RateLocationV1 | None = None
    destination: RateLocationV1
    items: list[ParcelItemV1] = Field(..., min_length=1)


class ProviderFailureOut(BaseModel):
    provider: str
    error: str
    timed_out: bool = False


class ShippingRatesResponse(BaseModel):
    request_key: str
    available: bool
    provider: str | None = None
    quotes: list[ShippingQuoteV1] = Field(default_factory=list)
    cheapest: ShippingQuoteV1 | None = None
    reason: str | None = None
    failures: list[ProviderFailureOut] = Field(default_factory=list)
