"""Shared shipping schema (v1).

Quotes from every carrier are normalized into ShippingQuoteV1 before they reach
checkout or the order record.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ServiceTypeV1(str, Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"


class MoneyV1(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Minor units of `currency` (rupiah for IDR, cents for USD).
    amount: int = Field(..., ge=0)
    currency: str = "IDR"


class DeliveryEstimateV1(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_days: int = Field(..., ge=0)
    max_days: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "DeliveryEstimateV1":
        if self.min_days > self.max_days:
            raise ValueError("min_days must be <= max_days")
        return self


class ShippingQuoteV1(BaseModel):
    model_config = ConfigDict(frozen=True)

    courier_code: str
    courier_name: str
    service_code: str
    service_name: str
    service_type: ServiceTypeV1 = ServiceTypeV1.STANDARD
    description: str = ""
    price: MoneyV1
    eta: DeliveryEstimateV1
    provider: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def quote_id(self) -> str:
        return f"{self.provider}:{self.courier_code}:{self.service_code}"


class RateLocationV1(BaseModel):
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., pattern=r"^[A-Za-z]{2}$")
    area_id: str | None = None
    city: str | None = None


class ParcelItemV1(BaseModel):
    name: str = "item"
    # Grams.
    weight: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)
    value: int = Field(0, ge=0)
    length: int | None = Field(None, gt=0)
    width: int | None = Field(None, gt=0)
    height: int | None = Field(None, gt=0)


class TrackingEventV1(BaseModel):
    status: str
    description: str = ""
    location: str = ""
    timestamp: str = ""


class TrackingV1(BaseModel):
    tracking_number: str
    courier: str
    status: str
    message: str = ""
    estimated_delivery: str | None = None
    events: list[TrackingEventV1] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)
