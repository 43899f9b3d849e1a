from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from packages.shared.schemas.shipping_v1 import (
    ParcelItemV1,
    RateLocationV1,
    ShippingQuoteV1,
    TrackingV1,
)
from services.api.app.models.order import OrderOut

LANE_DOMESTIC = "domestic"
LANE_INTERNATIONAL = "international"


class CarrierError(Exception):
    """Base class for carrier adapter errors."""


class CarrierNotConfiguredError(CarrierError):
    def __init__(self, provider: str, env_var: str) -> None:
        super().__init__(f"{provider} is not configured. Set {env_var}.")
        self.provider = provider
        self.env_var = env_var


class CarrierRequestError(CarrierError):
    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{provider} request failed{detail}: {message}")
        self.provider = provider
        self.status_code = status_code


class CarrierTimeoutError(CarrierError):
    def __init__(self, provider: str, timeout_s: float) -> None:
        super().__init__(f"{provider} did not answer within {timeout_s:g}s")
        self.provider = provider
        self.timeout_s = timeout_s


class WaybillError(CarrierError):
    def __init__(self, courier: str, message: str) -> None:
        super().__init__(f"Waybill creation with {courier} failed: {message}")
        self.courier = courier


@dataclass(frozen=True, slots=True)
class RateRequest:
    origin: RateLocationV1
    destination: RateLocationV1
    manifest: tuple[ParcelItemV1, ...]


@dataclass(frozen=True, slots=True)
class ProviderRates:
    """Raw rate rows as returned by one provider, before normalization."""

    provider: str
    rows: list[dict[str, Any]]
    currency: str = "IDR"


@dataclass(frozen=True, slots=True)
class Waybill:
    tracking_number: str
    courier: str
    waybill_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class RateProvider(Protocol):
    name: str
    lanes: frozenset[str]
    # Estimated providers only answer when no live provider produced a quote.
    estimated: bool

    def get_rates(self, request: RateRequest) -> ProviderRates: ...


class WaybillIssuer(Protocol):
    def create_waybill(self, order: OrderOut, quote: ShippingQuoteV1) -> Waybill: ...


class ShipmentTracker(Protocol):
    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1: ...
