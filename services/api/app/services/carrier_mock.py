from __future__ import annotations

from uuid import uuid4

from packages.shared.schemas.shipping_v1 import ShippingQuoteV1, TrackingEventV1, TrackingV1
from services.api.app.models.order import OrderOut
from services.api.app.services.carrier_base import Waybill


class MockWaybillIssuer:
    """Issues local tracking numbers without calling a carrier."""

    vendor = "CARRIER_MOCK"

    def __init__(self) -> None:
        self.issued: list[Waybill] = []

    def create_waybill(self, order: OrderOut, quote: ShippingQuoteV1) -> Waybill:
        tracking_number = f"{quote.courier_code.upper()}{uuid4().hex[:10].upper()}"
        waybill = Waybill(
            tracking_number=tracking_number,
            courier=quote.courier_code,
            waybill_id=f"wb_{order.id}",
            raw={"service": quote.service_code, "provider": quote.provider},
        )
        self.issued.append(waybill)
        return waybill


class MockShipmentTracker:
    vendor = "CARRIER_MOCK"

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        return TrackingV1(
            tracking_number=tracking_number,
            courier=courier or "unknown",
            status="in_transit",
            message="Package in transit",
            events=[
                TrackingEventV1(
                    status="picked_up",
                    description="Picked up by courier",
                    location="Origin warehouse",
                ),
                TrackingEventV1(
                    status="in_transit",
                    description="Departed sorting facility",
                    location="Sorting hub",
                ),
            ],
        )
