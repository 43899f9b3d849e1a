from __future__ import annotations

import re

from packages.shared.schemas.shipping_v1 import TrackingV1
from services.api.app.services.carrier_base import ShipmentTracker

_FEDEX_PATTERNS = (
    re.compile(r"^\d{12}$"),
    re.compile(r"^\d{14}$"),
    re.compile(r"^\d{4}[\s-]?\d{4}[\s-]?\d{4}$"),
    re.compile(r"^\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{2}$"),
)


def is_fedex_tracking_number(tracking_number: str) -> bool:
    return any(p.match(tracking_number.strip()) for p in _FEDEX_PATTERNS)


class RoutingShipmentTracker:
    """Send FedEx numbers to FedEx and everything else to the domestic aggregator."""

    def __init__(self, domestic: ShipmentTracker, fedex: ShipmentTracker) -> None:
        self._domestic = domestic
        self._fedex = fedex

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        if (courier or "").lower() == "fedex" or is_fedex_tracking_number(tracking_number):
            return self._fedex.track(tracking_number, "fedex")
        return self._domestic.track(tracking_number, courier)
