from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from packages.shared.schemas.shipping_v1 import ShippingQuoteV1, TrackingEventV1, TrackingV1
from services.api.app.models.order import OrderOut
from services.api.app.services.carrier_base import (
    LANE_DOMESTIC,
    CarrierError,
    CarrierNotConfiguredError,
    CarrierRequestError,
    CarrierTimeoutError,
    ProviderRates,
    RateRequest,
    Waybill,
    WaybillError,
)

logger = logging.getLogger(__name__)

# Parcel dimensions (cm) assumed when a catalog item has none.
_DEFAULT_DIMENSIONS = {"length": 10, "width": 10, "height": 1}


@dataclass(frozen=True, slots=True)
class _BiteshipConfig:
    base_url: str
    api_key: str
    couriers: str
    timeout_s: float
    origin_contact_name: str
    origin_contact_phone: str
    origin_address: str
    origin_postal_code: str


class BiteshipClient:
    """Domestic rates, waybills and tracking via the Biteship API.

    Env vars:
    - BITESHIP_API_KEY (required)
    - BITESHIP_BASE_URL (default: https://api.biteship.com)
    - BITESHIP_COURIERS (default: jne,jnt,sicepat,pos,anteraja)
    - BITESHIP_ORIGIN_CONTACT_NAME / BITESHIP_ORIGIN_CONTACT_PHONE / BITESHIP_ORIGIN_ADDRESS
    - STOREFRONT_ORIGIN_POSTAL_CODE (default: 40115)
    - STOREFRONT_PROVIDER_TIMEOUT_S (default: 10)
    """

    name = "biteship"
    lanes = frozenset({LANE_DOMESTIC})
    estimated = False

    def __init__(
        self,
        cfg: _BiteshipConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._http = httpx.Client(
            base_url=cfg.base_url,
            timeout=cfg.timeout_s,
            transport=transport,
            headers={
                "Authorization": f"Bearer {cfg.api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_env(cls) -> "BiteshipClient":
        api_key = os.getenv("BITESHIP_API_KEY", "").strip()
        if not api_key:
            raise CarrierNotConfiguredError("Biteship", "BITESHIP_API_KEY")

        return cls(
            _BiteshipConfig(
                base_url=os.getenv("BITESHIP_BASE_URL", "https://api.biteship.com").rstrip("/"),
                api_key=api_key,
                couriers=os.getenv("BITESHIP_COURIERS", "jne,jnt,sicepat,pos,anteraja"),
                timeout_s=float(os.getenv("STOREFRONT_PROVIDER_TIMEOUT_S", "10")),
                origin_contact_name=os.getenv(
                    "BITESHIP_ORIGIN_CONTACT_NAME", "Storefront Warehouse"
                ),
                origin_contact_phone=os.getenv("BITESHIP_ORIGIN_CONTACT_PHONE", "0000000000"),
                origin_address=os.getenv("BITESHIP_ORIGIN_ADDRESS", "Warehouse"),
                origin_postal_code=os.getenv("STOREFRONT_ORIGIN_POSTAL_CODE", "40115"),
            )
        )

    def close(self) -> None:
        self._http.close()

    def get_rates(self, request: RateRequest) -> ProviderRates:
        body = {
            "origin_postal_code": _postal(request.origin.postal_code),
            "destination_postal_code": _postal(request.destination.postal_code),
            "couriers": self._cfg.couriers,
            "items": [
                {
                    "name": item.name,
                    "value": item.value,
                    "weight": item.weight,
                    "quantity": item.quantity,
                    "length": item.length or _DEFAULT_DIMENSIONS["length"],
                    "width": item.width or _DEFAULT_DIMENSIONS["width"],
                    "height": item.height or _DEFAULT_DIMENSIONS["height"],
                }
                for item in request.manifest
            ],
        }

        data = self._request("POST", "/v1/rates/couriers", json=body)
        pricing = data.get("pricing")
        if not isinstance(pricing, list):
            raise CarrierRequestError(self.name, "response has no pricing list")

        logger.info(
            "Biteship rates: %s -> %s (%d rows)",
            request.origin.postal_code,
            request.destination.postal_code,
            len(pricing),
        )
        return ProviderRates(provider=self.name, rows=pricing, currency="IDR")

    def create_waybill(self, order: OrderOut, quote: ShippingQuoteV1) -> Waybill:
        address = order.address
        body = {
            "reference_id": order.id,
            "shipper_contact_name": self._cfg.origin_contact_name,
            "shipper_contact_phone": self._cfg.origin_contact_phone,
            "origin_contact_name": self._cfg.origin_contact_name,
            "origin_contact_phone": self._cfg.origin_contact_phone,
            "origin_address": self._cfg.origin_address,
            "origin_postal_code": _postal(self._cfg.origin_postal_code),
            "destination_contact_name": address.recipient_name,
            "destination_contact_phone": address.phone,
            "destination_address": address.address_line,
            "destination_postal_code": _postal(address.postal_code),
            "courier_company": quote.courier_code,
            "courier_type": quote.service_code,
            "delivery_type": "now",
            "items": [
                {
                    "name": line.name,
                    "value": line.unit_price,
                    "quantity": line.quantity,
                    "weight": 1000,
                }
                for line in order.items
            ],
        }

        try:
            data = self._request("POST", "/v1/orders", json=body)
        except CarrierError as e:
            raise WaybillError(quote.courier_code, str(e)) from e

        courier = data.get("courier") if isinstance(data.get("courier"), dict) else {}
        tracking_number = courier.get("waybill_id") or courier.get("tracking_id")
        if not tracking_number:
            raise WaybillError(quote.courier_code, "response has no waybill_id")

        logger.info("Biteship waybill %s created for order %s", tracking_number, order.id)
        return Waybill(
            tracking_number=str(tracking_number),
            courier=str(courier.get("company") or quote.courier_code),
            waybill_id=str(data["id"]) if data.get("id") else None,
            raw=data,
        )

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        data = self._request("GET", f"/v1/trackings/{tracking_number}")

        history = data.get("history") if isinstance(data.get("history"), list) else []
        events = [
            TrackingEventV1(
                status=str(h.get("status") or "unknown"),
                description=str(h.get("note") or ""),
                timestamp=str(h.get("updated_at") or ""),
            )
            for h in history
            if isinstance(h, dict)
        ]

        data_courier = data.get("courier") if isinstance(data.get("courier"), dict) else {}
        return TrackingV1(
            tracking_number=str(data.get("waybill_id") or tracking_number),
            courier=str(data_courier.get("company") or courier or "unknown"),
            status=str(data.get("status") or "unknown"),
            message=str(data.get("message") or ""),
            events=events,
            raw=data,
        )

    def _request(self, method: str, path: str, *, json: dict | None = None) -> dict[str, Any]:
        try:
            response = self._http.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise CarrierTimeoutError(self.name, self._cfg.timeout_s) from e
        except httpx.HTTPError as e:
            raise CarrierRequestError(self.name, str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400 or data.get("success") is False:
            message = str(data.get("error") or data.get("message") or response.reason_phrase)
            logger.warning("Biteship %s %s failed: %s", method, path, message)
            raise CarrierRequestError(self.name, message, status_code=response.status_code)

        return data


def _postal(value: str) -> int | str:
    # Biteship expects numeric postal codes for Indonesian addresses.
    compact = "".join(value.split())
    return int(compact) if compact.isdigit() else compact
