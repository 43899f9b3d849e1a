from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from packages.shared.schemas.shipping_v1 import TrackingEventV1, TrackingV1
from services.api.app.services.carrier_base import (
    LANE_INTERNATIONAL,
    CarrierNotConfiguredError,
    CarrierRequestError,
    CarrierTimeoutError,
    ProviderRates,
    RateRequest,
)
from services.api.app.services.quote_normalizer import map_service_type
from services.api.app.services.rate_key import total_weight

logger = logging.getLogger(__name__)

# Transit days by destination before the service-type multiplier.
_BASE_TRANSIT_DAYS = {
    "US": 3,
    "CA": 3,
    "GB": 2,
    "DE": 2,
    "FR": 2,
    "AU": 4,
    "JP": 2,
    "SG": 1,
    "MY": 2,
    "TH": 2,
    "PH": 3,
    "VN": 3,
}
_SERVICE_TRANSIT_MULTIPLIER = {
    "overnight": 0.5,
    "express": 0.7,
    "standard": 1.0,
    "economy": 1.5,
}

_TRACKING_STATUS = {
    "OC": "in_transit",
    "IT": "in_transit",
    "DP": "in_transit",
    "PU": "picked_up",
    "OD": "delivered",
    "DL": "delivered",
    "CA": "cancelled",
    "EX": "exception",
}

# Refresh the OAuth token this long before FedEx says it expires.
_TOKEN_SKEW_S = 300


@dataclass(frozen=True, slots=True)
class _FedExConfig:
    base_url: str
    api_key: str
    secret_key: str
    account_number: str
    timeout_s: float


class FedExClient:
    """International rates and tracking via the FedEx REST API.

    Env vars:
    - FEDEX_API_KEY, FEDEX_SECRET_KEY (required)
    - FEDEX_ACCOUNT_NUMBER (required)
    - FEDEX_BASE_URL (default: https://apis-sandbox.fedex.com)
    - STOREFRONT_PROVIDER_TIMEOUT_S (default: 10)
    """

    name = "fedex"
    lanes = frozenset({LANE_INTERNATIONAL})
    estimated = False

    def __init__(
        self,
        cfg: _FedExConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cfg = cfg
        self._clock = clock
        self._http = httpx.Client(base_url=cfg.base_url, timeout=cfg.timeout_s, transport=transport)
        self._token_lock = threading.Lock()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_env(cls) -> "FedExClient":
        values = {}
        for var in ("FEDEX_API_KEY", "FEDEX_SECRET_KEY", "FEDEX_ACCOUNT_NUMBER"):
            values[var] = os.getenv(var, "").strip()
            if not values[var]:
                raise CarrierNotConfiguredError("FedEx", var)

        return cls(
            _FedExConfig(
                base_url=os.getenv("FEDEX_BASE_URL", "https://apis-sandbox.fedex.com").rstrip("/"),
                api_key=values["FEDEX_API_KEY"],
                secret_key=values["FEDEX_SECRET_KEY"],
                account_number=values["FEDEX_ACCOUNT_NUMBER"],
                timeout_s=float(os.getenv("STOREFRONT_PROVIDER_TIMEOUT_S", "10")),
            )
        )

    def close(self) -> None:
        self._http.close()

    def get_rates(self, request: RateRequest) -> ProviderRates:
        kilograms = max(0.1, total_weight(request.manifest) / 1000)
        body = {
            "accountNumber": {"value": self._cfg.account_number},
            "requestedShipment": {
                "shipper": {
                    "address": {
                        "countryCode": request.origin.country.upper(),
                        "postalCode": request.origin.postal_code,
                    }
                },
                "recipient": {
                    "address": {
                        "countryCode": request.destination.country.upper(),
                        "postalCode": request.destination.postal_code,
                    }
                },
                "shipDate": date.today().isoformat(),
                "rateRequestType": ["LIST"],
                "pickupType": "USE_SCHEDULED_PICKUP",
                "requestedPackageLineItems": [
                    {
                        "weight": {"units": "KG", "value": round(kilograms, 2)},
                        "dimensions": {"length": 10, "width": 10, "height": 10, "units": "CM"},
                    }
                ],
            },
        }

        data = self._authorized_post("/rate/v1/rates/quotes", body)
        rows = _rate_rows(data, request.destination.country.upper())
        logger.info(
            "FedEx rates: %s -> %s (%d rows)",
            request.origin.country,
            request.destination.country,
            len(rows),
        )
        return ProviderRates(provider=self.name, rows=rows, currency="USD")

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        del courier

        body = {
            "includeDetailedScans": True,
            "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
        }
        data = self._authorized_post("/track/v1/trackingnumbers", body)

        results = (data.get("output") or {}).get("completeTrackResults") or []
        details = (results[0].get("trackDetails") or [{}])[0] if results else {}
        if not details:
            return TrackingV1(
                tracking_number=tracking_number,
                courier="fedex",
                status="unknown",
                message="No tracking information available",
                raw=data,
            )

        events = []
        for scan in details.get("scanEvents") or []:
            location = scan.get("scanLocation") or {}
            place = ", ".join(
                p for p in (location.get("city"), location.get("stateOrProvinceCode")) if p
            )
            events.append(
                TrackingEventV1(
                    status=str(scan.get("eventType") or "unknown"),
                    description=str(scan.get("eventDescription") or "Status update"),
                    location=place or "Unknown location",
                    timestamp=str(scan.get("date") or ""),
                )
            )

        return TrackingV1(
            tracking_number=str(details.get("trackingNumber") or tracking_number),
            courier="fedex",
            status=_TRACKING_STATUS.get(str(details.get("statusCode") or ""), "in_transit"),
            message=str(details.get("statusDescription") or "Package in transit"),
            estimated_delivery=details.get("estimatedDeliveryTimestamp"),
            events=events,
            raw=data,
        )

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token is not None and self._clock() < self._token_expires_at:
                return self._token

            data = self._send(
                "POST",
                "/oauth/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._cfg.api_key,
                    "client_secret": self._cfg.secret_key,
                },
                headers={"Accept": "application/json"},
            )
            token = data.get("access_token")
            if not token:
                raise CarrierRequestError(self.name, "OAuth response has no access_token")

            expires_in = float(data.get("expires_in") or 3600)
            self._token = str(token)
            self._token_expires_at = self._clock() + max(0.0, expires_in - _TOKEN_SKEW_S)
            logger.info("FedEx access token refreshed")
            return self._token

    def _authorized_post(self, path: str, body: dict) -> dict[str, Any]:
        token = self._access_token()
        return self._send(
            "POST",
            path,
            json=body,
            headers={"Authorization": f"Bearer {token}", "X-locale": "en_US"},
        )

    def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.request(method, path, **kwargs)
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

        if response.status_code >= 400:
            errors = data.get("errors") or [{}]
            message = str(errors[0].get("message") or response.reason_phrase)
            logger.warning("FedEx %s %s failed: %s", method, path, message)
            raise CarrierRequestError(self.name, message, status_code=response.status_code)

        return data


def estimated_transit_days(destination_country: str, service_type: str) -> int:
    base = _BASE_TRANSIT_DAYS.get(destination_country, 5)
    multiplier = _SERVICE_TRANSIT_MULTIPLIER.get(service_type, 1.0)
    return max(1, round(base * multiplier))


def _rate_rows(data: dict[str, Any], destination_country: str) -> list[dict[str, Any]]:
    details = (data.get("output") or {}).get("rateReplyDetails") or []

    rows: list[dict[str, Any]] = []
    for rate in details:
        shipments = rate.get("ratedShipmentDetails") or []
        if not shipments:
            continue
        shipment = shipments[0]

        service_type = map_service_type(rate.get("serviceType")).value
        min_day = estimated_transit_days(destination_country, service_type)
        rows.append(
            {
                "courier_code": "fedex",
                "courier_name": "FedEx",
                "serviceType": rate.get("serviceType") or "international",
                "serviceName": rate.get("serviceName") or "FedEx International",
                "service_type": service_type,
                "description": rate.get("serviceName") or "FedEx International Shipping",
                "totalNetCharge": shipment.get("totalNetCharge"),
                "currency": shipment.get("currency") or "USD",
                "min_day": min_day,
                "max_day": min_day + 3,
            }
        )
    return rows
