"""Estimated rate tables used when no live carrier answers.

Domestic rows are priced per gram with a floor; international rows scale a
per-destination base price by started kilogram.
"""

from __future__ import annotations

import math
from typing import Any

from services.api.app.services.carrier_base import (
    LANE_DOMESTIC,
    LANE_INTERNATIONAL,
    ProviderRates,
    RateRequest,
)
from services.api.app.services.rate_key import total_weight

# (courier_code, courier_name, service_code, service_name, service_type,
#  floor, per_gram, min_day, max_day)
_DOMESTIC_TABLE: tuple[tuple[str, str, str, str, str, int, float, int, int], ...] = (
    ("jne", "JNE", "reg", "JNE Reguler", "standard", 15000, 0.01, 2, 4),
    ("jne", "JNE", "oke", "JNE OKE", "economy", 12000, 0.008, 3, 6),
    ("jne", "JNE", "yes", "JNE YES", "express", 25000, 0.02, 1, 2),
    ("jnt", "J&T", "reg", "J&T Reguler", "standard", 14000, 0.009, 2, 4),
    ("sicepat", "SiCepat", "reg", "SiCepat Reguler", "standard", 16000, 0.011, 2, 4),
)

# Base prices in rupiah per started kilogram.
_INTERNATIONAL_BASE: dict[str, dict[str, int]] = {
    "US": {"express": 150000, "standard": 100000, "economy": 75000},
    "SG": {"express": 80000, "standard": 60000, "economy": 45000},
    "MY": {"express": 70000, "standard": 50000, "economy": 35000},
    "TH": {"express": 65000, "standard": 45000, "economy": 30000},
    "PH": {"express": 60000, "standard": 40000, "economy": 25000},
    "VN": {"express": 55000, "standard": 35000, "economy": 20000},
    "AU": {"express": 120000, "standard": 90000, "economy": 70000},
    "JP": {"express": 90000, "standard": 70000, "economy": 50000},
    "KR": {"express": 85000, "standard": 65000, "economy": 45000},
}

_INTERNATIONAL_SERVICES: tuple[tuple[str, str, str, str, str, int, int], ...] = (
    ("dhl", "DHL Express", "express", "Express International", "express", 2, 5),
    ("fedex", "FedEx", "standard", "Standard International", "standard", 5, 10),
    ("pos", "Postal Service", "economy", "Economy International", "economy", 10, 21),
)


class DomesticEstimatedProvider:
    name = "indonesia-estimated"
    lanes = frozenset({LANE_DOMESTIC})
    estimated = True

    def get_rates(self, request: RateRequest) -> ProviderRates:
        weight = total_weight(request.manifest)

        rows: list[dict[str, Any]] = []
        for code, courier, service, service_name, service_type, floor, per_gram, lo, hi in (
            _DOMESTIC_TABLE
        ):
            rows.append(
                {
                    "courier_code": code,
                    "courier_name": courier,
                    "courier_service_code": service,
                    "courier_service_name": service_name,
                    "service_type": service_type,
                    "description": f"Estimated {service_name}",
                    "price": max(floor, round(weight * per_gram)),
                    "min_day": lo,
                    "max_day": hi,
                }
            )

        return ProviderRates(provider=self.name, rows=rows, currency="IDR")


class InternationalEstimatedProvider:
    name = "international-estimated"
    lanes = frozenset({LANE_INTERNATIONAL})
    estimated = True

    def get_rates(self, request: RateRequest) -> ProviderRates:
        country = request.destination.country.strip().upper()
        base = _INTERNATIONAL_BASE.get(country, _INTERNATIONAL_BASE["US"])
        kilograms = max(1, math.ceil(total_weight(request.manifest) / 1000))

        rows = [
            {
                "courier_code": code,
                "courier_name": courier,
                "courier_service_code": service,
                "courier_service_name": service_name,
                "service_type": service_type,
                "description": f"Estimated {courier} {service_name}",
                "price": base[service_type] * kilograms,
                "min_day": lo,
                "max_day": hi,
            }
            for code, courier, service, service_name, service_type, lo, hi in (
                _INTERNATIONAL_SERVICES
            )
        ]

        return ProviderRates(provider=self.name, rows=rows, currency="IDR")
