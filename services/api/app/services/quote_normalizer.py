"""Map carrier-specific rate payloads onto ShippingQuoteV1.

Each provider names the same facts differently (Biteship pricing rows, FedEx
rateReplyDetails, the estimated tables). The normalizer reads the known aliases,
fills defaults for optional facts, and rejects a row only when it has no price or
no courier identity.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from packages.shared.schemas.shipping_v1 import (
    DeliveryEstimateV1,
    MoneyV1,
    ServiceTypeV1,
    ShippingQuoteV1,
)

logger = logging.getLogger(__name__)

DEFAULT_ETA = (1, 3)

_DAY_SUFFIX_RE = re.compile(r"\s*(days?|hari)\s*$", re.IGNORECASE)

# Currencies without a minor unit; everything else is treated as 2 decimals.
_ZERO_DECIMAL_CURRENCIES = frozenset({"IDR", "JPY", "KRW", "VND"})

SERVICE_TYPE_TABLE: dict[str, ServiceTypeV1] = {
    # Canonical names.
    "economy": ServiceTypeV1.ECONOMY,
    "standard": ServiceTypeV1.STANDARD,
    "express": ServiceTypeV1.EXPRESS,
    "overnight": ServiceTypeV1.OVERNIGHT,
    # Biteship courier service codes.
    "reg": ServiceTypeV1.STANDARD,
    "regular": ServiceTypeV1.STANDARD,
    "ez": ServiceTypeV1.STANDARD,
    "oke": ServiceTypeV1.ECONOMY,
    "eco": ServiceTypeV1.ECONOMY,
    "kilat": ServiceTypeV1.STANDARD,
    "yes": ServiceTypeV1.EXPRESS,
    "best": ServiceTypeV1.EXPRESS,
    "next_day": ServiceTypeV1.OVERNIGHT,
    "sds": ServiceTypeV1.OVERNIGHT,
    "same_day": ServiceTypeV1.OVERNIGHT,
    "instant": ServiceTypeV1.OVERNIGHT,
    # FedEx serviceType values.
    "international_first": ServiceTypeV1.OVERNIGHT,
    "fedex_international_priority_express": ServiceTypeV1.EXPRESS,
    "international_priority": ServiceTypeV1.EXPRESS,
    "fedex_international_priority": ServiceTypeV1.EXPRESS,
    "international_priority_express": ServiceTypeV1.EXPRESS,
    "fedex_international_connect_plus": ServiceTypeV1.STANDARD,
    "international_economy": ServiceTypeV1.ECONOMY,
    "fedex_international_economy": ServiceTypeV1.ECONOMY,
    "international_ground": ServiceTypeV1.ECONOMY,
}


def parse_duration(value: Any) -> tuple[int, int]:
    """Parse a free-text duration like "2 - 4" or "3 days" into (min, max) days.

    Unparsable input yields DEFAULT_ETA so a quote with a usable price survives.
    """

    if isinstance(value, bool):
        return DEFAULT_ETA
    if isinstance(value, int):
        return (value, value) if value >= 0 else DEFAULT_ETA
    if not isinstance(value, str):
        return DEFAULT_ETA

    text = _DAY_SUFFIX_RE.sub("", value.strip())
    parts = [p.strip() for p in text.split("-")]
    if len(parts) > 2 or not all(p.isascii() and p.isdigit() for p in parts):
        return DEFAULT_ETA

    low, high = int(parts[0]), int(parts[-1])
    if low > high:
        low, high = high, low
    return low, high


def map_service_type(value: Any) -> ServiceTypeV1:
    if not isinstance(value, str):
        return ServiceTypeV1.STANDARD
    key = value.strip().lower().replace(" ", "_").replace("-", "_")
    return SERVICE_TYPE_TABLE.get(key, ServiceTypeV1.STANDARD)


def to_minor_units(amount: Any, currency: str) -> int | None:
    if amount is None or isinstance(amount, bool):
        return None
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value < 0:
        return None

    exponent = 0 if currency.upper() in _ZERO_DECIMAL_CURRENCIES else 2
    try:
        scaled = value * (Decimal(10) ** exponent)
        return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except ArithmeticError:
        # Exceeds the decimal context precision.
        return None


def normalize_quote(
    raw: Mapping[str, Any],
    provider: str,
    default_currency: str = "IDR",
) -> ShippingQuoteV1 | None:
    courier_code = _first_str(raw, "courier_code", "company", "carrier_code")
    if not courier_code:
        return None

    price_raw, currency = _price_and_currency(raw, default_currency)
    amount = to_minor_units(price_raw, currency)
    if amount is None:
        return None

    service_code = (
        _first_str(raw, "courier_service_code", "service_code", "serviceType")
        or "default"
    )
    courier_name = _first_str(raw, "courier_name", "carrier_name") or courier_code.upper()
    service_name = (
        _first_str(raw, "courier_service_name", "service_name", "serviceName") or service_code
    )

    service_type = map_service_type(
        _first_str(raw, "service_type", "serviceType", "courier_service_code", "service_code")
    )

    min_days, max_days = _eta(raw)

    return ShippingQuoteV1(
        courier_code=courier_code.lower(),
        courier_name=courier_name,
        service_code=service_code.lower(),
        service_name=service_name,
        service_type=service_type,
        description=_first_str(raw, "description") or "",
        price=MoneyV1(amount=amount, currency=currency.upper()),
        eta=DeliveryEstimateV1(min_days=min_days, max_days=max_days),
        provider=provider,
    )


def normalize_quotes(
    raws: Iterable[Mapping[str, Any]],
    provider: str,
    default_currency: str = "IDR",
) -> list[ShippingQuoteV1]:
    quotes: list[ShippingQuoteV1] = []
    dropped = 0
    for raw in raws:
        if not isinstance(raw, Mapping):
            dropped += 1
            continue
        quote = normalize_quote(raw, provider, default_currency)
        if quote is None:
            dropped += 1
            continue
        quotes.append(quote)

    if dropped:
        logger.info("Dropped %d unusable quote(s) from provider %s", dropped, provider)
    return quotes


def _first_str(raw: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _price_and_currency(raw: Mapping[str, Any], default_currency: str) -> tuple[Any, str]:
    currency = _first_str(raw, "currency") or default_currency

    for key in ("price", "amount"):
        if key in raw and raw[key] is not None:
            return raw[key], currency

    charge = raw.get("totalNetCharge")
    if isinstance(charge, Mapping):
        return charge.get("amount"), _first_str(charge, "currency") or currency
    return charge, currency


def _eta(raw: Mapping[str, Any]) -> tuple[int, int]:
    min_day = _day_count(raw.get("min_day"))
    if min_day is not None:
        max_day = _day_count(raw.get("max_day"))
        if max_day is None:
            max_day = min_day
        return min(min_day, max_day), max(min_day, max_day)

    for key in ("duration", "shipment_duration_range", "shiping_duration_range"):
        if key in raw:
            return parse_duration(raw[key])
    return DEFAULT_ETA


def _day_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value
