from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from packages.shared.schemas.shipping_v1 import RateLocationV1, ShippingQuoteV1, TrackingV1
from services.api.app.models.order import OrderOut
from services.api.app.services.carrier_base import (
    CarrierNotConfiguredError,
    RateProvider,
    ShipmentTracker,
    Waybill,
    WaybillIssuer,
)
from services.api.app.services.carrier_estimated import (
    DomesticEstimatedProvider,
    InternationalEstimatedProvider,
)
from services.api.app.services.carrier_mock import MockShipmentTracker, MockWaybillIssuer
from services.api.app.services.rate_resolver import ShippingRateResolver

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class CarrierSetup:
    mode: str
    providers: tuple[RateProvider, ...]
    waybills: WaybillIssuer
    tracker: ShipmentTracker
    resolver: ShippingRateResolver


_SETUP: CarrierSetup | None = None
_SETUP_SIGNATURE: tuple | None = None

_LIVE_CREDENTIALS = (
    "BITESHIP_API_KEY",
    "FEDEX_API_KEY",
    "FEDEX_SECRET_KEY",
    "FEDEX_ACCOUNT_NUMBER",
)


def home_country() -> str:
    return os.getenv("STOREFRONT_HOME_COUNTRY", "ID").strip().upper()


def origin_location() -> RateLocationV1:
    return RateLocationV1(
        postal_code=os.getenv("STOREFRONT_ORIGIN_POSTAL_CODE", "40115").strip(),
        country=home_country(),
    )


def store_currency() -> str:
    return os.getenv("STOREFRONT_CURRENCY", "IDR").strip().upper()


def provider_timeout_s() -> float:
    return float(os.getenv("STOREFRONT_PROVIDER_TIMEOUT_S", "10"))


def rate_debounce_s() -> float:
    return int(os.getenv("STOREFRONT_RATE_DEBOUNCE_MS", "500")) / 1000


def get_carrier_setup() -> CarrierSetup:
    """Build (once per configuration) the carrier adapters and the shared resolver.

    Defaults to estimated rates and mock waybills so tests and local dev never call
    a carrier unless explicitly configured otherwise. In live mode only carriers with
    credentials are registered. The resolver is shared so identical rate requests
    across checkouts are de-duplicated.
    """

    global _SETUP, _SETUP_SIGNATURE

    mode = os.getenv("STOREFRONT_CARRIER_ADAPTER", "estimated").strip().lower()
    # Which live carriers are registered depends on the credentials that are set.
    credentials = tuple(bool(os.getenv(var, "").strip()) for var in _LIVE_CREDENTIALS)
    signature = (mode, home_country(), provider_timeout_s(), credentials)
    if _SETUP is not None and _SETUP_SIGNATURE == signature:
        return _SETUP

    estimated: list[RateProvider] = [DomesticEstimatedProvider(), InternationalEstimatedProvider()]

    if mode == "estimated":
        providers = tuple(estimated)
        waybills: WaybillIssuer = MockWaybillIssuer()
        tracker: ShipmentTracker = MockShipmentTracker()
    elif mode == "live":
        from services.api.app.services.biteship_client import BiteshipClient
        from services.api.app.services.fedex_client import FedExClient
        from services.api.app.services.shipment_tracking import RoutingShipmentTracker

        biteship, biteship_missing = _from_env(BiteshipClient.from_env)
        fedex, fedex_missing = _from_env(FedExClient.from_env)

        live: list[RateProvider] = [c for c in (biteship, fedex) if c is not None]
        providers = (*live, *estimated)
        domestic: _UnconfiguredCarrier | BiteshipClient = biteship or _UnconfiguredCarrier(
            biteship_missing
        )
        waybills = domestic
        tracker = RoutingShipmentTracker(
            domestic=domestic,
            fedex=fedex or _UnconfiguredCarrier(fedex_missing),
        )
    else:
        raise ValueError(
            f"Unknown STOREFRONT_CARRIER_ADAPTER={mode!r}. Expected estimated or live."
        )

    if _SETUP is not None:
        _SETUP.resolver.close()

    _SETUP = CarrierSetup(
        mode=mode,
        providers=providers,
        waybills=waybills,
        tracker=tracker,
        resolver=ShippingRateResolver(
            providers,
            home_country=home_country(),
            provider_timeout_s=provider_timeout_s(),
        ),
    )
    _SETUP_SIGNATURE = signature
    return _SETUP


class _UnconfiguredCarrier:
    """Stands in for a live carrier whose credentials are missing."""

    def __init__(self, missing: CarrierNotConfiguredError | None) -> None:
        assert missing is not None
        self._provider = missing.provider
        self._env_var = missing.env_var

    def create_waybill(self, order: OrderOut, quote: ShippingQuoteV1) -> Waybill:
        raise CarrierNotConfiguredError(self._provider, self._env_var)

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        raise CarrierNotConfiguredError(self._provider, self._env_var)


def _from_env(
    build: Callable[[], _T],
) -> tuple[_T | None, CarrierNotConfiguredError | None]:
    try:
        return build(), None
    except CarrierNotConfiguredError as e:
        logger.warning("%s Its rates fall back to estimates.", e)
        return None, e
