from __future__ import annotations

from fastapi import APIRouter, HTTPException
from packages.shared.schemas.shipping_v1 import TrackingV1
from services.api.app.models.shipping import (
    ProviderFailureOut,
    ShippingRatesRequest,
    ShippingRatesResponse,
)
from services.api.app.services.carrier_base import (
    CarrierError,
    CarrierNotConfiguredError,
    CarrierRequestError,
    CarrierTimeoutError,
    RateRequest,
)
from services.api.app.services.carrier_factory import get_carrier_setup, origin_location
from services.api.app.services.rate_resolver import RateOutcome, RateResolution

router = APIRouter()


def raise_carrier_http_error(e: Exception) -> None:
    if isinstance(e, CarrierNotConfiguredError):
        raise HTTPException(status_code=503, detail=str(e)) from e

    if isinstance(e, CarrierTimeoutError):
        raise HTTPException(status_code=504, detail=str(e)) from e

    if isinstance(e, CarrierRequestError) and e.status_code == 404:
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, CarrierError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, ValueError):
        raise HTTPException(status_code=500, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def rates_response(outcome: RateOutcome) -> ShippingRatesResponse:
    failures = [
        ProviderFailureOut(provider=f.provider, error=f.error, timed_out=f.timed_out)
        for f in outcome.failures
    ]

    if isinstance(outcome, RateResolution):
        return ShippingRatesResponse(
            request_key=outcome.key.as_string(),
            available=True,
            provider=outcome.provider,
            quotes=list(outcome.quotes),
            cheapest=outcome.cheapest,
            failures=failures,
        )

    return ShippingRatesResponse(
        request_key=outcome.key.as_string(),
        available=False,
        reason=outcome.reason,
        failures=failures,
    )


@router.post("/v1/shipping/rates", response_model=ShippingRatesResponse)
def get_shipping_rates(payload: ShippingRatesRequest) -> ShippingRatesResponse:
    try:
        setup = get_carrier_setup()
    except Exception as e:
        raise_carrier_http_error(e)

    request = RateRequest(
        origin=payload.origin or origin_location(),
        destination=payload.destination,
        manifest=tuple(payload.items),
    )
    return rates_response(setup.resolver.resolve(request))


@router.get("/v1/shipping/track/{tracking_number}", response_model=TrackingV1)
def track_shipment(tracking_number: str, courier: str | None = None) -> TrackingV1:
    try:
        setup = get_carrier_setup()
        return setup.tracker.track(tracking_number, courier)
    except Exception as e:
        raise_carrier_http_error(e)
