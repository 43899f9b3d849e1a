from __future__ import annotations

import json

import httpx
import pytest
from packages.shared.schemas.order_v1 import (
    OrderLineV1,
    OrderStatusV1,
    PaymentStatusV1,
    ShippingAddressV1,
)
from packages.shared.schemas.shipping_v1 import (
    DeliveryEstimateV1,
    MoneyV1,
    ParcelItemV1,
    RateLocationV1,
    ShippingQuoteV1,
    TrackingV1,
)
from services.api.app.models.order import OrderOut
from services.api.app.services.biteship_client import BiteshipClient, _BiteshipConfig
from services.api.app.services.carrier_base import (
    CarrierNotConfiguredError,
    CarrierRequestError,
    CarrierTimeoutError,
    RateRequest,
    WaybillError,
)
from services.api.app.services.fedex_client import FedExClient, _FedExConfig
from services.api.app.services.quote_normalizer import normalize_quotes
from services.api.app.services.shipment_tracking import (
    RoutingShipmentTracker,
    is_fedex_tracking_number,
)


def _biteship(handler) -> BiteshipClient:
    return BiteshipClient(
        _BiteshipConfig(
            base_url="https://biteship.test",
            api_key="bs-key",
            couriers="jne,jnt",
            timeout_s=3,
            origin_contact_name="Warehouse",
            origin_contact_phone="0220000",
            origin_address="Jl. Asia Afrika 1",
            origin_postal_code="40115",
        ),
        transport=httpx.MockTransport(handler),
    )


def _fedex(handler, clock=lambda: 0.0) -> FedExClient:
    return FedExClient(
        _FedExConfig(
            base_url="https://fedex.test",
            api_key="fx-key",
            secret_key="fx-secret",
            account_number="740561073",
            timeout_s=3,
        ),
        transport=httpx.MockTransport(handler),
        clock=clock,
    )


def _request(country: str = "ID", postal_code: str = "12190") -> RateRequest:
    return RateRequest(
        origin=RateLocationV1(postal_code="40115", country="ID"),
        destination=RateLocationV1(postal_code=postal_code, country=country),
        manifest=(ParcelItemV1(name="Shirt", weight=1000, quantity=2, value=198000),),
    )


def _order() -> OrderOut:
    return OrderOut(
        id="ord-1",
        user_id="u-1",
        status=OrderStatusV1.PACKED,
        payment_status=PaymentStatusV1.PAID,
        currency="IDR",
        total_amount=216000,
        shipping_cost=18000,
        items=[OrderLineV1(variant_id="var-1", name="T-Shirt", quantity=2, unit_price=99000)],
        address=ShippingAddressV1(
            recipient_name="Budi",
            phone="0812",
            address_line="Jl. Sudirman 1",
            city="Jakarta",
            postal_code="12190",
            country="ID",
        ),
        shipping_quote=_quote(),
        created_at="2026-01-01T00:00:00",
        updated_at="2026-01-01T00:00:00",
    )


def _quote() -> ShippingQuoteV1:
    return ShippingQuoteV1(
        courier_code="jne",
        courier_name="JNE",
        service_code="reg",
        service_name="JNE Reguler",
        price=MoneyV1(amount=18000),
        eta=DeliveryEstimateV1(min_days=2, max_days=3),
        provider="biteship",
    )


def test_biteship_rates_request_and_rows() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "pricing": [
                    {
                        "courier_code": "jne",
                        "courier_name": "JNE",
                        "courier_service_code": "reg",
                        "courier_service_name": "Reguler",
                        "duration": "2 - 3 days",
                        "price": 18000,
                    }
                ],
            },
        )

    rates = _biteship(handler).get_rates(_request())

    assert seen["path"] == "/v1/rates/couriers"
    assert seen["auth"] == "Bearer bs-key"
    assert seen["body"]["origin_postal_code"] == 40115
    assert seen["body"]["destination_postal_code"] == 12190
    assert seen["body"]["couriers"] == "jne,jnt"
    assert seen["body"]["items"][0]["weight"] == 1000
    assert seen["body"]["items"][0]["length"] == 10

    quotes = normalize_quotes(rates.rows, rates.provider, rates.currency)
    assert [q.quote_id for q in quotes] == ["biteship:jne:reg"]
    assert (quotes[0].eta.min_days, quotes[0].eta.max_days) == (2, 3)


def test_biteship_error_response_raises_request_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"success": False, "error": "Invalid postal code"})

    with pytest.raises(CarrierRequestError) as exc_info:
        _biteship(handler).get_rates(_request())

    assert exc_info.value.status_code == 400
    assert "Invalid postal code" in str(exc_info.value)


def test_biteship_response_without_pricing_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True})

    with pytest.raises(CarrierRequestError):
        _biteship(handler).get_rates(_request())


def test_biteship_timeout_is_typed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(CarrierTimeoutError):
        _biteship(handler).get_rates(_request())


def test_biteship_create_waybill() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "id": "bs-order-1",
                "courier": {"waybill_id": "JNE1234567", "company": "jne"},
            },
        )

    waybill = _biteship(handler).create_waybill(_order(), _quote())

    assert seen["path"] == "/v1/orders"
    assert seen["body"]["reference_id"] == "ord-1"
    assert seen["body"]["courier_company"] == "jne"
    assert seen["body"]["courier_type"] == "reg"
    assert seen["body"]["destination_postal_code"] == 12190
    assert waybill.tracking_number == "JNE1234567"
    assert waybill.courier == "jne"
    assert waybill.waybill_id == "bs-order-1"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"success": False, "error": "Courier unavailable"}),
        httpx.Response(200, json={"success": True, "courier": {}}),
    ],
)
def test_biteship_waybill_failures_raise_waybill_error(response: httpx.Response) -> None:
    with pytest.raises(WaybillError):
        _biteship(lambda request: response).create_waybill(_order(), _quote())


def test_biteship_tracking() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/trackings/JNE1234567"
        return httpx.Response(
            200,
            json={
                "success": True,
                "waybill_id": "JNE1234567",
                "status": "delivered",
                "courier": {"company": "jne"},
                "history": [
                    {"note": "Picked up", "status": "picked", "updated_at": "2026-01-02"},
                    {"note": "Delivered", "status": "delivered", "updated_at": "2026-01-04"},
                ],
            },
        )

    tracking = _biteship(handler).track("JNE1234567")

    assert tracking.status == "delivered"
    assert tracking.courier == "jne"
    assert [e.status for e in tracking.events] == ["picked", "delivered"]


def test_biteship_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BITESHIP_API_KEY", raising=False)

    with pytest.raises(CarrierNotConfiguredError) as exc_info:
        BiteshipClient.from_env()

    assert exc_info.value.env_var == "BITESHIP_API_KEY"


def _fedex_handler(calls: dict[str, int]):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        calls[path] = calls.get(path, 0) + 1

        if path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})

        assert request.headers["Authorization"] == "Bearer tok"
        if path == "/rate/v1/rates/quotes":
            return httpx.Response(
                200,
                json={
                    "output": {
                        "rateReplyDetails": [
                            {
                                "serviceType": "INTERNATIONAL_PRIORITY",
                                "serviceName": "FedEx International Priority",
                                "ratedShipmentDetails": [
                                    {"totalNetCharge": 45.67, "currency": "USD"}
                                ],
                            },
                            {
                                "serviceType": "INTERNATIONAL_ECONOMY",
                                "serviceName": "FedEx International Economy",
                                "ratedShipmentDetails": [
                                    {"totalNetCharge": 30.1, "currency": "USD"}
                                ],
                            },
                            {"serviceType": "FEDEX_GROUND", "ratedShipmentDetails": []},
                        ]
                    }
                },
            )

        if path == "/track/v1/trackingnumbers":
            return httpx.Response(
                200,
                json={
                    "output": {
                        "completeTrackResults": [
                            {
                                "trackDetails": [
                                    {
                                        "trackingNumber": "123456789012",
                                        "statusCode": "DL",
                                        "statusDescription": "Delivered",
                                        "scanEvents": [
                                            {
                                                "eventType": "DL",
                                                "eventDescription": "Delivered",
                                                "date": "2026-01-05T10:00:00",
                                                "scanLocation": {
                                                    "city": "Austin",
                                                    "stateOrProvinceCode": "TX",
                                                },
                                            }
                                        ],
                                    }
                                ]
                            }
                        ]
                    }
                },
            )

        return httpx.Response(404, json={"errors": [{"message": "not found"}]})

    return handler


def test_fedex_rates_are_flattened_and_priced_in_cents() -> None:
    calls: dict[str, int] = {}

    rates = _fedex(_fedex_handler(calls)).get_rates(_request("US", "94103"))
    quotes = normalize_quotes(rates.rows, rates.provider, rates.currency)

    assert rates.currency == "USD"
    assert [(q.service_code, q.price.amount) for q in quotes] == [
        ("international_priority", 4567),
        ("international_economy", 3010),
    ]
    assert all(q.price.currency == "USD" for q in quotes)
    assert (quotes[0].eta.min_days, quotes[0].eta.max_days) == (2, 5)


def test_fedex_token_is_cached_until_near_expiry() -> None:
    calls: dict[str, int] = {}
    now = [0.0]
    client = _fedex(_fedex_handler(calls), clock=lambda: now[0])

    client.get_rates(_request("US", "94103"))
    client.get_rates(_request("US", "94103"))
    assert calls["/oauth/token"] == 1

    now[0] = 3600 - 300 + 1
    client.get_rates(_request("US", "94103"))
    assert calls["/oauth/token"] == 2
    assert calls["/rate/v1/rates/quotes"] == 3


def test_fedex_error_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return httpx.Response(422, json={"errors": [{"message": "Invalid postal code"}]})

    with pytest.raises(CarrierRequestError) as exc_info:
        _fedex(handler).get_rates(_request("US", "00000"))

    assert exc_info.value.status_code == 422


def test_fedex_tracking_maps_status() -> None:
    tracking = _fedex(_fedex_handler({})).track("123456789012")

    assert tracking.status == "delivered"
    assert tracking.courier == "fedex"
    assert tracking.events[0].location == "Austin, TX"


def test_fedex_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEDEX_API_KEY", "k")
    monkeypatch.setenv("FEDEX_SECRET_KEY", "s")
    monkeypatch.delenv("FEDEX_ACCOUNT_NUMBER", raising=False)

    with pytest.raises(CarrierNotConfiguredError) as exc_info:
        FedExClient.from_env()

    assert exc_info.value.env_var == "FEDEX_ACCOUNT_NUMBER"


@pytest.mark.parametrize(
    ("number", "expected"),
    [
        ("123456789012", True),
        ("12345678901234", True),
        ("1234 5678 9012", True),
        ("1234-5678-9012-34", True),
        ("JNE1234567", False),
        ("12345", False),
    ],
)
def test_is_fedex_tracking_number(number: str, expected: bool) -> None:
    assert is_fedex_tracking_number(number) is expected


class _RecordingTracker:
    def __init__(self, name: str) -> None:
        self.name = name
        self.seen: list[tuple[str, str | None]] = []

    def track(self, tracking_number: str, courier: str | None = None) -> TrackingV1:
        self.seen.append((tracking_number, courier))
        return TrackingV1(tracking_number=tracking_number, courier=self.name, status="in_transit")


def test_routing_tracker() -> None:
    domestic = _RecordingTracker("biteship")
    fedex = _RecordingTracker("fedex")
    tracker = RoutingShipmentTracker(domestic=domestic, fedex=fedex)

    assert tracker.track("123456789012").courier == "fedex"
    assert tracker.track("ABC", courier="FedEx").courier == "fedex"
    assert tracker.track("JNE1234567", courier="jne").courier == "biteship"
    assert domestic.seen == [("JNE1234567", "jne")]
