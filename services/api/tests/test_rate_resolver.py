from __future__ import annotations

import random
import threading
import time
from collections.abc import Iterator

import pytest
from packages.shared.schemas.shipping_v1 import ParcelItemV1, RateLocationV1
from services.api.app.services.carrier_base import (
    LANE_DOMESTIC,
    LANE_INTERNATIONAL,
    CarrierRequestError,
    ProviderRates,
    RateRequest,
)
from services.api.app.services.carrier_estimated import (
    DomesticEstimatedProvider,
    InternationalEstimatedProvider,
)
from services.api.app.services.quote_normalizer import normalize_quotes
from services.api.app.services.rate_resolver import (
    NoQuotesAvailable,
    RateResolution,
    ShippingRateResolver,
    lane_for,
    rank_quotes,
)


class _FakeProvider:
    def __init__(
        self,
        name: str,
        rows: list[dict],
        *,
        lanes: tuple[str, ...] = (LANE_DOMESTIC,),
        estimated: bool = False,
        delay_s: float = 0.0,
        exc: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.name = name
        self.lanes = frozenset(lanes)
        self.estimated = estimated
        self.calls = 0
        self.started = threading.Event()
        self._rows = rows
        self._delay_s = delay_s
        self._exc = exc
        self._gate = gate

    def get_rates(self, request: RateRequest) -> ProviderRates:
        del request
        self.calls += 1
        self.started.set()
        if self._gate is not None:
            self._gate.wait(5)
        if self._delay_s:
            time.sleep(self._delay_s)
        if self._exc is not None:
            raise self._exc
        return ProviderRates(provider=self.name, rows=[dict(r) for r in self._rows])


def _row(courier: str, service: str, price: int, min_day: int = 1, max_day: int = 3) -> dict:
    return {
        "courier_code": courier,
        "courier_name": courier.upper(),
        "courier_service_code": service,
        "courier_service_name": service.title(),
        "price": price,
        "min_day": min_day,
        "max_day": max_day,
    }


def _request(country: str = "ID", postal_code: str = "12190") -> RateRequest:
    return RateRequest(
        origin=RateLocationV1(postal_code="40115", country="ID"),
        destination=RateLocationV1(postal_code=postal_code, country=country),
        manifest=(ParcelItemV1(name="Shirt", weight=1000, quantity=2),),
    )


@pytest.fixture()
def resolvers() -> Iterator[list[ShippingRateResolver]]:
    created: list[ShippingRateResolver] = []
    yield created
    for r in created:
        r.close()


def _resolver(
    created: list[ShippingRateResolver], providers: list, timeout_s: float = 2.0
) -> ShippingRateResolver:
    resolver = ShippingRateResolver(providers, home_country="ID", provider_timeout_s=timeout_s)
    created.append(resolver)
    return resolver


def test_lane_for() -> None:
    assert lane_for("ID", "id", "ID") == LANE_DOMESTIC
    assert lane_for("ID", "US", "ID") == LANE_INTERNATIONAL
    assert lane_for("SG", "SG", "ID") == LANE_INTERNATIONAL


def test_domestic_request_only_uses_domestic_providers(resolvers) -> None:
    domestic = _FakeProvider("domestic-live", [_row("jne", "reg", 18000), _row("jnt", "ez", 15000)])
    international = _FakeProvider(
        "international-live", [_row("dhl", "express", 90000)], lanes=(LANE_INTERNATIONAL,)
    )
    resolver = _resolver(resolvers, [domestic, international])

    outcome = resolver.resolve(_request("ID"))

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "domestic-live"
    assert [q.quote_id for q in outcome.quotes] == [
        "domestic-live:jnt:ez",
        "domestic-live:jne:reg",
    ]
    assert outcome.cheapest.price.amount == 15000
    assert international.calls == 0


def test_domestic_estimates_cover_indonesian_destination(resolvers) -> None:
    resolver = _resolver(
        resolvers, [DomesticEstimatedProvider(), InternationalEstimatedProvider()]
    )

    outcome = resolver.resolve(_request("ID"))

    assert isinstance(outcome, RateResolution)
    assert outcome.quotes
    assert {q.provider for q in outcome.quotes} == {"indonesia-estimated"}
    assert all(q.price.currency == "IDR" for q in outcome.quotes)
    assert outcome.quotes == tuple(rank_quotes(outcome.quotes))


def test_international_request_gets_international_quotes(resolvers) -> None:
    resolver = _resolver(
        resolvers, [DomesticEstimatedProvider(), InternationalEstimatedProvider()]
    )

    outcome = resolver.resolve(_request("US", "94103"))

    assert isinstance(outcome, RateResolution)
    assert {q.provider for q in outcome.quotes} == {"international-estimated"}
    assert {q.courier_code for q in outcome.quotes} == {"dhl", "fedex", "pos"}
    # 2 kg at the US economy base rate.
    assert outcome.cheapest.price.amount == 150000


def test_ranking_breaks_ties_by_eta_then_codes() -> None:
    provider = _FakeProvider(
        "p",
        [
            _row("sicepat", "reg", 15000, min_day=2),
            _row("jne", "yes", 15000, min_day=1),
            _row("anteraja", "reg", 15000, min_day=2),
            _row("anteraja", "eco", 15000, min_day=2),
            _row("pos", "kilat", 9000, min_day=5),
        ],
    )
    rows = provider.get_rates(_request()).rows
    random.Random(7).shuffle(rows)

    ranked = rank_quotes(normalize_quotes(rows, "p"))

    assert [(q.courier_code, q.service_code) for q in ranked] == [
        ("pos", "kilat"),
        ("jne", "yes"),
        ("anteraja", "eco"),
        ("anteraja", "reg"),
        ("sicepat", "reg"),
    ]


def test_estimated_fallback_only_when_live_has_no_quotes(resolvers) -> None:
    live = _FakeProvider("live", [_row("jne", "reg", 18000)])
    fallback = _FakeProvider("fallback", [_row("est", "reg", 1000)], estimated=True)
    resolver = _resolver(resolvers, [live, fallback])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "live"
    assert fallback.calls == 0


def test_failing_live_provider_falls_back_to_estimates(resolvers) -> None:
    live = _FakeProvider("live", [], exc=CarrierRequestError("live", "boom", status_code=500))
    resolver = _resolver(resolvers, [live, DomesticEstimatedProvider()])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "indonesia-estimated"
    assert [f.provider for f in outcome.failures] == ["live"]
    assert not outcome.failures[0].timed_out


def test_slow_provider_is_reported_as_timed_out(resolvers) -> None:
    slow = _FakeProvider("slow", [_row("jne", "reg", 1)], delay_s=1.0)
    fast = _FakeProvider("fast", [_row("jnt", "reg", 14000)])
    resolver = _resolver(resolvers, [slow, fast], timeout_s=0.1)

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "fast"
    assert len(outcome.failures) == 1
    assert outcome.failures[0].provider == "slow"
    assert outcome.failures[0].timed_out


def test_unexpected_provider_error_is_absorbed(resolvers) -> None:
    broken = _FakeProvider("broken", [], exc=RuntimeError("kaboom"))
    working = _FakeProvider("working", [_row("jne", "reg", 18000)])
    resolver = _resolver(resolvers, [broken, working])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "working"
    assert outcome.failures[0].error == "kaboom"


def test_malformed_rows_are_dropped(resolvers) -> None:
    provider = _FakeProvider(
        "p",
        [
            _row("jne", "reg", 18000),
            {"courier_code": "jnt", "price": None},
            {"price": 5000},
        ],
    )
    resolver = _resolver(resolvers, [provider])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert [q.quote_id for q in outcome.quotes] == ["p:jne:reg"]


def test_all_providers_failing_yields_no_quotes(resolvers) -> None:
    a = _FakeProvider("a", [], exc=CarrierRequestError("a", "down"))
    b = _FakeProvider("b", [], exc=CarrierRequestError("b", "down"))
    resolver = _resolver(resolvers, [a, b])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, NoQuotesAvailable)
    assert outcome.reason == "All shipping providers failed"
    assert sorted(f.provider for f in outcome.failures) == ["a", "b"]


def test_no_provider_for_lane_yields_no_quotes(resolvers) -> None:
    resolver = _resolver(resolvers, [_FakeProvider("domestic-only", [_row("jne", "reg", 1)])])

    outcome = resolver.resolve(_request("US", "94103"))

    assert isinstance(outcome, NoQuotesAvailable)
    assert outcome.reason == "Shipping is not available for this address"
    assert outcome.failures == ()


def test_identical_requests_share_one_provider_call(resolvers) -> None:
    provider = _FakeProvider("p", [_row("jne", "reg", 18000)])
    resolver = _resolver(resolvers, [provider])

    first = resolver.resolve(_request(postal_code="12190"))
    second = resolver.resolve(_request(postal_code=" 12190 "))

    assert provider.calls == 1
    assert first is second


def test_new_key_supersedes_last_resolution(resolvers) -> None:
    provider = _FakeProvider("p", [_row("jne", "reg", 18000)])
    resolver = _resolver(resolvers, [provider])

    resolver.resolve(_request(postal_code="12190"))
    resolver.resolve(_request(postal_code="60111"))
    resolver.resolve(_request(postal_code="12190"))

    assert provider.calls == 3


def test_failures_are_not_reused(resolvers) -> None:
    provider = _FakeProvider("p", [], exc=CarrierRequestError("p", "down"))
    resolver = _resolver(resolvers, [provider])

    assert isinstance(resolver.resolve(_request()), NoQuotesAvailable)
    assert isinstance(resolver.resolve(_request()), NoQuotesAvailable)
    assert provider.calls == 2


def test_concurrent_identical_requests_join_in_flight_call(resolvers) -> None:
    gate = threading.Event()
    provider = _FakeProvider("p", [_row("jne", "reg", 18000)], gate=gate)
    resolver = _resolver(resolvers, [provider])

    results: list = []

    def _resolve() -> None:
        results.append(resolver.resolve(_request()))

    first = threading.Thread(target=_resolve)
    first.start()
    assert provider.started.wait(2)

    second = threading.Thread(target=_resolve)
    second.start()
    time.sleep(0.05)
    gate.set()

    first.join(2)
    second.join(2)

    assert provider.calls == 1
    assert len(results) == 2
    assert results[0] is results[1]


def test_out_of_range_price_keeps_other_quotes(resolvers) -> None:
    provider = _FakeProvider(
        "live", [{"courier_code": "jnt", "price": "1e30"}, _row("jne", "reg", 15000)]
    )
    resolver = _resolver(resolvers, [provider, DomesticEstimatedProvider()])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert [q.quote_id for q in outcome.quotes] == ["live:jne:reg"]
    assert outcome.failures == ()


class _GarbledProvider:
    name = "garbled"
    lanes = frozenset({LANE_DOMESTIC})
    estimated = False

    def get_rates(self, request: RateRequest) -> ProviderRates:
        del request
        return ProviderRates(provider=self.name, rows=None)  # type: ignore[arg-type]


def test_unreadable_rows_count_as_provider_failure(resolvers) -> None:
    resolver = _resolver(resolvers, [_GarbledProvider(), DomesticEstimatedProvider()])

    outcome = resolver.resolve(_request())

    assert isinstance(outcome, RateResolution)
    assert outcome.provider == "indonesia-estimated"
    assert [f.provider for f in outcome.failures] == ["garbled"]
