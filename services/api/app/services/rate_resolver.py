"""Resolve ranked shipping quotes for a checkout.

Providers are chosen by lane (domestic or international), called concurrently
with a bounded timeout, normalized, and ranked. Identical requests share one
provider round trip: an in-flight request with the same key is awaited, and the
most recent successful resolution is reused until a different key replaces it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from packages.shared.schemas.shipping_v1 import ShippingQuoteV1
from services.api.app.services.carrier_base import (
    LANE_DOMESTIC,
    LANE_INTERNATIONAL,
    CarrierError,
    CarrierTimeoutError,
    ProviderRates,
    RateProvider,
    RateRequest,
)
from services.api.app.services.quote_normalizer import normalize_quotes
from services.api.app.services.rate_key import RateRequestKey, build_rate_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    provider: str
    error: str
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class RateResolution:
    key: RateRequestKey
    quotes: tuple[ShippingQuoteV1, ...]
    providers: tuple[str, ...]
    failures: tuple[ProviderFailure, ...] = ()

    @property
    def provider(self) -> str:
        return ",".join(self.providers)

    @property
    def cheapest(self) -> ShippingQuoteV1:
        return self.quotes[0]


@dataclass(frozen=True, slots=True)
class NoQuotesAvailable:
    """Nothing ships to this destination. Returned, never raised."""

    key: RateRequestKey
    reason: str
    failures: tuple[ProviderFailure, ...] = ()


RateOutcome = RateResolution | NoQuotesAvailable


def quote_sort_key(quote: ShippingQuoteV1) -> tuple[int, int, str, str]:
    return (quote.price.amount, quote.eta.min_days, quote.courier_code, quote.service_code)


def rank_quotes(quotes: Sequence[ShippingQuoteV1]) -> list[ShippingQuoteV1]:
    return sorted(quotes, key=quote_sort_key)


def lane_for(origin_country: str, destination_country: str, home_country: str) -> str:
    origin = origin_country.strip().upper()
    destination = destination_country.strip().upper()
    if origin == destination == home_country.strip().upper():
        return LANE_DOMESTIC
    return LANE_INTERNATIONAL


class ShippingRateResolver:
    def __init__(
        self,
        providers: Sequence[RateProvider],
        *,
        home_country: str = "ID",
        provider_timeout_s: float = 10.0,
        max_workers: int = 8,
    ) -> None:
        self._providers = list(providers)
        self._home_country = home_country.strip().upper()
        self._timeout_s = provider_timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rates")

        self._lock = threading.Lock()
        self._inflight: dict[RateRequestKey, Future[RateOutcome]] = {}
        self._last: RateResolution | None = None

    @property
    def home_country(self) -> str:
        return self._home_country

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def resolve(self, request: RateRequest) -> RateOutcome:
        key = build_rate_key(request.origin, request.destination, request.manifest)

        with self._lock:
            if self._last is not None and self._last.key == key:
                logger.debug("Reusing last resolution for %s", key.as_string())
                return self._last

            pending = self._inflight.get(key)
            owner = pending is None
            if pending is None:
                pending = Future()
                self._inflight[key] = pending

        if not owner:
            logger.debug("Joining in-flight resolution for %s", key.as_string())
            return pending.result()

        try:
            outcome = self._resolve_uncached(key, request)
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            pending.set_exception(e)
            raise

        with self._lock:
            self._inflight.pop(key, None)
            # Failures are not memoized so a retry reaches the providers again.
            self._last = outcome if isinstance(outcome, RateResolution) else None
        pending.set_result(outcome)
        return outcome

    def _resolve_uncached(self, key: RateRequestKey, request: RateRequest) -> RateOutcome:
        lane = lane_for(request.origin.country, request.destination.country, self._home_country)
        candidates = [p for p in self._providers if lane in p.lanes]
        live = [p for p in candidates if not p.estimated]
        estimated = [p for p in candidates if p.estimated]

        quotes, used, failures = self._collect(live, request)
        if not quotes and estimated:
            logger.info("No live %s quotes for %s, using estimated rates", lane, key.as_string())
            fallback_quotes, fallback_used, fallback_failures = self._collect(estimated, request)
            quotes += fallback_quotes
            used += fallback_used
            failures += fallback_failures

        if not quotes:
            reason = (
                "All shipping providers failed"
                if failures
                else "Shipping is not available for this address"
            )
            logger.warning("No quotes for %s: %s", key.as_string(), reason)
            return NoQuotesAvailable(key=key, reason=reason, failures=tuple(failures))

        ranked = rank_quotes(quotes)
        logger.info(
            "Resolved %d quote(s) for %s from %s", len(ranked), key.as_string(), ",".join(used)
        )
        return RateResolution(
            key=key,
            quotes=tuple(ranked),
            providers=tuple(used),
            failures=tuple(failures),
        )

    def _collect(
        self,
        providers: Sequence[RateProvider],
        request: RateRequest,
    ) -> tuple[list[ShippingQuoteV1], list[str], list[ProviderFailure]]:
        quotes: list[ShippingQuoteV1] = []
        used: list[str] = []
        failures: list[ProviderFailure] = []
        if not providers:
            return quotes, used, failures

        futures = {self._executor.submit(p.get_rates, request): p for p in providers}
        done, _ = wait(futures, timeout=self._timeout_s)

        for future, provider in futures.items():
            if future not in done:
                future.cancel()
                logger.warning("Provider %s timed out after %ss", provider.name, self._timeout_s)
                failures.append(
                    ProviderFailure(provider.name, f"timed out after {self._timeout_s}s", True)
                )
                continue

            try:
                rates: ProviderRates = future.result()
                normalized = normalize_quotes(rates.rows, rates.provider, rates.currency)
            except CarrierError as e:
                logger.warning("Provider %s failed: %s", provider.name, e)
                failures.append(
                    ProviderFailure(provider.name, str(e), isinstance(e, CarrierTimeoutError))
                )
                continue
            except Exception as e:
                logger.exception("Provider %s raised unexpectedly", provider.name)
                failures.append(ProviderFailure(provider.name, str(e) or type(e).__name__))
                continue

            if normalized:
                quotes.extend(normalized)
                used.append(rates.provider)

        return quotes, used, failures
