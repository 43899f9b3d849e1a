"""Debounced shipping-rate state for one checkout.

Input changes (destination, manifest) are coalesced over a quiescence window
before a resolution is started. Every outcome is tagged with the key it was
computed for, and only an outcome whose key is still current is applied, so the
latest input always wins without cancelling requests already sent.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from packages.shared.schemas.shipping_v1 import ParcelItemV1, RateLocationV1, ShippingQuoteV1
from services.api.app.services.carrier_base import RateRequest
from services.api.app.services.rate_key import RateRequestKey, build_rate_key
from services.api.app.services.rate_resolver import (
    NoQuotesAvailable,
    RateOutcome,
    RateResolution,
    ShippingRateResolver,
)

logger = logging.getLogger(__name__)


class UnknownQuote(LookupError):
    def __init__(self, quote_id: str) -> None:
        super().__init__(f"Quote {quote_id!r} is not in the current rate set; re-resolve rates")
        self.quote_id = quote_id


@dataclass(frozen=True, slots=True)
class RateState:
    key: RateRequestKey | None
    pending: bool
    quotes: tuple[ShippingQuoteV1, ...]
    selected: ShippingQuoteV1 | None
    unavailable: NoQuotesAvailable | None
    provider: str | None
    # Key the quotes and selection were resolved for.
    quotes_key: RateRequestKey | None = None

    @property
    def current(self) -> bool:
        return not self.pending and self.key is not None and self.quotes_key == self.key


class CheckoutRates:
    def __init__(
        self,
        resolver: ShippingRateResolver | Callable[[], ShippingRateResolver],
        origin: RateLocationV1,
        *,
        debounce_s: float = 0.5,
    ) -> None:
        self._resolver = resolver
        self._origin = origin
        self._debounce_s = debounce_s

        self._lock = threading.RLock()
        self._idle = threading.Event()
        self._idle.set()
        self._timer: threading.Timer | None = None
        self._generation = 0

        self._destination: RateLocationV1 | None = None
        self._manifest: tuple[ParcelItemV1, ...] = ()
        self._current_key: RateRequestKey | None = None

        self._quotes: tuple[ShippingQuoteV1, ...] = ()
        self._selected: ShippingQuoteV1 | None = None
        self._unavailable: NoQuotesAvailable | None = None
        self._provider: str | None = None
        self._quotes_key: RateRequestKey | None = None

    def update(
        self,
        *,
        destination: RateLocationV1 | None = None,
        manifest: Sequence[ParcelItemV1] | None = None,
    ) -> RateRequestKey | None:
        """Record new inputs and schedule a resolution after the quiet period."""

        with self._lock:
            if destination is not None:
                self._destination = destination
            if manifest is not None:
                self._manifest = tuple(manifest)

            request = self._request()
            if request is None:
                return None

            key = build_rate_key(request.origin, request.destination, request.manifest)
            if key == self._current_key:
                return key

            self._current_key = key
            self._generation += 1
            self._idle.clear()
            if self._timer is not None:
                self._timer.cancel()

            self._timer = threading.Timer(
                self._debounce_s, self._run, args=(request, key, self._generation)
            )
            self._timer.daemon = True
            self._timer.start()
            return key

    def refresh(self) -> RateOutcome | None:
        """Resolve the current inputs now, skipping the quiet period."""

        with self._lock:
            request = self._request()
            if request is None:
                return None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            key = build_rate_key(request.origin, request.destination, request.manifest)
            self._current_key = key
            self._generation += 1
            generation = self._generation
            self._idle.clear()

        try:
            outcome = self._active_resolver().resolve(request)
        except Exception:
            self._settle(generation)
            raise

        self._apply(key, generation, outcome)
        return outcome

    def wait(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._idle.set()

    def select(self, quote_id: str) -> ShippingQuoteV1:
        with self._lock:
            for quote in self._quotes:
                if quote.quote_id == quote_id:
                    self._selected = quote
                    return quote
        raise UnknownQuote(quote_id)

    @property
    def selected(self) -> ShippingQuoteV1 | None:
        with self._lock:
            return self._selected

    def snapshot(self) -> RateState:
        with self._lock:
            return RateState(
                key=self._current_key,
                pending=not self._idle.is_set(),
                quotes=self._quotes,
                selected=self._selected,
                unavailable=self._unavailable,
                provider=self._provider,
                quotes_key=self._quotes_key,
            )

    def _request(self) -> RateRequest | None:
        if self._destination is None or not self._manifest:
            return None
        return RateRequest(
            origin=self._origin, destination=self._destination, manifest=self._manifest
        )

    def _run(self, request: RateRequest, key: RateRequestKey, generation: int) -> None:
        try:
            outcome = self._active_resolver().resolve(request)
        except Exception:
            logger.exception("Rate resolution failed for %s", key.as_string())
            self._settle(generation)
            return

        self._apply(key, generation, outcome)

    def _apply(self, key: RateRequestKey, generation: int, outcome: RateOutcome) -> None:
        with self._lock:
            if key != self._current_key:
                logger.debug("Dropping stale rates for %s", key.as_string())
                return

            if isinstance(outcome, RateResolution):
                self._quotes = outcome.quotes
                self._unavailable = None
                self._provider = outcome.provider
                ids = {q.quote_id for q in outcome.quotes}
                if self._selected is None or self._selected.quote_id not in ids:
                    self._selected = outcome.cheapest
                else:
                    # Keep the user's choice, refreshed to the new price.
                    self._selected = next(
                        q for q in outcome.quotes if q.quote_id == self._selected.quote_id
                    )
            else:
                self._quotes = ()
                self._selected = None
                self._unavailable = outcome
                self._provider = None

            self._quotes_key = key
            if generation == self._generation:
                self._idle.set()

    def _active_resolver(self) -> ShippingRateResolver:
        # A callable is looked up per request so a rebuilt carrier setup is picked up.
        if callable(self._resolver):
            return self._resolver()
        return self._resolver

    def _settle(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self._idle.set()
