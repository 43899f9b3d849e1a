from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from packages.shared.schemas.order_v1 import OrderLineV1, ShippingAddressV1
from packages.shared.schemas.shipping_v1 import ParcelItemV1, RateLocationV1
from services.api.app.models.order import OrderOut
from services.api.app.services.checkout_rates import CheckoutRates
from services.api.app.services.order_repository import OrderRepository
from services.api.app.services.rate_resolver import ShippingRateResolver

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """Base class for checkout errors."""


class CheckoutIncompleteError(CheckoutError):
    def __init__(self, missing: str) -> None:
        super().__init__(f"Checkout is missing {missing}")
        self.missing = missing


class CheckoutCurrencyError(CheckoutError):
    def __init__(self, quote_currency: str, store_currency: str) -> None:
        super().__init__(
            f"Shipping is quoted in {quote_currency} but orders are placed in {store_currency}"
        )
        self.quote_currency = quote_currency
        self.store_currency = store_currency


@dataclass(frozen=True, slots=True)
class CartLine:
    variant_id: str
    name: str
    quantity: int
    unit_price: int
    # Grams per unit.
    weight: int = 1000


@dataclass
class CheckoutSession:
    """Cart, destination and shipping choice for one checkout.

    Mutate only through the methods below; each one keeps the rate state in step
    with the inputs it depends on.
    """

    id: str
    user_id: str | None
    rates: CheckoutRates
    lines: list[CartLine] = field(default_factory=list)
    address: ShippingAddressV1 | None = None

    def set_lines(self, lines: Sequence[CartLine]) -> None:
        self.lines = list(lines)
        self.rates.update(manifest=self.manifest())

    def set_destination(self, address: ShippingAddressV1) -> None:
        self.address = address
        self.rates.update(
            destination=RateLocationV1(
                postal_code=address.postal_code,
                country=address.country,
                city=address.city or None,
            )
        )

    def manifest(self) -> list[ParcelItemV1]:
        return [
            ParcelItemV1(
                name=line.name,
                weight=line.weight,
                quantity=line.quantity,
                value=line.unit_price * line.quantity,
            )
            for line in self.lines
        ]

    @property
    def subtotal(self) -> int:
        return sum(line.unit_price * line.quantity for line in self.lines)


def open_session(
    resolver: ShippingRateResolver | Callable[[], ShippingRateResolver],
    origin: RateLocationV1,
    *,
    user_id: str | None,
    lines: Sequence[CartLine],
    address: ShippingAddressV1 | None = None,
    debounce_s: float = 0.5,
) -> CheckoutSession:
    session = CheckoutSession(
        id=uuid4().hex,
        user_id=user_id,
        rates=CheckoutRates(resolver, origin, debounce_s=debounce_s),
    )
    session.set_lines(lines)
    if address is not None:
        session.set_destination(address)
    return session


def place_order(
    repository: OrderRepository,
    session: CheckoutSession,
    *,
    currency: str = "IDR",
) -> OrderOut:
    """Create the order from the session's snapshots. Status starts at unpaid.

    The shipping quote must come from the latest resolution of the session's
    current inputs and be priced in the store currency.
    """

    if not session.lines:
        raise CheckoutIncompleteError("cart items")
    if session.address is None:
        raise CheckoutIncompleteError("a shipping address")

    rates = session.rates.snapshot()
    if not rates.current:
        raise CheckoutIncompleteError("current shipping rates")
    quote = rates.selected
    if quote is None:
        raise CheckoutIncompleteError("a shipping method")
    if quote.price.currency != currency.upper():
        raise CheckoutCurrencyError(quote.price.currency, currency.upper())

    order = repository.create(
        user_id=session.user_id,
        items=[
            OrderLineV1(
                variant_id=line.variant_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in session.lines
        ],
        address=session.address.model_copy(deep=True),
        quote=quote,
        currency=currency.upper(),
    )
    session.rates.close()
    logger.info("Order %s placed from checkout %s", order.id, session.id)
    return order
