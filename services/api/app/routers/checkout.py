from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_order_repository
from services.api.app.models.checkout import (
    CartLineInput,
    CheckoutDestinationUpdate,
    CheckoutSelectRequest,
    CheckoutSessionCreate,
    CheckoutSessionOut,
)
from services.api.app.models.order import OrderOut
from services.api.app.routers.shipping import raise_carrier_http_error
from services.api.app.services.carrier_factory import (
    get_carrier_setup,
    origin_location,
    rate_debounce_s,
    store_currency,
)
from services.api.app.services.checkout import (
    CartLine,
    CheckoutError,
    CheckoutSession,
    open_session,
    place_order,
)
from services.api.app.services.checkout_rates import UnknownQuote
from services.api.app.services.order_repository import OrderRepository
from services.api.app.services.store import store

router = APIRouter()


@router.post("/v1/checkout/sessions", response_model=CheckoutSessionOut)
def create_checkout_session(payload: CheckoutSessionCreate) -> CheckoutSessionOut:
    try:
        get_carrier_setup()
    except Exception as e:
        raise_carrier_http_error(e)

    session = open_session(
        lambda: get_carrier_setup().resolver,
        origin_location(),
        user_id=payload.user_id,
        lines=[CartLine(**item.model_dump()) for item in payload.items],
        address=payload.address,
        debounce_s=rate_debounce_s(),
    )
    store.save_session(session)

    # The HTTP caller is already debounced client-side; resolve right away.
    session.rates.refresh()
    return _session_out(session)


@router.get("/v1/checkout/sessions/{session_id}", response_model=CheckoutSessionOut)
def get_checkout_session(session_id: str) -> CheckoutSessionOut:
    return _session_out(_get_session(session_id))


@router.post("/v1/checkout/sessions/{session_id}/destination", response_model=CheckoutSessionOut)
def update_checkout_destination(
    session_id: str, payload: CheckoutDestinationUpdate
) -> CheckoutSessionOut:
    session = _get_session(session_id)
    session.set_destination(payload.address)
    session.rates.refresh()
    return _session_out(session)


@router.post("/v1/checkout/sessions/{session_id}/select", response_model=CheckoutSessionOut)
def select_checkout_quote(session_id: str, payload: CheckoutSelectRequest) -> CheckoutSessionOut:
    session = _get_session(session_id)
    try:
        session.rates.select(payload.quote_id)
    except UnknownQuote as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _session_out(session)


@router.post("/v1/checkout/sessions/{session_id}/place", response_model=OrderOut)
def place_checkout_order(
    session_id: str,
    repository: OrderRepository = Depends(get_order_repository),
) -> OrderOut:
    session = _get_session(session_id)
    try:
        order = place_order(repository, session, currency=store_currency())
    except CheckoutError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    store.discard_session(session_id)
    return order


def _get_session(session_id: str) -> CheckoutSession:
    session = store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


def _session_out(session: CheckoutSession) -> CheckoutSessionOut:
    state = session.rates.snapshot()
    shipping_cost = state.selected.price.amount if state.selected else None

    available: bool | None = None
    if state.quotes:
        available = True
    elif state.unavailable is not None:
        available = False

    return CheckoutSessionOut(
        session_id=session.id,
        user_id=session.user_id,
        items=[
            CartLineInput(
                variant_id=line.variant_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                weight=line.weight,
            )
            for line in session.lines
        ],
        address=session.address,
        request_key=state.key.as_string() if state.key else None,
        pending=state.pending,
        shipping_available=available,
        shipping_unavailable_reason=state.unavailable.reason if state.unavailable else None,
        provider=state.provider,
        quotes=list(state.quotes),
        selected=state.selected,
        subtotal=session.subtotal,
        shipping_cost=shipping_cost,
        total=session.subtotal + shipping_cost if shipping_cost is not None else None,
    )
