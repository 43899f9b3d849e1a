from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from services.api.app.db.deps import get_order_repository
from services.api.app.models.order import (
    OrderActionOut,
    OrderActionsResponse,
    OrderOut,
    OrderTransitionRequest,
    OrderTransitionResponse,
    PaymentStatusOut,
    PaymentStatusUpdate,
)
from services.api.app.routers.shipping import raise_carrier_http_error
from services.api.app.services.carrier_factory import get_carrier_setup
from services.api.app.services.order_repository import OrderRepository
from services.api.app.services.order_state import (
    STATUS_DISPLAY,
    ExternalDependencyError,
    InvalidTransition,
    OrderNotFound,
    OrderStateMachine,
    TransitionError,
    available_actions,
    is_terminal,
)

router = APIRouter()


def _raise_transition_http_error(e: TransitionError) -> None:
    if isinstance(e, OrderNotFound):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, InvalidTransition):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, ExternalDependencyError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    repository: OrderRepository = Depends(get_order_repository),
) -> OrderOut:
    return _get_order(repository, order_id)


@router.post("/v1/orders/{order_id}/status", response_model=OrderTransitionResponse)
def transition_order(
    order_id: str,
    payload: OrderTransitionRequest,
    repository: OrderRepository = Depends(get_order_repository),
) -> OrderTransitionResponse:
    order = _get_order(repository, order_id)

    try:
        setup = get_carrier_setup()
    except Exception as e:
        raise_carrier_http_error(e)

    machine = OrderStateMachine(repository, setup.waybills)
    result = machine.transition(order, payload.status)
    if result.error is not None:
        _raise_transition_http_error(result.error)

    return OrderTransitionResponse(order=result.unwrap(), changed=result.changed)


@router.get("/v1/orders/{order_id}/actions", response_model=OrderActionsResponse)
def get_order_actions(
    order_id: str,
    repository: OrderRepository = Depends(get_order_repository),
) -> OrderActionsResponse:
    order = _get_order(repository, order_id)
    display = STATUS_DISPLAY[order.status]

    return OrderActionsResponse(
        order_id=order.id,
        status=order.status,
        status_label=display.label,
        status_color=display.color,
        terminal=is_terminal(order.status),
        actions=[
            OrderActionOut(
                target=a.target,
                label=a.label,
                color=a.color,
                enabled=a.enabled,
                reason=a.reason,
            )
            for a in available_actions(order)
        ],
    )


@router.get("/v1/orders/{order_id}/payment-status", response_model=PaymentStatusOut)
def get_payment_status(
    order_id: str,
    repository: OrderRepository = Depends(get_order_repository),
) -> PaymentStatusOut:
    order = _get_order(repository, order_id)
    return PaymentStatusOut(order_id=order.id, payment_status=order.payment_status)


@router.post("/v1/orders/{order_id}/payment-status", response_model=PaymentStatusOut)
def record_payment_status(
    order_id: str,
    payload: PaymentStatusUpdate,
    repository: OrderRepository = Depends(get_order_repository),
) -> PaymentStatusOut:
    """Called by the payment collaborator once a capture settles."""

    order = repository.set_payment_status(order_id, payload.payment_status)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return PaymentStatusOut(order_id=order.id, payment_status=order.payment_status)


def _get_order(repository: OrderRepository, order_id: str) -> OrderOut:
    order = repository.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
