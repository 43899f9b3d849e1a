"""Order status lifecycle.

ORDER_FLOW is the single definition of which status may follow which. The
transition validator and the admin display metadata both read it.

    unpaid  -> packed | cancelled
    packed  -> shipped | cancelled     (shipping issues a carrier waybill first)
    shipped -> received
    received, cancelled: terminal

payment_status is read here for display gating only; nothing in this module
writes it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from packages.shared.schemas.events import EventTypeV1
from packages.shared.schemas.order_v1 import OrderStatusV1, PaymentStatusV1
from services.api.app.models.order import OrderOut
from services.api.app.services.carrier_base import CarrierError, Waybill, WaybillIssuer

logger = logging.getLogger(__name__)

ORDER_FLOW: dict[OrderStatusV1, tuple[OrderStatusV1, ...]] = {
    OrderStatusV1.UNPAID: (OrderStatusV1.PACKED, OrderStatusV1.CANCELLED),
    OrderStatusV1.PACKED: (OrderStatusV1.SHIPPED, OrderStatusV1.CANCELLED),
    OrderStatusV1.SHIPPED: (OrderStatusV1.RECEIVED,),
    OrderStatusV1.RECEIVED: (),
    OrderStatusV1.CANCELLED: (),
}

TERMINAL_STATUSES = frozenset(status for status, nxt in ORDER_FLOW.items() if not nxt)


@dataclass(frozen=True, slots=True)
class StatusDisplay:
    label: str
    color: str
    # Label of the admin action that moves an order into this status.
    action_label: str


STATUS_DISPLAY: dict[OrderStatusV1, StatusDisplay] = {
    OrderStatusV1.UNPAID: StatusDisplay("Unpaid", "warning", "Mark Unpaid"),
    OrderStatusV1.PACKED: StatusDisplay("Packed", "primary", "Pack Order"),
    OrderStatusV1.SHIPPED: StatusDisplay("Shipped", "info", "Create Waybill"),
    OrderStatusV1.RECEIVED: StatusDisplay("Received", "success", "Mark Received"),
    OrderStatusV1.CANCELLED: StatusDisplay("Cancelled", "error", "Cancel Order"),
}


def allowed_targets(status: OrderStatusV1) -> tuple[OrderStatusV1, ...]:
    return ORDER_FLOW[status]


def is_terminal(status: OrderStatusV1) -> bool:
    return status in TERMINAL_STATUSES


class TransitionError(Exception):
    """Base class for rejected order transitions."""


class InvalidTransition(TransitionError):
    def __init__(self, from_status: OrderStatusV1, to_status: OrderStatusV1) -> None:
        super().__init__(f"Cannot move order from {from_status.value} to {to_status.value}")
        self.from_status = from_status
        self.to_status = to_status


class ExternalDependencyError(TransitionError):
    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class OrderNotFound(TransitionError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


@dataclass(frozen=True, slots=True)
class TransitionResult:
    order: OrderOut | None
    changed: bool = False
    error: TransitionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> OrderOut:
        if self.error is not None:
            raise self.error
        if self.order is None:
            raise RuntimeError("TransitionResult carries neither an order nor an error")
        return self.order


@dataclass(frozen=True, slots=True)
class OrderAction:
    target: OrderStatusV1
    label: str
    color: str
    enabled: bool
    reason: str | None = None


def available_actions(order: OrderOut) -> list[OrderAction]:
    """Admin actions for an order's current status.

    Creating a waybill for an unpaid order is shown but disabled. That is a
    display rule; transition() itself does not look at payment_status.
    """

    actions: list[OrderAction] = []
    for target in allowed_targets(order.status):
        display = STATUS_DISPLAY[target]
        enabled = True
        reason = None
        if target is OrderStatusV1.SHIPPED and order.payment_status is not PaymentStatusV1.PAID:
            enabled = False
            reason = "Payment has not been settled"
        actions.append(
            OrderAction(
                target=target,
                label=display.action_label,
                color=display.color,
                enabled=enabled,
                reason=reason,
            )
        )
    return actions


class OrderStatusStore(Protocol):
    def get(self, order_id: str) -> OrderOut | None: ...

    def compare_and_set_status(
        self,
        order_id: str,
        *,
        expected: OrderStatusV1,
        target: OrderStatusV1,
        waybill: Waybill | None = None,
    ) -> OrderOut | None: ...

    def log_event(self, order_id: str, event_type: EventTypeV1, payload: dict) -> None: ...


@dataclass(slots=True)
class _LockEntry:
    lock: threading.Lock
    users: int = 0


class OrderLocks:
    """Per-order mutual exclusion within one process."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, order_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(order_id)
            if entry is None:
                entry = self._entries[order_id] = _LockEntry(threading.Lock())
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[order_id]


order_locks = OrderLocks()


class OrderStateMachine:
    def __init__(
        self,
        store: OrderStatusStore,
        waybills: WaybillIssuer,
        *,
        locks: OrderLocks = order_locks,
    ) -> None:
        self._store = store
        self._waybills = waybills
        self._locks = locks

    def transition(self, order: OrderOut, target: OrderStatusV1) -> TransitionResult:
        with self._locks.hold(order.id):
            current = self._store.get(order.id)
            if current is None:
                return TransitionResult(order=None, error=OrderNotFound(order.id))

            # Retried calls land here once the first attempt has committed.
            if target is current.status:
                return TransitionResult(order=current)

            if target not in allowed_targets(current.status):
                return TransitionResult(
                    order=current, error=InvalidTransition(current.status, target)
                )

            waybill: Waybill | None = None
            if target is OrderStatusV1.SHIPPED:
                try:
                    waybill = self._waybills.create_waybill(current, current.shipping_quote)
                except CarrierError as e:
                    logger.warning("Waybill creation failed for order %s: %s", current.id, e)
                    return self._waybill_failed(current, e)
                except Exception as e:
                    logger.exception("Waybill issuer raised unexpectedly for order %s", current.id)
                    return self._waybill_failed(current, e)

            updated = self._store.compare_and_set_status(
                current.id, expected=current.status, target=target, waybill=waybill
            )
            if updated is None:
                # Another process moved the order between our read and write.
                latest = self._store.get(current.id) or current
                if waybill is not None:
                    logger.warning(
                        "Order %s changed concurrently; waybill %s was issued but not recorded",
                        current.id,
                        waybill.tracking_number,
                    )
                if target is latest.status:
                    return TransitionResult(order=latest)
                return TransitionResult(
                    order=latest, error=InvalidTransition(latest.status, target)
                )

            logger.info(
                "Order %s moved %s -> %s", current.id, current.status.value, target.value
            )
            return TransitionResult(order=updated, changed=True)

    def _waybill_failed(self, order: OrderOut, e: Exception) -> TransitionResult:
        detail = str(e) or type(e).__name__
        self._store.log_event(order.id, EventTypeV1.WAYBILL_FAILED, {"error": detail})
        return TransitionResult(
            order=order,
            error=ExternalDependencyError(f"Waybill creation failed: {detail}", cause=e),
        )
