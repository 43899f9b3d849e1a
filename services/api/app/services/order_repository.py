from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.order_v1 import (
    OrderLineV1,
    OrderStatusV1,
    PaymentStatusV1,
    ShippingAddressV1,
)
from packages.shared.schemas.shipping_v1 import ShippingQuoteV1
from services.api.app.db.models import EventLog, Order, OrderItem
from services.api.app.models.order import OrderOut
from services.api.app.services.carrier_base import Waybill


class OrderRepository:
    """Persistence boundary for orders and their event log."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, order_id: str) -> OrderOut | None:
        row = self._db.get(Order, order_id, populate_existing=True)
        return _to_out(row) if row is not None else None

    def create(
        self,
        *,
        user_id: str | None,
        items: list[OrderLineV1],
        address: ShippingAddressV1,
        quote: ShippingQuoteV1,
        currency: str = "IDR",
    ) -> OrderOut:
        # Amounts are summed as-is; there is no FX conversion.
        if quote.price.currency != currency:
            raise ValueError(
                f"Quote currency {quote.price.currency} does not match order currency {currency}"
            )

        order_id = uuid4().hex
        subtotal = sum(line.line_total for line in items)
        shipping_cost = quote.price.amount

        self._db.add(
            Order(
                id=order_id,
                user_id=user_id,
                status=OrderStatusV1.UNPAID.value,
                payment_status=PaymentStatusV1.UNPAID.value,
                currency=currency,
                total_amount=subtotal + shipping_cost,
                shipping_cost=shipping_cost,
                address_json=address.model_dump(mode="json"),
                shipping_quote_json=quote.model_dump(mode="json"),
            )
        )
        for position, line in enumerate(items):
            self._db.add(
                OrderItem(
                    id=uuid4().hex,
                    order_id=order_id,
                    position=position,
                    variant_id=line.variant_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
            )

        self.log_event(
            order_id,
            EventTypeV1.ORDER_CREATED,
            {"total_amount": subtotal + shipping_cost, "quote_id": quote.quote_id},
            user_id=user_id,
            commit=False,
        )
        self._db.commit()

        order = self.get(order_id)
        assert order is not None
        return order

    def compare_and_set_status(
        self,
        order_id: str,
        *,
        expected: OrderStatusV1,
        target: OrderStatusV1,
        waybill: Waybill | None = None,
    ) -> OrderOut | None:
        """Move `order_id` from `expected` to `target`, or return None if it is no
        longer in `expected`."""

        values: dict = {"status": target.value, "updated_at": datetime.utcnow()}
        if waybill is not None:
            values["tracking_number"] = waybill.tracking_number
            values["courier"] = waybill.courier

        result = self._db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected.value)
            .values(**values)
        )
        if result.rowcount != 1:
            self._db.rollback()
            return None

        self.log_event(
            order_id,
            EventTypeV1.ORDER_STATUS_CHANGED,
            {"from": expected.value, "to": target.value},
            commit=False,
        )
        if waybill is not None:
            self.log_event(
                order_id,
                EventTypeV1.WAYBILL_CREATED,
                {
                    "tracking_number": waybill.tracking_number,
                    "courier": waybill.courier,
                    "waybill_id": waybill.waybill_id,
                },
                commit=False,
            )
        self._db.commit()
        return self.get(order_id)

    def set_payment_status(self, order_id: str, status: PaymentStatusV1) -> OrderOut | None:
        row = self._db.get(Order, order_id, populate_existing=True)
        if row is None:
            return None

        previous = row.payment_status
        if previous != status.value:
            row.payment_status = status.value
            row.updated_at = datetime.utcnow()
            self.log_event(
                order_id,
                EventTypeV1.PAYMENT_STATUS_CHANGED,
                {"from": previous, "to": status.value},
                commit=False,
            )
            self._db.commit()
        return _to_out(row)

    def log_event(
        self,
        order_id: str,
        event_type: EventTypeV1,
        payload: dict,
        *,
        user_id: str | None = None,
        commit: bool = True,
    ) -> None:
        self._db.add(
            EventLog(
                id=uuid4().hex,
                user_id=user_id,
                entity_type=EntityTypeV1.ORDER.value,
                entity_id=order_id,
                event_type=event_type.value,
                event_payload_json=payload,
            )
        )
        if commit:
            self._db.commit()

    def list_events(self, order_id: str) -> list[EventLog]:
        return (
            self._db.query(EventLog)
            .filter(
                EventLog.entity_type == EntityTypeV1.ORDER.value,
                EventLog.entity_id == order_id,
            )
            .order_by(EventLog.created_at.asc())
            .all()
        )


def _to_out(row: Order) -> OrderOut:
    return OrderOut(
        id=row.id,
        user_id=row.user_id,
        status=OrderStatusV1(row.status),
        payment_status=PaymentStatusV1(row.payment_status),
        currency=row.currency,
        total_amount=row.total_amount,
        shipping_cost=row.shipping_cost,
        items=[
            OrderLineV1(
                variant_id=item.variant_id,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in row.items
        ],
        address=ShippingAddressV1.model_validate(row.address_json),
        shipping_quote=ShippingQuoteV1.model_validate(row.shipping_quote_json),
        tracking_number=row.tracking_number,
        courier=row.courier,
        created_at=row.created_at.isoformat(),
        updated_at=row.updated_at.isoformat(),
    )
