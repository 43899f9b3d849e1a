from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1, EventV1
from services.api.app.db.deps import get_order_repository
from services.api.app.services.order_repository import OrderRepository

router = APIRouter()


@router.get("/v1/orders/{order_id}/events", response_model=list[EventV1])
def list_order_events(
    order_id: str,
    repository: OrderRepository = Depends(get_order_repository),
) -> list[EventV1]:
    if repository.get(order_id) is None:
        raise HTTPException(status_code=404, detail="Order not found")

    return [
        EventV1(
            id=e.id,
            user_id=e.user_id,
            entity_type=EntityTypeV1(e.entity_type),
            entity_id=e.entity_id,
            event_type=EventTypeV1(e.event_type),
            payload=e.event_payload_json or {},
            created_at=e.created_at.isoformat(),
        )
        for e in repository.list_events(order_id)
    ]
