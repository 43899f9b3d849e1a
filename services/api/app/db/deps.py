from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from services.api.app.db.database import db_session
from services.api.app.services.order_repository import OrderRepository
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    finally:
        db.close()


def get_order_repository(db: Session = Depends(get_db)) -> OrderRepository:
    return OrderRepository(db)
