"""Storefront API service entrypoint."""

import logging
import os

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.routers.audit import router as audit_router
from services.api.app.routers.checkout import router as checkout_router
from services.api.app.routers.order import router as order_router
from services.api.app.routers.shipping import router as shipping_router

logging.basicConfig(
    level=os.getenv("STOREFRONT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(title="Storefront API")

app.include_router(shipping_router)
app.include_router(checkout_router)
app.include_router(order_router)
app.include_router(audit_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
