from __future__ import annotations

import argparse

from packages.shared.schemas.order_v1 import PaymentStatusV1, ShippingAddressV1
from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.services.carrier_factory import (
    get_carrier_setup,
    origin_location,
    store_currency,
)
from services.api.app.services.checkout import CartLine, open_session, place_order
from services.api.app.services.order_repository import OrderRepository


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo storefront orders")
    parser.add_argument("--user-id", default="u-1")
    parser.add_argument("--postal-code", default="12190")
    parser.add_argument("--country", default="ID")
    parser.add_argument("--orders", type=int, default=2)
    parser.add_argument(
        "--paid",
        action="store_true",
        help="Mark seeded orders as paid so the waybill action is enabled",
    )
    args = parser.parse_args()

    init_db()
    setup = get_carrier_setup()

    address = ShippingAddressV1(
        recipient_name="Demo Customer",
        phone="081234567890",
        address_line="Jl. Jend. Sudirman No. 1",
        city="Jakarta Selatan",
        province="DKI Jakarta",
        postal_code=args.postal_code,
        country=args.country,
    )
    lines = [
        CartLine(
            variant_id="var-tshirt-m", name="T-Shirt (M)", quantity=2, unit_price=99000, weight=250
        ),
        CartLine(
            variant_id="var-mug", name="Ceramic Mug", quantity=1, unit_price=55000, weight=400
        ),
    ]

    db = db_session()
    try:
        repository = OrderRepository(db)
        for _ in range(args.orders):
            session = open_session(
                setup.resolver,
                origin_location(),
                user_id=args.user_id,
                lines=lines,
                address=address,
            )
            session.rates.refresh()
            order = place_order(repository, session, currency=store_currency())
            if args.paid:
                repository.set_payment_status(order.id, PaymentStatusV1.PAID)
            print(
                f"Seeded order={order.id} total={order.total_amount} {order.currency} "
                f"via {order.shipping_quote.quote_id}"
            )
        return 0
    finally:
        db.close()
        setup.resolver.close()


if __name__ == "__main__":
    raise SystemExit(main())
