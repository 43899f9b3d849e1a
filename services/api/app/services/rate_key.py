from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from packages.shared.schemas.shipping_v1 import ParcelItemV1, RateLocationV1


@dataclass(frozen=True, slots=True)
class RateRequestKey:
    """Identity of a shipping-rate request.

    Two requests with equal keys are the same request for de-duplication purposes.
    The key is never persisted and carries no expiry.
    """

    origin_postal_code: str
    origin_country: str
    destination_postal_code: str
    destination_country: str
    total_weight: int
    item_count: int

    def as_string(self) -> str:
        return (
            f"{self.origin_country}:{self.origin_postal_code}"
            f">{self.destination_country}:{self.destination_postal_code}"
            f"/{self.total_weight}g/{self.item_count}"
        )


def normalize_postal_code(value: str) -> str:
    return "".join(value.split()).upper()


def normalize_country(value: str) -> str:
    return value.strip().upper()


def total_weight(manifest: Sequence[ParcelItemV1]) -> int:
    return sum(item.weight * item.quantity for item in manifest)


def build_rate_key(
    origin: RateLocationV1,
    destination: RateLocationV1,
    manifest: Sequence[ParcelItemV1],
) -> RateRequestKey:
    return RateRequestKey(
        origin_postal_code=normalize_postal_code(origin.postal_code),
        origin_country=normalize_country(origin.country),
        destination_postal_code=normalize_postal_code(destination.postal_code),
        destination_country=normalize_country(destination.country),
        total_weight=total_weight(manifest),
        item_count=len(manifest),
    )
