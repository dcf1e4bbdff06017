"""Domain models for orders, couriers and coordinates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

UNASSIGNED = "unassigned"


@dataclass(frozen=True, slots=True)
class LatLng:
    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


class Resolution(str, Enum):
    """Non-coordinate outcomes of resolving an order's destination."""

    PENDING = "pending"
    UNRESOLVED = "unresolved"


ResolvedCoordinate = Union[LatLng, Resolution]


def valid_lat_lng(lat: object, lng: object) -> Optional[LatLng]:
    """Return a LatLng when both values are finite and inside the WGS84 ranges."""

    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return None
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lng_f = float(lng)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return None
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lng_f <= 180.0):
        return None
    return LatLng(lat_f, lng_f)


@dataclass(slots=True)
class Order:
    """A delivery order as loaded from the order subsystem."""

    id: str
    order_number: int
    delivery_address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    courier_id: Optional[str] = None
    status: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def persisted_position(self) -> Optional[LatLng]:
        return valid_lat_lng(self.latitude, self.longitude)


@dataclass(slots=True)
class Courier:
    """A courier with an optional last known live position."""

    id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def position(self) -> Optional[LatLng]:
        return valid_lat_lng(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class AssignmentUpdate:
    """One entry of the save payload."""

    order_id: str
    order_number: int
    courier_id: Optional[str]

    def to_payload(self) -> dict:
        return {
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "courierId": self.courier_id,
        }
