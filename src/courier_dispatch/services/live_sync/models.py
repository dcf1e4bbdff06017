"""Live map snapshot models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ...models.domain import LatLng, valid_lat_lng


@dataclass(frozen=True, slots=True)
class LiveMapPoint:
    id: str
    name: str
    lat: float
    lng: float


def normalize_points(raw_items: Any, default_name: str) -> tuple[LiveMapPoint, ...]:
    """Keep well-formed points with finite coordinates, sorted by id."""

    if not isinstance(raw_items, list):
        return tuple()
    points: list[LiveMapPoint] = []
    for item in raw_items:
        if not isinstance(item, dict) or not isinstance(item.get("id"), str):
            continue
        position = valid_lat_lng(item.get("lat"), item.get("lng"))
        if position is None:
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            name = default_name
        points.append(LiveMapPoint(id=item["id"], name=name, lat=position.lat, lng=position.lng))
    return tuple(sorted(points, key=lambda p: p.id))


@dataclass(frozen=True, slots=True)
class LiveSnapshot:
    couriers: tuple[LiveMapPoint, ...]
    clients: tuple[LiveMapPoint, ...]
    version_token: Optional[str] = None
    server_time: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict[str, Any], version_token: Optional[str] = None) -> "LiveSnapshot":
        token = version_token or data.get("versionToken")
        server_time = data.get("serverTime")
        return cls(
            couriers=normalize_points(data.get("couriers"), "Courier"),
            clients=normalize_points(data.get("clients"), "Client"),
            version_token=token if isinstance(token, str) else None,
            server_time=server_time if isinstance(server_time, str) else None,
        )

    def same_positions(self, other: Optional["LiveSnapshot"]) -> bool:
        """Structural comparison of the displayed lists, ignoring token and time."""
        return other is not None and self.couriers == other.couriers and self.clients == other.clients

    def courier_positions(self) -> dict[str, LatLng]:
        return {point.id: LatLng(point.lat, point.lng) for point in self.couriers}
