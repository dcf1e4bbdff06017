"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from ...models.domain import LatLng


class RouteSourceKind(str, Enum):
    REMOTE = "remote"
    HEURISTIC = "heuristic"
    NONE = "none"


@dataclass(slots=True)
class RouteStop:
    order_id: str
    lat: float
    lng: float

    @property
    def position(self) -> LatLng:
        return LatLng(self.lat, self.lng)


@dataclass(slots=True)
class RouteRequest:
    container_id: str
    start_point: Optional[LatLng]
    stops: List[RouteStop]


@dataclass(slots=True)
class RouteResult:
    container_id: str
    ordered_ids: List[str]
    polyline: Optional[List[LatLng]] = None
    duration_estimate_seconds: Optional[float] = None
    source: RouteSourceKind = RouteSourceKind.NONE
    approximate: bool = False
    distance_km: Optional[float] = field(default=None)

    def without_geometry(self) -> "RouteResult":
        """Copy that no longer claims a polyline or duration for the current order."""
        return replace(self, polyline=None, duration_estimate_seconds=None, distance_km=None)
