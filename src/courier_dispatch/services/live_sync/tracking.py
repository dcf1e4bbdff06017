"""Live route tracking against the optimized courier polylines.

Each tracked courier keeps the baseline polyline of its last planned route.
Every live position update trims the visible part of that baseline to start
at the courier's projection onto it, as long as the courier is within the
trim distance. A courier farther than the deviation threshold from its
baseline is reported for a reroute, at most once per cooldown period.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ...config import settings
from ...models.domain import LatLng
from ..geospatial import distance_km

# Metres per degree, used for the local planar projection of one segment.
_METERS_PER_DEG_LAT = 110540.0
_METERS_PER_DEG_LNG = 111320.0
_SAME_POINT_DEG = 0.0000005


def distance_m(a: LatLng, b: LatLng) -> float:
    return distance_km(a, b) * 1000.0


@dataclass(frozen=True, slots=True)
class PolylineProjection:
    point: LatLng
    segment_index: int
    distance_m: float


def closest_point_on_segment(point: LatLng, start: LatLng, end: LatLng) -> tuple[LatLng, float]:
    lng_scale = _METERS_PER_DEG_LNG * math.cos(math.radians(point.lat))
    ax, ay = start.lng * lng_scale, start.lat * _METERS_PER_DEG_LAT
    bx, by = end.lng * lng_scale, end.lat * _METERS_PER_DEG_LAT
    px, py = point.lng * lng_scale, point.lat * _METERS_PER_DEG_LAT
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq <= 0:
        return start, distance_m(point, start)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / length_sq))
    projected = LatLng(start.lat + (end.lat - start.lat) * t, start.lng + (end.lng - start.lng) * t)
    return projected, distance_m(point, projected)


def closest_point_on_polyline(polyline: Sequence[LatLng], point: LatLng) -> Optional[PolylineProjection]:
    """Nearest projection of ``point`` onto the polyline; the first segment wins ties."""

    if not polyline:
        return None
    if len(polyline) == 1:
        return PolylineProjection(polyline[0], 0, distance_m(point, polyline[0]))
    best: Optional[PolylineProjection] = None
    for index in range(len(polyline) - 1):
        projected, meters = closest_point_on_segment(point, polyline[index], polyline[index + 1])
        if best is None or meters < best.distance_m:
            best = PolylineProjection(projected, index, meters)
    return best


def normalize_polyline(points: Iterable[LatLng]) -> list[LatLng]:
    """Drop non-finite points and consecutive duplicates."""

    out: list[LatLng] = []
    for point in points:
        if not (math.isfinite(point.lat) and math.isfinite(point.lng)):
            continue
        if out and abs(out[-1].lat - point.lat) < _SAME_POINT_DEG and abs(out[-1].lng - point.lng) < _SAME_POINT_DEG:
            continue
        out.append(LatLng(point.lat, point.lng))
    return out


def trim_polyline_from_position(polyline: Sequence[LatLng], position: LatLng) -> list[LatLng]:
    """The remaining route: the courier's projection followed by the points still ahead."""

    normalized = normalize_polyline(polyline)
    if len(normalized) < 2:
        return normalized
    closest = closest_point_on_polyline(normalized, position)
    if closest is None:
        return normalized
    trimmed = normalize_polyline([closest.point, *normalized[closest.segment_index + 1 :]])
    return trimmed if len(trimmed) >= 2 else [closest.point, normalized[-1]]


@dataclass(frozen=True, slots=True)
class CourierRoute:
    courier_id: str
    baseline: tuple[LatLng, ...]
    visible: tuple[LatLng, ...]
    deviation_m: float = 0.0


class RouteTracker:
    def __init__(
        self,
        *,
        deviation_meters: float | None = None,
        cooldown_seconds: float | None = None,
        trim_max_distance_meters: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.deviation_meters = (
            deviation_meters if deviation_meters is not None else settings.route_deviation_meters
        )
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.route_reroute_cooldown_seconds
        )
        self.trim_max_distance_meters = (
            trim_max_distance_meters
            if trim_max_distance_meters is not None
            else settings.route_trim_max_distance_meters
        )
        self.clock = clock
        self.routes: dict[str, CourierRoute] = {}
        self._rebuilt_at: dict[str, float] = {}

    def set_baseline(self, courier_id: str, polyline: Sequence[LatLng], position: Optional[LatLng]) -> Optional[CourierRoute]:
        """Track a freshly planned route; starts the courier's reroute cooldown."""

        baseline = normalize_polyline(polyline)
        if len(baseline) < 2:
            self.drop(courier_id)
            return None
        visible, deviation = baseline, 0.0
        if position is not None:
            visible, deviation = self._visible_part(baseline, baseline, position)
        route = CourierRoute(courier_id, tuple(baseline), tuple(visible), deviation)
        self.routes[courier_id] = route
        self._rebuilt_at[courier_id] = self.clock()
        return route

    def drop(self, courier_id: str) -> None:
        self.routes.pop(courier_id, None)
        self._rebuilt_at.pop(courier_id, None)

    def clear(self) -> None:
        self.routes.clear()
        self._rebuilt_at.clear()

    def update_positions(self, positions: Mapping[str, LatLng]) -> list[str]:
        """Re-trim every tracked route; return the couriers that are due a reroute."""

        now = self.clock()
        reroute: list[str] = []
        for courier_id, route in list(self.routes.items()):
            position = positions.get(courier_id)
            if position is None:
                continue
            visible, deviation = self._visible_part(route.baseline, route.visible, position)
            self.routes[courier_id] = replace(route, visible=tuple(visible), deviation_m=deviation)
            last = self._rebuilt_at.get(courier_id, float("-inf"))
            if deviation > self.deviation_meters and now - last > self.cooldown_seconds:
                reroute.append(courier_id)
                self._rebuilt_at[courier_id] = now
        return reroute

    def _visible_part(
        self, baseline: Sequence[LatLng], current: Sequence[LatLng], position: LatLng
    ) -> tuple[list[LatLng], float]:
        closest = closest_point_on_polyline(baseline, position)
        if closest is None:
            return list(current), 0.0
        if closest.distance_m > self.trim_max_distance_meters:
            return list(current), closest.distance_m
        visible = trim_polyline_from_position(baseline, position)
        return (visible if len(visible) >= 2 else list(baseline)), closest.distance_m
