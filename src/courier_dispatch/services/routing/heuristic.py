"""Greedy nearest-neighbor route construction."""

from __future__ import annotations

import math
from typing import Optional, Sequence

from ...models.domain import LatLng
from ..geospatial import distance_km, path_distance_km, travel_seconds
from .models import RouteRequest, RouteResult, RouteSourceKind, RouteStop


def nearest_neighbor_by_distance(start: Optional[LatLng], stops: Sequence[RouteStop]) -> list[RouteStop]:
    """Visit the closest unvisited stop next, by haversine distance.

    Ties go to the stop that came first in the input. Without a start point
    the tour starts at the first stop.
    """
    remaining = list(stops)
    if len(remaining) <= 1:
        return remaining

    ordered: list[RouteStop] = []
    current = start if start is not None else remaining[0].position
    while remaining:
        best_index = 0
        best_distance = math.inf
        for index, candidate in enumerate(remaining):
            distance = distance_km(current, candidate.position)
            if distance < best_distance:
                best_distance = distance
                best_index = index
        picked = remaining.pop(best_index)
        ordered.append(picked)
        current = picked.position
    return ordered


def nearest_neighbor_by_matrix(matrix: Sequence[Sequence[Optional[float]]], start_index: int, candidates: Sequence[int]) -> list[int]:
    """Nearest-neighbor ordering over a cost matrix.

    Candidates with no finite cost from the current position are appended
    at the end in their input order.
    """
    left = list(candidates)
    ordered: list[int] = []
    current = start_index

    while left:
        best: Optional[int] = None
        best_cost = math.inf
        row = matrix[current] if current < len(matrix) else []
        for idx in left:
            cost = row[idx] if idx < len(row) else None
            if cost is not None and math.isfinite(cost) and cost < best_cost:
                best_cost = cost
                best = idx
        if best is None:
            break
        ordered.append(best)
        left.remove(best)
        current = best

    ordered.extend(left)
    return ordered


def plan_route(request: RouteRequest, *, speed_kmh: float) -> RouteResult:
    """Heuristic route for one container with an approximate duration."""

    ordered = nearest_neighbor_by_distance(request.start_point, request.stops)
    points: list[LatLng] = []
    if request.start_point is not None:
        points.append(request.start_point)
    points.extend(stop.position for stop in ordered)

    total_km = path_distance_km(points)
    return RouteResult(
        container_id=request.container_id,
        ordered_ids=[stop.order_id for stop in ordered],
        polyline=points if len(points) >= 2 else None,
        duration_estimate_seconds=travel_seconds(total_km, speed_kmh),
        source=RouteSourceKind.HEURISTIC,
        approximate=True,
        distance_km=total_km,
    )
