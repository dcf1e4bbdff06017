"""Batched route optimization behind the dispatch optimize endpoint."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from ...config import settings
from ...models.domain import LatLng, valid_lat_lng
from ...schemas.dispatch import (
    LatLngModel,
    OptimizeRequest,
    OptimizeResponse,
    OptimizeRouteInput,
    OptimizeRouteOutput,
)
from ..geospatial import path_distance_km
from .heuristic import nearest_neighbor_by_matrix, plan_route
from .models import RouteRequest, RouteResult, RouteStop
from .osrm_client import OSRMClient, decode_polyline


def _to_output(result: RouteResult, source: str) -> OptimizeRouteOutput:
    return OptimizeRouteOutput(
        container_id=result.container_id,
        ordered_order_ids=result.ordered_ids,
        polyline=[LatLngModel(lat=p.lat, lng=p.lng) for p in (result.polyline or [])],
        duration_sec=result.duration_estimate_seconds,
        distance_km=result.distance_km,
        source=source,
    )


def _build_request(route: OptimizeRouteInput) -> RouteRequest:
    stops: list[RouteStop] = []
    seen: set[str] = set()
    for stop in route.stops:
        position = valid_lat_lng(stop.lat, stop.lng)
        if not stop.order_id or position is None or stop.order_id in seen:
            continue
        seen.add(stop.order_id)
        stops.append(RouteStop(order_id=stop.order_id, lat=position.lat, lng=position.lng))
    start = LatLng(route.start_point.lat, route.start_point.lng) if route.start_point else None
    return RouteRequest(container_id=route.container_id, start_point=start, stops=stops)


def _order_by_matrix(request: RouteRequest, durations: Sequence[Sequence[Optional[float]]]) -> list[RouteStop]:
    stops = request.stops
    if request.start_point is not None:
        # Matrix index 0 is the start point, stops follow at 1..n
        indices = nearest_neighbor_by_matrix(durations, 0, range(1, len(stops) + 1))
        return [stops[i - 1] for i in indices]
    if len(stops) == 1:
        return list(stops)
    indices = nearest_neighbor_by_matrix(durations, 0, range(1, len(stops)))
    return [stops[0], *(stops[i] for i in indices)]


def _matrix_path_seconds(durations: Sequence[Sequence[Optional[float]]], path: Sequence[int]) -> Optional[float]:
    total = 0.0
    for a, b in zip(path, path[1:]):
        value = durations[a][b]
        if value is None:
            return None
        total += float(value)
    return total


def _road_geometry(osrm_client: OSRMClient, waypoints: list[LatLng]) -> tuple[list[LatLng], Optional[float], Optional[float]]:
    """Street geometry, duration (s) and distance (km); straight lines when OSRM has no route."""
    try:
        route_data = osrm_client.route([p.as_tuple() for p in waypoints])
        routes = route_data.get("routes") or []
        if routes and routes[0].get("geometry"):
            decoded = [LatLng(lat, lon) for lat, lon in decode_polyline(routes[0]["geometry"])]
            if len(decoded) >= 2:
                duration = routes[0].get("duration")
                distance = routes[0].get("distance")
                return (
                    decoded,
                    float(duration) if duration is not None else None,
                    float(distance) / 1000.0 if distance is not None else None,
                )
    except (ConnectionError, ValueError, httpx.HTTPError) as e:
        logging.warning(f"OSRM route geometry failed: {e}. Using straight-line path.")
    return waypoints, None, None


def _process_route(route: OptimizeRouteInput, osrm_client: Optional[OSRMClient]) -> OptimizeRouteOutput:
    request = _build_request(route)
    if not request.stops:
        return OptimizeRouteOutput(container_id=route.container_id, source="none")

    fallback = plan_route(request, speed_kmh=settings.fallback_speed_kmh)
    if osrm_client is None:
        return _to_output(fallback, "fallback")

    try:
        locations = ([request.start_point] if request.start_point else []) + [s.position for s in request.stops]
        if len(locations) < 2:
            ordered = list(request.stops)
            matrix_seconds: Optional[float] = 0.0
        else:
            table = osrm_client.table([p.as_tuple() for p in locations])
            durations = table["durations"]
            ordered = _order_by_matrix(request, durations)
            index_of = {stop.order_id: i for i, stop in enumerate(request.stops)}
            offset = 1 if request.start_point else 0
            path = ([0] if request.start_point else []) + [index_of[s.order_id] + offset for s in ordered]
            matrix_seconds = _matrix_path_seconds(durations, path)

        waypoints = ([request.start_point] if request.start_point else []) + [s.position for s in ordered]
        if len(waypoints) >= 2:
            polyline, road_seconds, road_km = _road_geometry(osrm_client, waypoints)
        else:
            polyline, road_seconds, road_km = waypoints, None, None

        return OptimizeRouteOutput(
            container_id=request.container_id,
            ordered_order_ids=[s.order_id for s in ordered],
            polyline=[LatLngModel(lat=p.lat, lng=p.lng) for p in polyline],
            duration_sec=road_seconds if road_seconds is not None else matrix_seconds,
            distance_km=road_km if road_km is not None else path_distance_km(waypoints),
            source="osrm",
        )
    except (ConnectionError, ValueError, KeyError, IndexError, TypeError, httpx.HTTPError) as e:
        logging.warning(f"OSRM optimization failed for {route.container_id}: {e}. Using haversine fallback.")
        return _to_output(fallback, "fallback")


def optimize_routes(payload: OptimizeRequest) -> OptimizeResponse:
    try:
        osrm_client: Optional[OSRMClient] = OSRMClient()
    except ValueError as e:
        logging.info(f"OSRM not configured ({e}); answering with nearest-neighbor routes.")
        osrm_client = None

    routes = [_process_route(route, osrm_client) for route in payload.routes]
    logging.info(
        f"Optimized {len(routes)} route(s): "
        + ", ".join(f"{r.container_id}={r.source}/{len(r.ordered_order_ids)}" for r in routes)
    )
    return OptimizeResponse(routes=routes, provider="osrm" if osrm_client else "fallback")
