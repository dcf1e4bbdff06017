"""Route sources: the remote batched optimizer and the local heuristic.

Both implement ``RouteSource.plan`` and answer with ``RouteResult`` objects
keyed by container id, so callers never care which one ran.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

import httpx

from ...config import settings
from ...models.domain import LatLng, valid_lat_lng
from .heuristic import plan_route
from .models import RouteRequest, RouteResult, RouteSourceKind

logger = logging.getLogger(__name__)


class RouteSourceError(RuntimeError):
    """Raised when a route source cannot answer at all."""


class RouteSource(Protocol):
    async def plan(self, requests: Sequence[RouteRequest]) -> dict[str, RouteResult]: ...


class HeuristicRouteSource:
    """Nearest-neighbor routing computed locally."""

    def __init__(self, speed_kmh: float | None = None) -> None:
        self.speed_kmh = speed_kmh if speed_kmh is not None else settings.fallback_speed_kmh

    async def plan(self, requests: Sequence[RouteRequest]) -> dict[str, RouteResult]:
        return {request.container_id: plan_route(request, speed_kmh=self.speed_kmh) for request in requests}


_SOURCE_NAMES = {
    "ors": RouteSourceKind.REMOTE,
    "osrm": RouteSourceKind.REMOTE,
    "remote": RouteSourceKind.REMOTE,
    "fallback": RouteSourceKind.HEURISTIC,
    "heuristic": RouteSourceKind.HEURISTIC,
    "none": RouteSourceKind.NONE,
}


def request_to_payload(request: RouteRequest) -> dict[str, Any]:
    start = request.start_point
    return {
        "containerId": request.container_id,
        "startPoint": {"lat": start.lat, "lng": start.lng} if start else None,
        "stops": [{"orderId": stop.order_id, "lat": stop.lat, "lng": stop.lng} for stop in request.stops],
    }


def _parse_point(raw: Any) -> Optional[LatLng]:
    if isinstance(raw, dict):
        return valid_lat_lng(raw.get("lat"), raw.get("lng"))
    if isinstance(raw, (list, tuple)) and len(raw) >= 2:
        return valid_lat_lng(raw[0], raw[1])
    return None


def parse_route_payload(item: dict[str, Any]) -> RouteResult:
    container_id = item.get("containerId")
    ordered = item.get("orderedOrderIds")
    if not isinstance(container_id, str) or not isinstance(ordered, list):
        raise ValueError(f"Malformed route in optimize response: {item!r}")

    polyline: Optional[list[LatLng]] = None
    raw_polyline = item.get("polyline")
    if isinstance(raw_polyline, list):
        points = [p for p in (_parse_point(raw) for raw in raw_polyline) if p is not None]
        polyline = points if len(points) >= 2 else None

    duration = item.get("durationSec")
    source = _SOURCE_NAMES.get(str(item.get("source", "remote")).lower(), RouteSourceKind.REMOTE)
    return RouteResult(
        container_id=container_id,
        ordered_ids=[str(order_id) for order_id in ordered],
        polyline=polyline,
        duration_estimate_seconds=float(duration) if isinstance(duration, (int, float)) else None,
        source=source,
        approximate=source is RouteSourceKind.HEURISTIC,
    )


class RemoteRouteSource:
    """One batched POST to the dispatch optimize endpoint for all containers."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url or f"{settings.dispatch_api_base_url.rstrip('/')}/dispatch/optimize"
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._client = client

    async def plan(self, requests: Sequence[RouteRequest]) -> dict[str, RouteResult]:
        if not requests:
            return {}
        payload = {"routes": [request_to_payload(request) for request in requests]}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0)) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            routes = response.json().get("routes")
            if not isinstance(routes, list):
                raise ValueError("Optimize response has no 'routes' list.")
            results = [parse_route_payload(item) for item in routes if isinstance(item, dict)]
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise RouteSourceError(f"Remote optimization failed: {e}") from e

        logger.info(f"Remote optimizer answered for {len(results)}/{len(requests)} container(s)")
        return {result.container_id: result for result in results}
