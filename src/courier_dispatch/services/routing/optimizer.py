"""Per-container visiting order with remote-first, heuristic-fallback routing."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Mapping, Optional, Sequence

from ...models.domain import LatLng, ResolvedCoordinate
from .models import RouteRequest, RouteResult, RouteSourceKind, RouteStop
from .sources import HeuristicRouteSource, RouteSource, RouteSourceError

logger = logging.getLogger(__name__)


class RouteOptimizer:
    """Computes a ``RouteResult`` for every container.

    Containers with at least one located stop go to the remote source in a
    single batch. Containers the remote source fails or omits are planned by
    the heuristic afterwards, never in parallel with the remote call. Orders
    without coordinates always end up after the located ones.
    """

    def __init__(
        self,
        remote: Optional[RouteSource] = None,
        fallback: Optional[HeuristicRouteSource] = None,
        *,
        depot: Optional[LatLng] = None,
    ) -> None:
        self.remote = remote
        self.fallback = fallback or HeuristicRouteSource()
        self.depot = depot

    async def optimize_all(
        self,
        containers: Mapping[str, Sequence[str]],
        coordinates_by_id: Mapping[str, ResolvedCoordinate],
        start_point_by_container: Optional[Mapping[str, Optional[LatLng]]] = None,
    ) -> dict[str, RouteResult]:
        start_points = start_point_by_container or {}
        requests: dict[str, RouteRequest] = {}
        unlocated: dict[str, list[str]] = {}

        for container_id, order_ids in containers.items():
            stops: list[RouteStop] = []
            rest: list[str] = []
            for order_id in order_ids:
                coordinate = coordinates_by_id.get(order_id)
                if isinstance(coordinate, LatLng):
                    stops.append(RouteStop(order_id=order_id, lat=coordinate.lat, lng=coordinate.lng))
                else:
                    rest.append(order_id)
            unlocated[container_id] = rest
            if stops:
                start = start_points.get(container_id) or self.depot
                requests[container_id] = RouteRequest(container_id=container_id, start_point=start, stops=stops)

        planned: dict[str, RouteResult] = {}
        if requests and self.remote is not None:
            try:
                planned = {
                    cid: result
                    for cid, result in (await self.remote.plan(list(requests.values()))).items()
                    if cid in requests
                }
            except RouteSourceError as e:
                logger.warning(f"{e}. Using nearest-neighbor fallback for all containers.")

        missing = [request for cid, request in requests.items() if cid not in planned]
        if missing:
            if self.remote is not None:
                logger.info(f"Nearest-neighbor fallback for {len(missing)} container(s): {[r.container_id for r in missing]}")
            planned.update(await self.fallback.plan(missing))

        results: dict[str, RouteResult] = {}
        for container_id, order_ids in containers.items():
            request = requests.get(container_id)
            if request is None:
                results[container_id] = RouteResult(
                    container_id=container_id,
                    ordered_ids=list(order_ids),
                    source=RouteSourceKind.NONE,
                )
                continue
            results[container_id] = _merge(request, planned[container_id], unlocated[container_id])
        return results


def _merge(request: RouteRequest, result: RouteResult, unlocated: list[str]) -> RouteResult:
    """Keep only known located ids from the result, then append the rest."""

    located_ids = [stop.order_id for stop in request.stops]
    allowed = set(located_ids)
    seen: set[str] = set()
    ordered: list[str] = []
    for order_id in result.ordered_ids:
        if order_id in allowed and order_id not in seen:
            ordered.append(order_id)
            seen.add(order_id)

    dropped = [order_id for order_id in located_ids if order_id not in seen]
    if dropped:
        logger.warning(f"Route for {request.container_id} omitted {len(dropped)} stop(s); appending them in input order")
        # The returned geometry no longer matches the final order.
        result = result.without_geometry()

    return replace(result, container_id=request.container_id, ordered_ids=ordered + dropped + list(unlocated))
