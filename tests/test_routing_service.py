import httpx
import pytest

from courier_dispatch.schemas.dispatch import OptimizeRequest
from courier_dispatch.services.routing import service as routing_service
from courier_dispatch.services.routing.osrm_client import decode_polyline

# Google's reference polyline: (38.5, -120.2), (40.7, -120.95), (43.252, -126.453)
REFERENCE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _request(routes: list[dict]) -> OptimizeRequest:
    return OptimizeRequest.model_validate({"routes": routes})


class DummyOSRM:
    def __init__(self, durations=None, fail_route: bool = False):
        self.durations = durations
        self.fail_route = fail_route
        self.table_calls = []
        self.route_calls = []

    def table(self, coordinates):
        self.table_calls.append(list(coordinates))
        return {"durations": self.durations}

    def route(self, coordinates):
        self.route_calls.append(list(coordinates))
        if self.fail_route:
            raise ConnectionError("no route")
        return {"routes": [{"geometry": REFERENCE_POLYLINE, "duration": 900.0, "distance": 12500.0}]}


def test_decode_polyline_reference():
    assert decode_polyline(REFERENCE_POLYLINE) == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


def test_optimize_routes_uses_osrm_matrix(monkeypatch):
    # index 0 is the start point; c is nearest, then a, then b
    durations = [
        [0, 300, 900, 100],
        [300, 0, 200, 300],
        [900, 200, 0, 800],
        [100, 250, 800, 0],
    ]
    osrm = DummyOSRM(durations)
    monkeypatch.setattr(routing_service, "OSRMClient", lambda: osrm)

    response = routing_service.optimize_routes(
        _request(
            [
                {
                    "containerId": "c1",
                    "startPoint": {"lat": 41.0, "lng": 69.0},
                    "stops": [
                        {"orderId": "a", "lat": 41.1, "lng": 69.1},
                        {"orderId": "b", "lat": 41.2, "lng": 69.2},
                        {"orderId": "c", "lat": 41.05, "lng": 69.05},
                    ],
                }
            ]
        )
    )

    assert response.provider == "osrm"
    route = response.routes[0]
    assert route.source == "osrm"
    assert route.ordered_order_ids == ["c", "a", "b"]
    assert route.duration_sec == 900.0
    assert route.distance_km == 12.5
    assert len(route.polyline) == 3
    assert osrm.table_calls[0][0] == (41.0, 69.0)
    assert osrm.route_calls[0][1:] == [(41.05, 69.05), (41.1, 69.1), (41.2, 69.2)]


def test_straight_line_geometry_when_osrm_route_fails(monkeypatch):
    durations = [[0, 60], [60, 0]]
    monkeypatch.setattr(routing_service, "OSRMClient", lambda: DummyOSRM(durations, fail_route=True))

    response = routing_service.optimize_routes(
        _request([{"containerId": "c1", "stops": [{"orderId": "a", "lat": 0, "lng": 0}, {"orderId": "b", "lat": 0, "lng": 1}]}])
    )

    route = response.routes[0]
    assert route.source == "osrm"
    assert route.duration_sec == 60.0
    assert [(p.lat, p.lng) for p in route.polyline] == [(0, 0), (0, 1)]


def test_fallback_when_osrm_not_configured(monkeypatch):
    def not_configured():
        raise ValueError("OSRM base URL is not configured.")

    monkeypatch.setattr(routing_service, "OSRMClient", not_configured)

    response = routing_service.optimize_routes(
        _request(
            [
                {
                    "containerId": "c1",
                    "startPoint": {"lat": 0, "lng": 0},
                    "stops": [
                        {"orderId": "C", "lat": 0, "lng": 3},
                        {"orderId": "A", "lat": 0, "lng": 0},
                        {"orderId": "B", "lat": 0, "lng": 1},
                    ],
                }
            ]
        )
    )

    assert response.provider == "fallback"
    route = response.routes[0]
    assert route.source == "fallback"
    assert route.ordered_order_ids == ["A", "B", "C"]
    assert route.duration_sec == pytest.approx(route.distance_km / 25 * 3600)


def test_fallback_when_osrm_table_fails(monkeypatch):
    class BrokenOSRM(DummyOSRM):
        def table(self, coordinates):
            raise httpx.ConnectError("refused")

    monkeypatch.setattr(routing_service, "OSRMClient", lambda: BrokenOSRM())

    response = routing_service.optimize_routes(
        _request([{"containerId": "c1", "stops": [{"orderId": "a", "lat": 0, "lng": 0}, {"orderId": "b", "lat": 0, "lng": 1}]}])
    )

    assert response.provider == "osrm"
    assert response.routes[0].source == "fallback"
    assert response.routes[0].ordered_order_ids == ["a", "b"]


def test_routes_without_valid_stops(monkeypatch):
    monkeypatch.setattr(routing_service, "OSRMClient", lambda: DummyOSRM())

    response = routing_service.optimize_routes(
        _request(
            [
                {"containerId": "empty", "stops": []},
                {"containerId": "broken", "stops": [{"orderId": "x", "lat": None, "lng": 69.0}]},
            ]
        )
    )

    assert [r.source for r in response.routes] == ["none", "none"]
    assert all(r.ordered_order_ids == [] for r in response.routes)


def test_duplicate_stops_are_collapsed(monkeypatch):
    monkeypatch.setattr(routing_service, "OSRMClient", lambda: DummyOSRM([[0, 10], [10, 0]]))

    response = routing_service.optimize_routes(
        _request(
            [
                {
                    "containerId": "c1",
                    "startPoint": {"lat": 0, "lng": 0},
                    "stops": [{"orderId": "a", "lat": 0, "lng": 1}, {"orderId": "a", "lat": 0, "lng": 2}],
                }
            ]
        )
    )

    assert response.routes[0].ordered_order_ids == ["a"]
