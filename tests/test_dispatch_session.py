import asyncio
import json

import httpx
import pytest

from courier_dispatch.models.domain import UNASSIGNED, Courier, LatLng, Order
from courier_dispatch.services.assignment import NumberSwapError
from courier_dispatch.services.dispatch import (
    DispatchGateway,
    DispatchSession,
    InvalidTransitionError,
    SaveAssignmentError,
    SessionState,
)
from courier_dispatch.services.live_sync import LiveSnapshot
from courier_dispatch.services.live_sync.tracking import RouteTracker
from courier_dispatch.services.routing.heuristic import plan_route
from courier_dispatch.services.routing.models import RouteSourceKind
from courier_dispatch.services.routing.optimizer import RouteOptimizer

BASE = "http://dispatch/api"
SHORT = "https://maps.app.goo.gl/xyz"
LONG = "https://www.google.com/maps/@0.0,2.0,17z"


def _orders() -> list[Order]:
    return [
        Order(id="o1", order_number=1, latitude=0.0, longitude=3.0, courier_id="k1"),
        Order(id="o2", order_number=2, latitude=0.0, longitude=1.0, courier_id="k1"),
        Order(id="o3", order_number=3, latitude=0.0, longitude=0.0, courier_id="k1"),
        Order(id="o4", order_number=4, delivery_address="no coordinates here", courier_id="k2"),
        Order(id="o5", order_number=5, latitude=1.0, longitude=1.0),
    ]


def _couriers() -> list[Courier]:
    return [Courier(id="k1", name="Ann", latitude=0.0, longitude=0.0), Courier(id="k2", name="Bob")]


class RecordingSaves:
    def __init__(self, status: int = 200, body: dict | None = None, gate: asyncio.Event | None = None):
        self.status = status
        self.body = body
        self.gate = gate
        self.payloads: list[dict] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        if self.gate is not None:
            await self.gate.wait()
        body = self.body if self.body is not None else {"success": True, "updated": len(self.payloads[-1]["updates"])}
        return httpx.Response(self.status, json=body)


def _session(saves: RecordingSaves | None = None, **kwargs) -> DispatchSession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(saves or RecordingSaves()))
    kwargs.setdefault("optimizer", RouteOptimizer())
    return DispatchSession(gateway=DispatchGateway(client, base_url=BASE), debounce_seconds=0, **kwargs)


@pytest.mark.anyio
async def test_open_optimizes_from_courier_position():
    session = _session()

    await session.open(_orders(), _couriers())

    assert session.state is SessionState.READY
    state = session.store.state
    assert state.containers["k1"] == ("o3", "o2", "o1")
    assert [state.numbers[i] for i in state.containers["k1"]] == [1, 2, 3]
    assert session.route_results["k1"].source is RouteSourceKind.HEURISTIC
    assert session.route_results["k2"].source is RouteSourceKind.NONE
    assert session.route_results["k1"].polyline[0] == LatLng(0.0, 0.0)


@pytest.mark.anyio
async def test_open_twice_is_rejected():
    session = _session()
    await session.open(_orders(), _couriers(), optimize=False)

    with pytest.raises(InvalidTransitionError):
        await session.open(_orders(), _couriers())


@pytest.mark.anyio
async def test_edit_clears_route_geometry():
    session = _session()
    await session.open(_orders(), _couriers())

    assert session.move("o5", "k1", 0)

    assert session.state is SessionState.EDITING
    assert session.route_results["k1"].polyline is None
    assert session.route_results["k1"].duration_estimate_seconds is None
    assert session.route_results[UNASSIGNED].ordered_ids == ["o5"]


@pytest.mark.anyio
async def test_unknown_number_swap_raises_without_change():
    session = _session()
    await session.open(_orders(), _couriers(), optimize=False)
    before = session.store.state

    with pytest.raises(NumberSwapError):
        session.change_number("o1", 99)

    assert session.store.state is before
    assert session.state is SessionState.READY


@pytest.mark.anyio
async def test_save_sends_full_assignment_and_closes():
    saves = RecordingSaves()
    session = _session(saves)
    await session.open(_orders(), _couriers(), optimize=False)
    session.move("o4", UNASSIGNED, 0)

    assert await session.save() == 5

    assert session.state is SessionState.CLOSED
    updates = {u["orderId"]: u for u in saves.payloads[0]["updates"]}
    assert len(updates) == 5
    assert updates["o4"]["courierId"] is None
    assert updates["o1"]["courierId"] == "k1"
    assert sorted(u["orderNumber"] for u in updates.values()) == [1, 2, 3, 4, 5]


@pytest.mark.anyio
async def test_failed_save_enters_error_and_keeps_edits():
    saves = RecordingSaves(status=400, body={"detail": "Duplicate orderNumber in payload"})
    session = _session(saves)
    await session.open(_orders(), _couriers(), optimize=False)
    session.move("o5", "k2", 0)

    with pytest.raises(SaveAssignmentError, match="Duplicate orderNumber"):
        await session.save()

    assert session.state is SessionState.ERROR
    assert session.store.state.containers["k2"] == ("o5", "o4")
    assert session.reorder("k2", 0, 1)
    assert session.state is SessionState.EDITING


@pytest.mark.anyio
async def test_edits_during_save_are_queued():
    gate = asyncio.Event()
    saves = RecordingSaves(gate=gate)
    session = _session(saves)
    await session.open(_orders(), _couriers(), optimize=False)
    saved_state = session.store.state

    saving = asyncio.create_task(session.save())
    await asyncio.sleep(0)
    assert session.state is SessionState.SAVING

    assert session.move("o5", "k2", 0)
    with pytest.raises(NumberSwapError):
        session.change_number("o1", 42)
    assert session.store.state is saved_state

    gate.set()
    await saving

    assert session.state is SessionState.EDITING
    assert session.store.state.containers["k2"] == ("o5", "o4")
    assert len(saves.payloads[0]["updates"]) == 5


@pytest.mark.anyio
async def test_close_during_save_discards_result():
    gate = asyncio.Event()
    session = _session(RecordingSaves(gate=gate))
    await session.open(_orders(), _couriers(), optimize=False)

    saving = asyncio.create_task(session.save())
    await asyncio.sleep(0)
    await session.close()
    gate.set()
    await saving

    assert session.state is SessionState.CLOSED
    with pytest.raises(InvalidTransitionError):
        session.move("o5", "k2", 0)


@pytest.mark.anyio
async def test_container_edited_during_optimization_keeps_the_edit():
    release = asyncio.Event()

    class SlowRemote:
        async def plan(self, requests):
            await release.wait()
            return {r.container_id: plan_route(r, speed_kmh=25) for r in requests}

    session = _session(optimizer=RouteOptimizer(SlowRemote()))
    orders = _orders() + [
        Order(id="o6", order_number=6, latitude=0.0, longitude=5.0, courier_id="k2"),
        Order(id="o7", order_number=7, latitude=0.0, longitude=4.0, courier_id="k2"),
    ]
    await session.open(orders, _couriers(), optimize=False)

    optimizing = asyncio.create_task(session.optimize())
    await asyncio.sleep(0)
    assert session.state is SessionState.OPTIMIZING

    assert session.reorder("k1", 0, 2)
    edited = session.store.state.containers["k1"]
    release.set()
    await optimizing

    assert session.store.state.containers["k1"] == edited
    assert "k1" not in session.route_results
    assert session.store.state.containers["k2"] == ("o6", "o7", "o4")
    assert session.state is SessionState.EDITING


@pytest.mark.anyio
async def test_late_coordinates_trigger_reoptimization():
    class Expander:
        async def expand(self, url):
            await asyncio.sleep(0)
            return LONG

    session = _session(expander=Expander())
    orders = _orders() + [Order(id="o6", order_number=6, delivery_address=SHORT, courier_id="k1")]

    await session.open(orders, _couriers())
    assert session.store.state.containers["k1"][-1] == "o6"

    await session.resolver.wait_pending()
    await session._debounce

    assert session.resolver.coordinates["o6"] == LatLng(0.0, 2.0)
    assert session.store.state.containers["k1"] == ("o3", "o2", "o6", "o1")


@pytest.mark.anyio
async def test_live_positions_become_start_points():
    session = _session()
    await session.open(_orders(), _couriers(), optimize=False)

    session._on_live_snapshot(
        LiveSnapshot.from_payload({"couriers": [{"id": "k2", "name": "Bob", "lat": 1.0, "lng": 1.0}], "clients": []})
    )

    points = session.start_points()
    assert points["k2"] == LatLng(1.0, 1.0)
    assert points["k1"] == LatLng(0.0, 0.0)
    assert points[UNASSIGNED] is None


@pytest.mark.anyio
async def test_close_cancels_pending_expansions():
    class Hanging:
        async def expand(self, url):
            await asyncio.Event().wait()

    session = _session(expander=Hanging())
    await session.open(
        [Order(id="o1", order_number=1, delivery_address=SHORT, courier_id="k1")], _couriers(), optimize=False
    )
    assert session.resolver.pending_ids == ["o1"]

    await session.close()

    assert session.resolver.pending_ids == []
    assert session.state is SessionState.CLOSED


@pytest.mark.anyio
async def test_optimize_keeps_manual_number_swaps():
    session = _session()
    orders = [
        Order(id="a", order_number=1, delivery_address="call on arrival", courier_id="k2"),
        Order(id="b", order_number=2, delivery_address="call on arrival", courier_id="k2"),
        Order(id="x", order_number=3, latitude=0.0, longitude=0.0, courier_id="k1"),
        Order(id="y", order_number=4, latitude=0.0, longitude=1.0, courier_id="k1"),
    ]
    await session.open(orders, _couriers(), optimize=False)
    session.change_number("a", 2)
    session.change_number("x", 4)

    await session.optimize()

    numbers = session.store.state.numbers
    assert {oid: numbers[oid] for oid in ("a", "b")} == {"a": 2, "b": 1}
    assert {oid: numbers[oid] for oid in ("x", "y")} == {"x": 4, "y": 3}
    assert session.route_results["k2"].source is RouteSourceKind.NONE
    assert session.route_results["k1"].source is RouteSourceKind.HEURISTIC


@pytest.mark.anyio
async def test_failed_save_after_close_is_discarded():
    gate = asyncio.Event()
    session = _session(RecordingSaves(status=500, body={"error": "Internal server error"}, gate=gate))
    await session.open(_orders(), _couriers(), optimize=False)

    saving = asyncio.create_task(session.save())
    await asyncio.sleep(0)
    await session.close()
    gate.set()

    assert await saving == 0
    assert session.state is SessionState.CLOSED


@pytest.mark.anyio
async def test_courier_off_route_gets_a_new_route():
    now = [0.0]
    session = _session(tracker=RouteTracker(cooldown_seconds=15, clock=lambda: now[0]))
    await session.open(_orders(), _couriers())

    tracked = session.tracked_routes
    assert set(tracked) == {"k1"}
    assert tracked["k1"].baseline == (LatLng(0.0, 0.0), LatLng(0.0, 1.0), LatLng(0.0, 3.0))

    now[0] = 100.0
    session._on_live_snapshot(
        LiveSnapshot.from_payload({"couriers": [{"id": "k1", "name": "Ann", "lat": 0.01, "lng": 2.8}], "clients": []})
    )
    assert session.tracked_routes["k1"].deviation_m > 140
    await session._reroute

    assert session.store.state.containers["k1"] == ("o1", "o2", "o3")
    assert session.tracked_routes["k1"].baseline[0] == LatLng(0.01, 2.8)
    assert session.route_results["k2"].source is RouteSourceKind.NONE
    assert session.state is SessionState.READY


@pytest.mark.anyio
async def test_edit_stops_tracking_the_route():
    session = _session()
    await session.open(_orders(), _couriers())
    assert "k1" in session.tracked_routes

    session.reorder("k1", 0, 2)

    assert "k1" not in session.tracked_routes
