"""Lifecycle of one open dispatch view.

The session owns the resolver, the assignment store, the optimizer, the live
sync client and the route tracker for as long as the view is open. States:

    CLOSED -> OPENING -> READY -> EDITING <-> OPTIMIZING -> SAVING -> CLOSED
    SAVING -> ERROR -> EDITING (on the next edit)

All methods must be called from the event loop that opened the session.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Iterable, Optional

from ...config import settings
from ...models.domain import UNASSIGNED, Courier, LatLng, Order, ResolvedCoordinate
from ..assignment import AssignmentStore, DragReorderController, apply_route_orders, build_save_payload, initialize
from ..coordinates import CoordinateResolver
from ..coordinates.expander import UrlExpander
from ..live_sync import LiveSnapshot, LiveSyncClient
from ..live_sync.tracking import CourierRoute, RouteTracker
from ..routing.models import RouteResult, RouteSourceKind
from ..routing.optimizer import RouteOptimizer
from ..routing.sources import RemoteRouteSource
from .gateway import DispatchGateway

logger = logging.getLogger(__name__)

Edit = Callable[[DragReorderController], bool]


class SessionState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    READY = "ready"
    EDITING = "editing"
    OPTIMIZING = "optimizing"
    SAVING = "saving"
    ERROR = "error"


class InvalidTransitionError(RuntimeError):
    """Raised when an operation is not allowed in the current session state."""


_EDITABLE = (SessionState.READY, SessionState.EDITING, SessionState.OPTIMIZING, SessionState.ERROR)
_OPTIMIZABLE = (SessionState.READY, SessionState.EDITING, SessionState.ERROR)


def _default_depot() -> Optional[LatLng]:
    depot = settings.depot
    return LatLng(*depot) if depot else None


class DispatchSession:
    def __init__(
        self,
        *,
        expander: UrlExpander | None = None,
        optimizer: RouteOptimizer | None = None,
        gateway: DispatchGateway | None = None,
        live_sync: LiveSyncClient | None = None,
        tracker: RouteTracker | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        self.expander = expander
        self.optimizer = optimizer or RouteOptimizer(RemoteRouteSource(), depot=_default_depot())
        self.gateway = gateway or DispatchGateway()
        self.live_sync = live_sync
        self.tracker = tracker or RouteTracker()
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.optimize_debounce_seconds
        )

        self.state = SessionState.CLOSED
        self.orders: dict[str, Order] = {}
        self.couriers: dict[str, Courier] = {}
        self.route_results: dict[str, RouteResult] = {}
        self.resolver: Optional[CoordinateResolver] = None
        self.store: Optional[AssignmentStore] = None
        self.controller: Optional[DragReorderController] = None

        self._live_positions: dict[str, LatLng] = {}
        self._debounce: Optional[asyncio.Task[None]] = None
        self._reroute: Optional[asyncio.Task[None]] = None
        self._reoptimize = False
        self._edited_while_optimizing: set[str] = set()
        self._queued: list[Edit] = []
        self._shadow: Optional[DragReorderController] = None

    # -- lifecycle -------------------------------------------------------

    async def open(self, orders: Iterable[Order], couriers: Iterable[Courier], *, optimize: bool = True) -> None:
        if self.state is not SessionState.CLOSED:
            raise InvalidTransitionError(f"Cannot open a session that is {self.state.value}.")
        self.state = SessionState.OPENING
        try:
            orders = list(orders)
            self.orders = {order.id: order for order in orders}
            self.couriers = {courier.id: courier for courier in couriers}
            self.store = AssignmentStore(initialize(orders, self.couriers))
            self.controller = DragReorderController(self.store, on_edit=self._on_edit)
            self.resolver = CoordinateResolver(self.expander, on_update=self._on_coordinate)
            self.resolver.resolve_all(orders)
        except Exception:
            self.state = SessionState.CLOSED
            raise
        self.route_results = {}
        self._live_positions = {}
        self.tracker.clear()
        if self.live_sync is not None:
            self.live_sync.on_change = self._on_live_snapshot
            self.live_sync.start()
        self.state = SessionState.READY
        logger.info(
            f"Dispatch session opened with {len(orders)} order(s), {len(self.couriers)} courier(s), "
            f"{len(self.resolver.pending_ids)} pending expansion(s)"
        )
        if optimize:
            await self.optimize()

    async def close(self) -> None:
        """Cancel expansions, the debounce timer and live sync; drop view state."""

        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if self.resolver is not None:
            self.resolver.close()
        debounce, self._debounce = self._debounce, None
        if debounce is not None and not debounce.done() and debounce is not asyncio.current_task():
            debounce.cancel()
            await asyncio.wait({debounce})
        reroute, self._reroute = self._reroute, None
        if reroute is not None and not reroute.done() and reroute is not asyncio.current_task():
            reroute.cancel()
            await asyncio.wait({reroute})
        if self.live_sync is not None:
            await self.live_sync.close()
        self.route_results = {}
        self.tracker.clear()
        self._live_positions = {}
        self._queued = []
        self._shadow = None
        self._reoptimize = False

    # -- edits -----------------------------------------------------------

    def move(self, order_id: str, target_container: str, target_index: int) -> bool:
        return self._edit(lambda c: c.move(order_id, target_container, target_index))

    def reorder(self, container_id: str, from_index: int, to_index: int) -> bool:
        return self._edit(lambda c: c.reorder(container_id, from_index, to_index))

    def change_number(self, order_id: str, requested_number: int) -> bool:
        return self._edit(lambda c: c.change_number(order_id, requested_number))

    def drag_over(self, active_id: str, over_id: str) -> bool:
        return self._edit(lambda c: c.drag_over(active_id, over_id))

    def drag_end(self, active_id: str, over_id: Optional[str]) -> bool:
        return self._edit(lambda c: c.drag_end(active_id, over_id))

    def undo(self) -> bool:
        return self._edit(lambda c: c.undo())

    def redo(self) -> bool:
        return self._edit(lambda c: c.redo())

    def _edit(self, edit: Edit) -> bool:
        if self.state is SessionState.SAVING:
            # Validate against the queued projection now, apply after the save settles.
            if self._shadow is None:
                self._shadow = DragReorderController(AssignmentStore(self.store.state))
            changed = edit(self._shadow)
            if changed:
                self._queued.append(edit)
            return changed
        if self.state not in _EDITABLE:
            raise InvalidTransitionError(f"Cannot edit while the session is {self.state.value}.")
        return edit(self.controller)

    def _on_edit(self, containers: set[str]) -> None:
        for container_id in containers:
            self.tracker.drop(container_id)
            result = self.route_results.get(container_id)
            if result is not None:
                self.route_results[container_id] = result.without_geometry()
        if self.state is SessionState.OPTIMIZING:
            self._edited_while_optimizing |= containers
        elif self.state in (SessionState.READY, SessionState.ERROR):
            self.state = SessionState.EDITING

    def _replay_queued(self) -> None:
        queued, self._queued, self._shadow = self._queued, [], None
        for edit in queued:
            edit(self.controller)

    # -- optimization ----------------------------------------------------

    def start_points(self) -> dict[str, Optional[LatLng]]:
        """Live courier position first, then the courier's loaded position."""

        points: dict[str, Optional[LatLng]] = {UNASSIGNED: None}
        for courier_id, courier in self.couriers.items():
            points[courier_id] = self._live_positions.get(courier_id) or courier.position
        return points

    async def optimize(self, container_ids: Optional[Iterable[str]] = None) -> dict[str, RouteResult]:
        """Re-plan every container, or only ``container_ids``, and apply the new orders in one transition."""

        if self.state is SessionState.OPTIMIZING or self.state is SessionState.SAVING:
            self._reoptimize = True
            return dict(self.route_results)
        if self.state not in _OPTIMIZABLE:
            raise InvalidTransitionError(f"Cannot optimize while the session is {self.state.value}.")

        previous = self.state
        snapshot = self.store.state
        self._edited_while_optimizing = set()
        self.state = SessionState.OPTIMIZING
        try:
            targets = snapshot.containers
            if container_ids is not None:
                targets = {cid: snapshot.containers[cid] for cid in container_ids if cid in snapshot.containers}
            results = await self.optimizer.optimize_all(targets, dict(self.resolver.coordinates), self.start_points())
        except BaseException:
            if self.state is SessionState.OPTIMIZING:
                self.state = previous
            raise

        if self.state is SessionState.CLOSED:
            return {}

        current = self.store.state
        edited = self._edited_while_optimizing
        applicable = {
            cid: result
            for cid, result in results.items()
            if cid not in edited and current.containers.get(cid) == snapshot.containers.get(cid)
        }
        if len(applicable) < len(results):
            logger.info(f"Dropped optimization for edited container(s): {sorted(set(results) - set(applicable))}")
        # Unplanned or unchanged containers keep their numbers, manual swaps included.
        reordered = {
            cid: result.ordered_ids
            for cid, result in applicable.items()
            if result.source is not RouteSourceKind.NONE and tuple(result.ordered_ids) != current.containers.get(cid)
        }
        if reordered:
            self.store.apply(apply_route_orders, reordered)
        self.route_results.update(applicable)
        self._track_routes(applicable)

        self.state = SessionState.EDITING if (edited or previous is not SessionState.READY) else SessionState.READY
        self._edited_while_optimizing = set()
        if self._reoptimize:
            self._reoptimize = False
            self._schedule_optimize()
        return dict(self.route_results)

    def _on_coordinate(self, order_id: str, coordinate: ResolvedCoordinate) -> None:
        self._schedule_optimize()

    def _schedule_optimize(self) -> None:
        if self.state in (SessionState.CLOSED, SessionState.OPENING):
            return
        current = self._debounce
        if current is not None and not current.done() and current is not asyncio.current_task():
            current.cancel()
        self._debounce = asyncio.get_running_loop().create_task(self._debounced_optimize())

    async def _debounced_optimize(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self.state not in (SessionState.CLOSED, SessionState.OPENING):
            await self.optimize()

    def _track_routes(self, results: dict[str, RouteResult]) -> None:
        starts = self.start_points()
        for container_id, result in results.items():
            if container_id == UNASSIGNED:
                continue
            if result.polyline:
                self.tracker.set_baseline(container_id, result.polyline, starts.get(container_id))
            else:
                self.tracker.drop(container_id)

    @property
    def tracked_routes(self) -> dict[str, CourierRoute]:
        return dict(self.tracker.routes)

    def _on_live_snapshot(self, snapshot: LiveSnapshot) -> None:
        self._live_positions = snapshot.courier_positions()
        off_route = self.tracker.update_positions(self._live_positions)
        if not off_route or self.state not in _OPTIMIZABLE:
            return
        if self._reroute is not None and not self._reroute.done():
            return
        logger.info(f"Courier(s) off their planned route, requesting new routes: {off_route}")
        self._reroute = asyncio.get_running_loop().create_task(self._reroute_couriers(off_route))

    async def _reroute_couriers(self, courier_ids: list[str]) -> None:
        if self.state in _OPTIMIZABLE:
            await self.optimize(courier_ids)

    # -- save ------------------------------------------------------------

    async def save(self) -> int:
        """Persist the whole assignment with one request.

        On success the session closes unless edits were queued meanwhile; on
        failure it enters ``ERROR`` with local edits kept and re-raises. Once
        the view has been closed, the outcome is discarded either way.
        """

        if self.state not in (SessionState.READY, SessionState.EDITING, SessionState.ERROR):
            raise InvalidTransitionError(f"Cannot save while the session is {self.state.value}.")
        updates = build_save_payload(self.store.state)
        self.state = SessionState.SAVING
        self._queued, self._shadow = [], None
        try:
            updated = await self.gateway.save_assignment(updates)
        except Exception as e:
            if self.state is SessionState.CLOSED:
                logger.info(f"Session closed during save; discarding failed save result: {e}")
                return 0
            if self.state is SessionState.SAVING:
                self.state = SessionState.ERROR
                self._replay_queued()
                self._resume_optimization()
            raise

        if self.state is not SessionState.SAVING:
            logger.info("Session closed during save; discarding save result")
            return updated
        if self._queued:
            self.state = SessionState.EDITING
            self._replay_queued()
            self._resume_optimization()
            return updated
        await self.close()
        return updated

    def _resume_optimization(self) -> None:
        if self._reoptimize:
            self._reoptimize = False
            self._schedule_optimize()
