"""Courier container assignment services."""

from .controller import DragReorderController, changed_containers
from .store import (
    AssignmentError,
    AssignmentStore,
    ContainerState,
    NumberSwapError,
    apply_route_orders,
    build_save_payload,
    check_invariant,
    initialize,
    move_item,
    renumber,
    reorder_within_container,
    swap_numbers,
)

__all__ = [
    "AssignmentError",
    "AssignmentStore",
    "ContainerState",
    "DragReorderController",
    "NumberSwapError",
    "apply_route_orders",
    "build_save_payload",
    "changed_containers",
    "check_invariant",
    "initialize",
    "move_item",
    "renumber",
    "reorder_within_container",
    "swap_numbers",
]
