"""Drag-and-drop gestures translated into container store transitions."""

from __future__ import annotations

from typing import Callable, Optional

from . import store as transitions
from .store import AssignmentStore, ContainerState

EditCallback = Callable[[set[str]], None]


class DragReorderController:
    """Maps move/reorder gestures onto the store.

    ``over_id`` may name either an order or a container; dropping on a
    container appends to its end. Every applied edit reports the affected
    container ids through ``on_edit``.
    """

    def __init__(self, store: AssignmentStore, on_edit: Optional[EditCallback] = None) -> None:
        self.store = store
        self.on_edit = on_edit

    def _locate(self, item_id: str) -> Optional[str]:
        if item_id in self.store.state.containers:
            return item_id
        return self.store.state.container_of(item_id)

    def drag_over(self, active_id: str, over_id: str) -> bool:
        """Move the dragged order into another container while hovering."""

        source = self._locate(active_id)
        target = self._locate(over_id)
        if source is None or target is None or source == target:
            return False
        target_items = self.store.state.containers[target]
        index = target_items.index(over_id) if over_id in target_items else len(target_items)
        return self.move(active_id, target, index)

    def drag_end(self, active_id: str, over_id: Optional[str]) -> bool:
        """Reorder within a container when the order is dropped on a sibling."""

        if over_id is None:
            return False
        container = self._locate(active_id)
        if container is None or container != self._locate(over_id):
            return False
        items = self.store.state.containers[container]
        if active_id not in items or over_id not in items:
            return False
        return self.reorder(container, items.index(active_id), items.index(over_id))

    def move(self, order_id: str, target_container: str, target_index: int) -> bool:
        source = self.store.state.container_of(order_id)
        before = self.store.revision
        self.store.apply(transitions.move_item, order_id, target_container, target_index)
        return self._edited(before, {c for c in (source, target_container) if c})

    def reorder(self, container_id: str, from_index: int, to_index: int) -> bool:
        before = self.store.revision
        self.store.apply(transitions.reorder_within_container, container_id, from_index, to_index)
        return self._edited(before, {container_id})

    def change_number(self, order_id: str, requested_number: int) -> bool:
        """Manual number entry; raises ``NumberSwapError`` for unknown numbers."""

        state = self.store.state
        holder = next((oid for oid, n in state.numbers.items() if n == requested_number), None)
        before = self.store.revision
        self.store.apply(transitions.swap_numbers, order_id, requested_number)
        affected = {c for c in (state.container_of(order_id), state.container_of(holder or order_id)) if c}
        return self._edited(before, affected)

    def undo(self) -> bool:
        return self._step(forward=False)

    def redo(self) -> bool:
        return self._step(forward=True)

    def _step(self, *, forward: bool) -> bool:
        before = self.store.state
        revision = self.store.revision
        if forward:
            self.store.redo()
        else:
            self.store.undo()
        return self._edited(revision, changed_containers(before, self.store.state))

    def _edited(self, revision_before: int, containers: set[str]) -> bool:
        if self.store.revision == revision_before:
            return False
        if self.on_edit:
            self.on_edit(containers)
        return True


def changed_containers(before: ContainerState, after: ContainerState) -> set[str]:
    """Container ids whose order or numbering differs between two snapshots."""

    changed: set[str] = set()
    for container_id in set(before.containers) | set(after.containers):
        old = before.containers.get(container_id, ())
        new = after.containers.get(container_id, ())
        if old != new or any(before.numbers.get(i) != after.numbers.get(i) for i in new):
            changed.add(container_id)
    return changed
