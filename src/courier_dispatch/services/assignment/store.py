"""Courier container assignment state.

A ``ContainerState`` is an immutable snapshot: one ordered tuple of order ids
per courier plus the ``UNASSIGNED`` bucket, and the display number of every
order. All transitions below are pure functions that return a new snapshot.
Renumbering only redistributes the numbers a container already holds, so the
multiset of order numbers never changes under moves and reorders.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from ...models.domain import UNASSIGNED, AssignmentUpdate, Order


class AssignmentError(ValueError):
    """Raised when a transition would break the container invariants."""


class NumberSwapError(AssignmentError):
    """Raised when a requested order number is not held by any loaded order."""


@dataclass(frozen=True, slots=True)
class ContainerState:
    containers: Mapping[str, tuple[str, ...]]
    numbers: Mapping[str, int]

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "containers",
            MappingProxyType({key: tuple(ids) for key, ids in self.containers.items()}),
        )
        object.__setattr__(self, "numbers", MappingProxyType(dict(self.numbers)))

    def container_of(self, order_id: str) -> Optional[str]:
        for container_id, ids in self.containers.items():
            if order_id in ids:
                return container_id
        return None

    def order_ids(self) -> list[str]:
        return [order_id for ids in self.containers.values() for order_id in ids]

    def _ids(self, container_id: str) -> tuple[str, ...]:
        try:
            return self.containers[container_id]
        except KeyError:
            raise AssignmentError(f"Unknown container '{container_id}'.") from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "containers": {key: list(ids) for key, ids in self.containers.items()},
            "numbers": dict(self.numbers),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContainerState":
        state = cls(
            containers={str(key): tuple(ids) for key, ids in data["containers"].items()},
            numbers={str(key): int(value) for key, value in data["numbers"].items()},
        )
        check_invariant(state)
        return state


def initialize(orders: Iterable[Order], courier_ids: Iterable[str] = ()) -> ContainerState:
    """Group orders by courier (or ``UNASSIGNED``), each sorted by order number."""

    grouped: dict[str, list[Order]] = {courier_id: [] for courier_id in courier_ids}
    grouped.setdefault(UNASSIGNED, [])
    numbers: dict[str, int] = {}
    for order in orders:
        if order.id in numbers:
            raise AssignmentError(f"Duplicate order id '{order.id}'.")
        numbers[order.id] = int(order.order_number)
        grouped.setdefault(order.courier_id or UNASSIGNED, []).append(order)

    containers = {
        container_id: tuple(order.id for order in sorted(items, key=lambda o: o.order_number))
        for container_id, items in grouped.items()
    }
    return ContainerState(containers=containers, numbers=numbers)


def renumber(state: ContainerState, container_id: str) -> ContainerState:
    """Reassign the container's own numbers, ascending, to its current id order."""

    ids = state._ids(container_id)
    pool = sorted(state.numbers[order_id] for order_id in ids)
    numbers = dict(state.numbers)
    for order_id, number in zip(ids, pool):
        numbers[order_id] = number
    return ContainerState(containers=state.containers, numbers=numbers)


def move_item(state: ContainerState, order_id: str, target_container: str, target_index: int) -> ContainerState:
    source_container = state.container_of(order_id)
    if source_container is None:
        raise AssignmentError(f"Order '{order_id}' is not in any container.")
    state._ids(target_container)

    containers = dict(state.containers)
    containers[source_container] = tuple(i for i in containers[source_container] if i != order_id)
    target_items = list(containers[target_container])
    index = max(0, min(target_index, len(target_items)))
    target_items.insert(index, order_id)
    containers[target_container] = tuple(target_items)

    moved = renumber(ContainerState(containers=containers, numbers=state.numbers), source_container)
    if target_container != source_container:
        moved = renumber(moved, target_container)
    return moved


def reorder_within_container(state: ContainerState, container_id: str, from_index: int, to_index: int) -> ContainerState:
    items = list(state._ids(container_id))
    if not (0 <= from_index < len(items)) or not (0 <= to_index < len(items)):
        raise AssignmentError(
            f"Cannot move position {from_index} to {to_index} in '{container_id}' ({len(items)} orders)."
        )
    if from_index == to_index:
        return state
    items.insert(to_index, items.pop(from_index))
    containers = dict(state.containers)
    containers[container_id] = tuple(items)
    return renumber(ContainerState(containers=containers, numbers=state.numbers), container_id)


def swap_numbers(state: ContainerState, order_id: str, requested_number: int) -> ContainerState:
    """Swap numbers with the loaded order that currently holds ``requested_number``."""

    if order_id not in state.numbers:
        raise AssignmentError(f"Order '{order_id}' is not loaded.")
    holder = next((oid for oid, number in state.numbers.items() if number == requested_number), None)
    if holder is None:
        raise NumberSwapError(f"Number {requested_number} does not belong to any order in the current list.")
    if holder == order_id:
        return state
    numbers = dict(state.numbers)
    numbers[order_id], numbers[holder] = numbers[holder], numbers[order_id]
    return ContainerState(containers=state.containers, numbers=numbers)


def apply_route_orders(state: ContainerState, ordered_ids_by_container: Mapping[str, Sequence[str]]) -> ContainerState:
    """Replace the order of several containers at once and renumber them."""

    containers = dict(state.containers)
    for container_id, ordered_ids in ordered_ids_by_container.items():
        current = state._ids(container_id)
        if len(ordered_ids) != len(current) or Counter(ordered_ids) != Counter(current):
            raise AssignmentError(f"Route order for '{container_id}' is not a permutation of its orders.")
        containers[container_id] = tuple(ordered_ids)

    updated = ContainerState(containers=containers, numbers=state.numbers)
    for container_id in ordered_ids_by_container:
        updated = renumber(updated, container_id)
    return updated


def check_invariant(state: ContainerState) -> None:
    """Every order id sits in exactly one container and carries a number."""

    seen = Counter(state.order_ids())
    duplicates = sorted(order_id for order_id, count in seen.items() if count > 1)
    if duplicates:
        raise AssignmentError(f"Orders in more than one container: {duplicates}")
    if set(seen) != set(state.numbers):
        missing = sorted(set(state.numbers) - set(seen))
        unnumbered = sorted(set(seen) - set(state.numbers))
        raise AssignmentError(f"Container/number mismatch (missing={missing}, unnumbered={unnumbered}).")


def build_save_payload(state: ContainerState) -> list[AssignmentUpdate]:
    return [
        AssignmentUpdate(
            order_id=order_id,
            order_number=state.numbers[order_id],
            courier_id=None if container_id == UNASSIGNED else container_id,
        )
        for container_id, ids in state.containers.items()
        for order_id in ids
    ]


Transition = Callable[..., ContainerState]


class AssignmentStore:
    """Single-writer holder of the current snapshot with undo/redo."""

    def __init__(self, state: ContainerState, *, history_limit: int = 100) -> None:
        check_invariant(state)
        self._state = state
        self._undo: list[ContainerState] = []
        self._redo: list[ContainerState] = []
        self.history_limit = history_limit
        self.revision = 0

    @property
    def state(self) -> ContainerState:
        return self._state

    def apply(self, transition: Transition, *args: Any, **kwargs: Any) -> ContainerState:
        new_state = transition(self._state, *args, **kwargs)
        if new_state == self._state:
            return self._state
        check_invariant(new_state)
        self._undo.append(self._state)
        del self._undo[: -self.history_limit]
        self._redo.clear()
        self._set(new_state)
        return new_state

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self._state)
        self._set(self._undo.pop())
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self._state)
        self._set(self._redo.pop())
        return True

    def _set(self, state: ContainerState) -> None:
        self._state = state
        self.revision += 1
