"""Database persistence for order numbering and courier assignment."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Mapping, Optional, Sequence

from ..db.supabase import require_supabase_client
from ..schemas.dispatch import ReorderUpdateModel

ORDERS_TABLE = "orders"
COURIERS_TABLE = "couriers"
APPLY_ASSIGNMENT_RPC = "apply_order_assignment"


class AssignmentValidationError(ValueError):
    """The reorder batch is rejected as a whole."""

    def __init__(self, message: str, *, status_code: int = 400, missing: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.missing = missing or []


def normalize_courier_id(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return None if value in ("", "null") else value


def check_batch_unique(updates: Sequence[ReorderUpdateModel]) -> None:
    order_ids = [u.order_id for u in updates]
    if not order_ids:
        raise AssignmentValidationError("No updates supplied")
    if len(set(order_ids)) != len(order_ids):
        raise AssignmentValidationError("Duplicate orderId in payload")
    numbers = [u.order_number for u in updates]
    if len(set(numbers)) != len(numbers):
        raise AssignmentValidationError("Duplicate orderNumber in payload")


def validate_reorder(
    updates: Sequence[ReorderUpdateModel],
    current_numbers: Mapping[str, int],
    known_courier_ids: set[str],
) -> None:
    """Reject the batch unless it is a renumbering of existing orders onto existing couriers.

    Args:
        updates: Requested assignment, one entry per order
        current_numbers: order id -> order number currently stored
        known_courier_ids: Courier ids that exist and may receive orders
    """
    check_batch_unique(updates)

    missing = [u.order_id for u in updates if u.order_id not in current_numbers]
    if missing:
        raise AssignmentValidationError("Some orders are not available", status_code=404, missing=missing)

    current = Counter(current_numbers[u.order_id] for u in updates)
    if current != Counter(u.order_number for u in updates):
        raise AssignmentValidationError("Order numbers must be a permutation of the current numbers of these orders")

    unknown = sorted(
        {cid for cid in (normalize_courier_id(u.courier_id) for u in updates) if cid and cid not in known_courier_ids}
    )
    if unknown:
        raise AssignmentValidationError("Unknown courier", missing=unknown)


def _fetch_current_numbers(client, order_ids: list[str]) -> dict[str, int]:
    response = client.table(ORDERS_TABLE).select("id, order_number").in_("id", order_ids).execute()
    return {str(row["id"]): int(row["order_number"]) for row in (response.data or [])}


def _fetch_courier_ids(client, courier_ids: list[str]) -> set[str]:
    if not courier_ids:
        return set()
    response = client.table(COURIERS_TABLE).select("id").in_("id", courier_ids).execute()
    return {str(row["id"]) for row in (response.data or [])}


def apply_reorder(updates: Sequence[ReorderUpdateModel]) -> int:
    """Validate and apply the whole batch in one transactional RPC.

    Raises:
        DatabaseUnavailableError: Supabase is not configured
        AssignmentValidationError: The batch is rejected; nothing is written
    """
    check_batch_unique(updates)
    client = require_supabase_client()

    order_ids = [u.order_id for u in updates]
    courier_ids = sorted({cid for cid in (normalize_courier_id(u.courier_id) for u in updates) if cid})
    validate_reorder(
        updates,
        _fetch_current_numbers(client, order_ids),
        _fetch_courier_ids(client, courier_ids),
    )

    client.rpc(
        APPLY_ASSIGNMENT_RPC,
        {
            "updates": [
                {
                    "order_id": u.order_id,
                    "order_number": u.order_number,
                    "courier_id": normalize_courier_id(u.courier_id),
                }
                for u in updates
            ]
        },
    ).execute()
    logging.info(f"Applied order assignment for {len(updates)} order(s) across {len(courier_ids)} courier(s)")
    return len(updates)
