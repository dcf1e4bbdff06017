"""Live courier and client positions read from the database."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from ..db.supabase import require_supabase_client
from ..models.domain import valid_lat_lng
from ..schemas.dispatch import LiveMapPointModel


@dataclass
class LiveMapData:
    couriers: list[LiveMapPointModel] = field(default_factory=list)
    clients: list[LiveMapPointModel] = field(default_factory=list)
    latest_update_ms: int = 0


def compute_etag(latest_update_ms: int, courier_count: int, client_count: int) -> str:
    return f'W/"{latest_update_ms}:{courier_count}:{client_count}"'


def _timestamp_ms(value: Any) -> int:
    if not isinstance(value, str) or not value:
        return 0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logging.warning(f"Unparseable updated_at value: {value!r}")
        return 0
    return int(parsed.timestamp() * 1000)


def rows_to_points(rows: Iterable[dict[str, Any]], name_keys: tuple[str, ...]) -> list[LiveMapPointModel]:
    """Rows with finite coordinates; the first non-blank name key wins."""
    points = []
    for row in rows:
        position = valid_lat_lng(row.get("latitude"), row.get("longitude"))
        if position is None or row.get("id") is None:
            continue
        name = next(
            (str(row[key]).strip() for key in name_keys if isinstance(row.get(key), str) and row[key].strip()),
            "",
        )
        points.append(LiveMapPointModel(id=str(row["id"]), name=name, lat=position.lat, lng=position.lng))
    return points


def latest_update_ms(*row_groups: Iterable[dict[str, Any]]) -> int:
    return max((_timestamp_ms(row.get("updated_at")) for rows in row_groups for row in rows), default=0)


def load_live_map() -> LiveMapData:
    """Active couriers and clients that have a known position."""
    client = require_supabase_client()

    courier_rows = (
        client.table("couriers")
        .select("id, name, latitude, longitude, updated_at")
        .eq("is_active", True)
        .not_.is_("latitude", "null")
        .not_.is_("longitude", "null")
        .execute()
    ).data or []
    client_rows = (
        client.table("customers")
        .select("id, name, nick_name, latitude, longitude, updated_at")
        .eq("is_active", True)
        .is_("deleted_at", "null")
        .not_.is_("latitude", "null")
        .not_.is_("longitude", "null")
        .execute()
    ).data or []

    return LiveMapData(
        couriers=rows_to_points(courier_rows, ("name",)),
        clients=rows_to_points(client_rows, ("nick_name", "name")),
        latest_update_ms=latest_update_ms(courier_rows, client_rows),
    )
