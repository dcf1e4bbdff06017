"""Live map endpoint with conditional GET support."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Response, status

from ...db.supabase import DatabaseUnavailableError
from ...persistence.live_map import compute_etag, load_live_map
from ...schemas.dispatch import LiveMapResponse

router = APIRouter(tags=["live-map"])

CACHE_CONTROL = "private, no-cache, must-revalidate"


@router.get("/live-map", response_model=LiveMapResponse, response_model_by_alias=True)
def live_map(response: Response, if_none_match: Optional[str] = Header(default=None)):
    try:
        data = load_live_map()
    except DatabaseUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error fetching live map data: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to load live map: {str(exc)}",
        ) from exc

    etag = compute_etag(data.latest_update_ms, len(data.couriers), len(data.clients))
    headers = {"ETag": etag, "Cache-Control": CACHE_CONTROL}
    if if_none_match == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    response.headers.update(headers)
    return LiveMapResponse(
        server_time=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        couriers=data.couriers,
        clients=data.clients,
        version_token=etag,
    )
