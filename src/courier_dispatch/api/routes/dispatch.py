"""Dispatch endpoints: batched route optimization and short-link expansion."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Query, status

from ...schemas.dispatch import ExpandUrlResponse, OptimizeRequest, OptimizeResponse
from ...services.coordinates.expander import UrlExpanderClient, UrlExpansionError
from ...services.routing.service import optimize_routes

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.post("/optimize", response_model=OptimizeResponse, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRequest) -> OptimizeResponse:
    try:
        return optimize_routes(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error optimizing routes: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize routes: {str(exc)}",
        ) from exc


@router.get("/expand-url", response_model=ExpandUrlResponse, status_code=status.HTTP_200_OK)
async def expand_url(url: str = Query(..., min_length=1)) -> ExpandUrlResponse:
    """Follow redirects of a shortened map link and return the final URL."""
    if urlparse(url).scheme not in ("http", "https"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="URL must be http or https")

    expander = UrlExpanderClient()
    try:
        expanded = await expander.expand(url)
    except UrlExpansionError as exc:
        logging.warning(f"Failed to expand {url}: {exc}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to expand URL") from exc
    finally:
        await expander.aclose()
    return ExpandUrlResponse(expanded_url=expanded)
