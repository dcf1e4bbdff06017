"""Order assignment endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from ...db.supabase import DatabaseUnavailableError
from ...persistence.assignments import AssignmentValidationError, apply_reorder
from ...schemas.dispatch import ReorderRequest, ReorderResponse

router = APIRouter(prefix="/orders", tags=["orders"])


@router.patch("/reorder", response_model=ReorderResponse, status_code=status.HTTP_200_OK)
def reorder(payload: ReorderRequest):
    """Apply new order numbers and courier assignment to a batch of orders, all or nothing."""
    try:
        updated = apply_reorder(payload.updates)
    except AssignmentValidationError as exc:
        body = {"detail": str(exc)}
        if exc.missing:
            body["missing"] = exc.missing
        return JSONResponse(status_code=exc.status_code, content=body)
    except DatabaseUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error applying order assignment: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to apply order assignment: {str(exc)}",
        ) from exc
    return ReorderResponse(success=True, updated=updated)
