"""Dispatch request/response schemas."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LatLngModel(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class OptimizeStopModel(_CamelModel):
    order_id: str = Field(..., alias="orderId")
    lat: Optional[float] = None
    lng: Optional[float] = None


class OptimizeRouteInput(_CamelModel):
    container_id: str = Field(..., alias="containerId", min_length=1)
    start_point: Optional[LatLngModel] = Field(default=None, alias="startPoint")
    stops: List[OptimizeStopModel] = Field(default_factory=list)


class OptimizeRequest(BaseModel):
    routes: List[OptimizeRouteInput] = Field(..., min_length=1)


class OptimizeRouteOutput(_CamelModel):
    container_id: str = Field(..., alias="containerId")
    ordered_order_ids: List[str] = Field(default_factory=list, alias="orderedOrderIds")
    polyline: List[LatLngModel] = Field(default_factory=list)
    duration_sec: Optional[float] = Field(default=None, alias="durationSec")
    distance_km: Optional[float] = Field(default=None, alias="distanceKm")
    source: Literal["osrm", "fallback", "none"]


class OptimizeResponse(BaseModel):
    routes: List[OptimizeRouteOutput]
    provider: Literal["osrm", "fallback"]


class ExpandUrlResponse(_CamelModel):
    expanded_url: str = Field(..., alias="expandedUrl")


class ReorderUpdateModel(_CamelModel):
    order_id: str = Field(..., alias="orderId", min_length=1)
    order_number: int = Field(..., alias="orderNumber")
    courier_id: Optional[str] = Field(default=None, alias="courierId")


class ReorderRequest(BaseModel):
    updates: List[ReorderUpdateModel] = Field(..., min_length=1)


class ReorderResponse(BaseModel):
    success: bool
    updated: int


class LiveMapPointModel(BaseModel):
    id: str
    name: str
    lat: float
    lng: float


class LiveMapResponse(_CamelModel):
    server_time: str = Field(..., alias="serverTime")
    couriers: List[LiveMapPointModel]
    clients: List[LiveMapPointModel]
    version_token: str = Field(..., alias="versionToken")
