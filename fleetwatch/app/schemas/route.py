"""
Route schemas.

`RouteSnapshot` is the read-only view handed to the geofence processor;
the `Tms*` models describe route payloads as the TMS sends them.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List
from fleetwatch.app.models.route_enums import RouteStatus, StopType


class StopSnapshot(BaseModel):
    """A stop as seen by the processor."""
    model_config = ConfigDict(frozen=True)

    stop_id: str
    stop_type: StopType
    sequence: int
    lat: float
    lng: float
    radius_m: Optional[float] = None


class RouteSnapshot(BaseModel):
    """Route with its stops in visiting order."""
    model_config = ConfigDict(frozen=True)

    route_id: str
    driver_id: str
    status: RouteStatus
    updated_at: Optional[datetime] = None
    stops: List[StopSnapshot] = Field(default_factory=list)


class TmsLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class TmsStop(BaseModel):
    """Stop payload from the TMS."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    sequence: Optional[int] = None
    type: StopType
    name: Optional[str] = None
    location: TmsLocation
    radius_m: Optional[float] = Field(None, alias="radiusM", ge=0)
    window_start: Optional[str] = Field(None, alias="windowStart")
    window_end: Optional[str] = Field(None, alias="windowEnd")


class TmsRoute(BaseModel):
    """Route payload from the TMS (webhook body or API response)."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    driver_id: str = Field(..., alias="driverId", min_length=1)
    shipment_id: Optional[str] = Field(None, alias="shipmentId")
    status: RouteStatus = RouteStatus.PLANNED
    stops: List[TmsStop] = Field(default_factory=list)
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class RouteSyncResponse(BaseModel):
    """Result of a TMS sync run."""
    routes_seen: int
    routes_upserted: int
    drivers_assigned: int
