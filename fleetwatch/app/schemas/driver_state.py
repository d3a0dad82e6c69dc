"""
Driver state response schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from fleetwatch.app.models.driver_enums import DriverPhase


class DriverStateResponse(BaseModel):
    """Persisted geofence state of a driver."""
    driver_id: str
    route_id: Optional[str]
    current_stop_index: Optional[int]
    phase: DriverPhase
    last_lat: Optional[float]
    last_lon: Optional[float]
    last_update_at: Optional[datetime]
    arrived_at: Optional[datetime]
    departed_at: Optional[datetime]
    inside_count: int
    outside_count: int
    version: int

    class Config:
        from_attributes = True
