"""
Driver State API Endpoints.

Read-only view of the geofence state the processor maintains.
"""

from fastapi import APIRouter, Depends, Path

from fleetwatch.app.core.container import ServiceContainer, get_services
from fleetwatch.app.core.exceptions import NotFoundError
from fleetwatch.app.schemas.driver_state import DriverStateResponse

router = APIRouter(prefix="/drivers", tags=["Drivers"])


@router.get("/{driver_id}/state", response_model=DriverStateResponse)
async def get_driver_state(
    driver_id: str = Path(..., description="Driver ID"),
    services: ServiceContainer = Depends(get_services)
):
    """Current phase, stop index and counters of a driver."""
    state = await services.state_store.get(driver_id)
    if state is None:
        raise NotFoundError("Driver state", driver_id)
    return DriverStateResponse.model_validate(state)
