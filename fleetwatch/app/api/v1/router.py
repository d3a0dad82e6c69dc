"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleetwatch.app.api.v1.endpoints import webhooks, drivers, ops

router = APIRouter()

# Producer webhooks (GPS devices, TMS)
router.include_router(webhooks.router)

# Driver state visibility
router.include_router(drivers.router)

# Operator endpoints
router.include_router(ops.router)
