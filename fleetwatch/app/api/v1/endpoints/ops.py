"""
Ops API Endpoints.

Queue health, dead letter inspection and redrive, manual TMS sync.
Guarded by the ops token.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleetwatch.app.core.container import ServiceContainer, get_services
from fleetwatch.app.core.guards import require_ops_token
from fleetwatch.app.db.session import get_db
from fleetwatch.app.models.dlq import DeadLetterQueue, DLQStatus
from fleetwatch.app.schemas.ops import DeadLetterListResponse, DeadLetterResponse, QueueStatsResponse
from fleetwatch.app.schemas.route import RouteSyncResponse

router = APIRouter(prefix="/ops", tags=["Ops"], dependencies=[Depends(require_ops_token)])


@router.get("/dlq", response_model=DeadLetterListResponse)
async def list_dead_letters(
    status_filter: Optional[DLQStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    """List dead-lettered messages, newest first."""
    count_query = select(func.count(DeadLetterQueue.id))
    query = select(DeadLetterQueue)
    if status_filter is not None:
        count_query = count_query.where(DeadLetterQueue.status == status_filter)
        query = query.where(DeadLetterQueue.status == status_filter)

    total = (await db.execute(count_query)).scalar()

    offset = (page - 1) * page_size
    result = await db.execute(query.order_by(DeadLetterQueue.id.desc()).offset(offset).limit(page_size))

    return DeadLetterListResponse(
        items=[DeadLetterResponse.model_validate(item) for item in result.scalars().all()],
        total=total
    )


@router.post("/dlq/{dlq_id}/redrive", response_model=DeadLetterResponse)
async def redrive_dead_letter(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    services: ServiceContainer = Depends(get_services)
):
    """Put a dead-lettered message back on its partition."""
    item = await services.queue.redrive(dlq_id)
    return DeadLetterResponse.model_validate(item)


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def queue_stats(services: ServiceContainer = Depends(get_services)):
    return QueueStatsResponse(**await services.queue.stats())


@router.post("/tms/sync", response_model=RouteSyncResponse)
async def trigger_tms_sync(services: ServiceContainer = Depends(get_services)):
    """Pull all routes from the TMS now."""
    report = await services.route_sync.sync_from_tms()
    return RouteSyncResponse(
        routes_seen=report.routes_seen,
        routes_upserted=report.routes_upserted,
        drivers_assigned=report.drivers_assigned
    )
