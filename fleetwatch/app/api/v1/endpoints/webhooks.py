"""
Webhook API Endpoints.

Signed producer callbacks: GPS position reports and TMS route updates.
Both read the raw body so the signature is checked over the exact bytes.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.container import ServiceContainer, get_services
from fleetwatch.app.core.exceptions import ValidationError, jsonable_errors
from fleetwatch.app.core.signature import verify_signature
from fleetwatch.app.schemas.gps import IngressResponse
from fleetwatch.app.schemas.route import TmsRoute
from fleetwatch.app.services.ingress import parse_json_body

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/gps", status_code=status.HTTP_202_ACCEPTED)
async def receive_gps(
    request: Request,
    services: ServiceContainer = Depends(get_services)
):
    """
    Accept a GPS position report.

    Returns 202 when queued, 200 with `deduped` for a repeated eventId,
    400 for schema violations and 401 for a missing or forged signature.
    """
    raw_body = await request.body()
    signature = request.headers.get(settings.signature_header)

    result = await services.ingress.accept(raw_body, signature)

    if result.deduped:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=IngressResponse(ok=True, deduped=True).model_dump(exclude_none=True)
        )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=IngressResponse(ok=True).model_dump(exclude_none=True)
    )


@router.post("/tms")
async def receive_tms_route(
    request: Request,
    services: ServiceContainer = Depends(get_services)
):
    """
    Accept a route snapshot from the TMS.

    Stores the route, publishes `tms.updated` and binds the driver when the
    route is EN_ROUTE.
    """
    raw_body = await request.body()
    verify_signature(raw_body, request.headers.get(settings.signature_header), settings.hmac_secret_tms)

    try:
        payload = TmsRoute.model_validate(parse_json_body(raw_body))
    except PydanticValidationError as e:
        raise ValidationError("Invalid route payload", details={"errors": jsonable_errors(e.errors())})

    assigned = await services.route_sync.apply_route(payload)

    return {
        "ok": True,
        "routeId": payload.id,
        "stopCount": len(payload.stops),
        "driverAssigned": assigned,
    }
