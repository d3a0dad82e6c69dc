"""
Route Resolver.

Read-only lookup of a driver's route. A missing route is a legitimate
"not yet assigned" answer (None), never an error.

Current-route precedence: an EN_ROUTE route wins; otherwise the PLANNED
route with the earliest updatedAt; COMPLETED and CANCELLED are ignored.
"""

from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import TransientDependencyError
from fleetwatch.app.core.reliability import bounded
from fleetwatch.app.models.route import Route, RouteStop
from fleetwatch.app.models.route_enums import RouteStatus
from fleetwatch.app.schemas.route import RouteSnapshot, StopSnapshot, TmsRoute
from fleetwatch.app.services.tms_client import TmsClient


def _updated_key(route):
    # Routes without updatedAt sort first
    return (route.updated_at is not None, route.updated_at.timestamp() if route.updated_at else 0)


def select_current_route(routes: Iterable):
    """Pick the current route out of a driver's routes (see module docstring)."""
    routes = list(routes)
    en_route = [r for r in routes if r.status == RouteStatus.EN_ROUTE]
    if en_route:
        return sorted(en_route, key=_updated_key)[0]
    planned = [r for r in routes if r.status == RouteStatus.PLANNED]
    if planned:
        return sorted(planned, key=_updated_key)[0]
    return None


def snapshot_from_tms(route: TmsRoute) -> RouteSnapshot:
    """Normalize a TMS payload: stops ordered by sequence, ids filled in."""
    numbered = [
        (stop.sequence if stop.sequence is not None else position + 1, position, stop)
        for position, stop in enumerate(route.stops)
    ]
    numbered.sort(key=lambda item: (item[0], item[1]))
    stops: List[StopSnapshot] = [
        StopSnapshot(
            stop_id=stop.id or f"{route.id}-{position}",
            stop_type=stop.type,
            sequence=sequence,
            lat=stop.location.lat,
            lng=stop.location.lng,
            radius_m=stop.radius_m,
        )
        for sequence, position, stop in numbered
    ]
    return RouteSnapshot(
        route_id=route.id,
        driver_id=route.driver_id,
        status=route.status,
        updated_at=route.updated_at,
        stops=stops,
    )


class RouteResolver:
    """Interface implemented by the route sources."""

    async def get_route(self, route_id: str) -> Optional[RouteSnapshot]:
        raise NotImplementedError

    async def get_current_route_for_driver(self, driver_id: str) -> Optional[RouteSnapshot]:
        raise NotImplementedError


class SqlRouteResolver(RouteResolver):
    """Resolves routes from the snapshots written by the TMS sync."""

    def __init__(self, session_factory, timeout: float = None):
        self.session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds

    async def _run(self, coro):
        try:
            return await bounded(coro, self.timeout, "route-resolver")
        except OperationalError as e:
            raise TransientDependencyError("route-resolver", str(e.orig) if e.orig else str(e))

    async def get_route(self, route_id: str) -> Optional[RouteSnapshot]:
        return await self._run(self._get_route(route_id))

    async def _get_route(self, route_id: str) -> Optional[RouteSnapshot]:
        async with self.session_factory() as db:
            result = await db.execute(select(Route).where(Route.route_id == route_id))
            route = result.scalar_one_or_none()
            if route is None:
                return None
            return await self._snapshot(db, route)

    async def get_current_route_for_driver(self, driver_id: str) -> Optional[RouteSnapshot]:
        return await self._run(self._current_route(driver_id))

    async def _current_route(self, driver_id: str) -> Optional[RouteSnapshot]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Route).where(
                    Route.driver_id == driver_id,
                    Route.status.in_([RouteStatus.EN_ROUTE, RouteStatus.PLANNED]),
                )
            )
            pick = select_current_route(result.scalars().all())
            if pick is None:
                return None
            return await self._snapshot(db, pick)

    async def _snapshot(self, db, route: Route) -> RouteSnapshot:
        stops_result = await db.execute(
            select(RouteStop).where(RouteStop.route_id == route.route_id).order_by(RouteStop.sequence)
        )
        return RouteSnapshot(
            route_id=route.route_id,
            driver_id=route.driver_id,
            status=route.status,
            updated_at=route.updated_at,
            stops=[
                StopSnapshot(
                    stop_id=stop.stop_id,
                    stop_type=stop.stop_type,
                    sequence=stop.sequence,
                    lat=stop.lat,
                    lng=stop.lng,
                    radius_m=stop.radius_m,
                )
                for stop in stops_result.scalars().all()
            ],
        )


class HttpRouteResolver(RouteResolver):
    """Resolves routes by asking the TMS API directly."""

    def __init__(self, client: TmsClient):
        self.client = client

    async def get_route(self, route_id: str) -> Optional[RouteSnapshot]:
        route = await self.client.get_route(route_id)
        return snapshot_from_tms(route) if route else None

    async def get_current_route_for_driver(self, driver_id: str) -> Optional[RouteSnapshot]:
        if not await self.client.driver_exists(driver_id):
            return None
        pick = select_current_route(await self.client.list_driver_routes(driver_id))
        return snapshot_from_tms(pick) if pick else None
