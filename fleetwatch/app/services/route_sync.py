"""
TMS Sync Service.

Keeps local route snapshots in step with the TMS and binds drivers to
their active route. Fed by the signed TMS webhook or by polling the TMS API.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select, delete
from sqlalchemy.exc import OperationalError

from fleetwatch.app.core.clock import utcnow
from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import StaleStateError, TransientDependencyError
from fleetwatch.app.core.reliability import bounded
from fleetwatch.app.models.driver_enums import DriverPhase
from fleetwatch.app.models.route import Route, RouteStop
from fleetwatch.app.models.route_enums import RouteStatus
from fleetwatch.app.schemas.route import RouteSnapshot, TmsRoute
from fleetwatch.app.services.driver_state_store import DriverStateStore
from fleetwatch.app.models.event_enums import DomainEventType, EventSource
from fleetwatch.app.services.events import EventBus
from fleetwatch.app.services.route_resolver import snapshot_from_tms
from fleetwatch.app.services.tms_client import TmsClient

logger = logging.getLogger("fleetwatch.tms")


@dataclass
class SyncReport:
    routes_seen: int = 0
    routes_upserted: int = 0
    drivers_assigned: int = 0


class RouteSyncService:

    def __init__(
        self,
        session_factory,
        state_store: DriverStateStore,
        event_bus: EventBus,
        tms_client: TmsClient = None,
        concurrency: int = None,
        timeout: float = None,
    ):
        self.session_factory = session_factory
        self.state_store = state_store
        self.event_bus = event_bus
        self.tms_client = tms_client
        self.concurrency = concurrency if concurrency is not None else settings.tms_sync_concurrency
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds

    async def upsert_route(self, payload: TmsRoute) -> RouteSnapshot:
        """Replace the local snapshot of a route and announce it."""
        snapshot = snapshot_from_tms(payload)
        try:
            await bounded(self._write_snapshot(snapshot, payload.shipment_id), self.timeout, "route-store")
        except OperationalError as e:
            raise TransientDependencyError("route-store", str(e.orig) if e.orig else str(e))

        updated_at = snapshot.updated_at or utcnow()
        await self.event_bus.publish(
            DomainEventType.TMS_UPDATED,
            {
                "routeId": snapshot.route_id,
                "driverId": snapshot.driver_id,
                "stopCount": len(snapshot.stops),
                "updatedAt": updated_at.isoformat(),
            },
            EventSource.TMS,
        )
        return snapshot

    async def _write_snapshot(self, snapshot: RouteSnapshot, shipment_id) -> None:
        async with self.session_factory() as db:
            result = await db.execute(select(Route).where(Route.route_id == snapshot.route_id))
            route = result.scalar_one_or_none()
            if route is None:
                route = Route(route_id=snapshot.route_id)
                db.add(route)

            route.driver_id = snapshot.driver_id
            route.shipment_id = shipment_id
            route.status = snapshot.status
            route.updated_at = snapshot.updated_at or utcnow()

            await db.execute(delete(RouteStop).where(RouteStop.route_id == snapshot.route_id))
            await db.flush()
            db.add_all([
                RouteStop(
                    route_id=snapshot.route_id,
                    stop_id=stop.stop_id,
                    sequence=stop.sequence,
                    stop_type=stop.stop_type,
                    lat=stop.lat,
                    lng=stop.lng,
                    radius_m=stop.radius_m,
                )
                for stop in snapshot.stops
            ])
            await db.commit()

        logger.info(
            "Route snapshot stored",
            extra={"route_id": snapshot.route_id, "driver_id": snapshot.driver_id, "stops": len(snapshot.stops)},
        )

    async def ensure_driver_assigned(self, driver_id: str, route_id: str) -> bool:
        """
        Bind a driver to a route unless it is already on it.

        A new route restarts progress: first stop, ENROUTE, counters cleared.

        Returns:
            True if the driver state changed
        """
        for _ in range(settings.state_write_attempts):
            current = await self.state_store.get(driver_id)
            if current is not None and current.route_id == route_id:
                return False
            try:
                await self.state_store.update(
                    driver_id,
                    {
                        "route_id": route_id,
                        "current_stop_index": 0,
                        "phase": DriverPhase.ENROUTE,
                        "inside_count": 0,
                        "outside_count": 0,
                        "arrived_at": None,
                        "departed_at": None,
                    },
                    expected_version=current.version if current is not None else 0,
                )
            except StaleStateError:
                continue
            logger.info("Driver assigned to route", extra={"driver_id": driver_id, "route_id": route_id})
            return True

        raise TransientDependencyError("driver-state-store", f"Could not assign driver {driver_id} to {route_id}")

    async def apply_route(self, payload: TmsRoute) -> bool:
        """Upsert a route and bind its driver when it is the active one."""
        await self.upsert_route(payload)
        if payload.status == RouteStatus.EN_ROUTE:
            return await self.ensure_driver_assigned(payload.driver_id, payload.id)
        return False

    async def sync_from_tms(self) -> SyncReport:
        """
        Poll the TMS for all routes and apply them with bounded concurrency.

        A failing route is logged and skipped; the rest still sync.
        """
        if self.tms_client is None:
            raise RuntimeError("TMS client not configured")

        routes = await self.tms_client.list_routes()
        report = SyncReport(routes_seen=len(routes))
        gate = asyncio.Semaphore(max(1, self.concurrency))

        async def apply(route: TmsRoute):
            async with gate:
                try:
                    assigned = await self.apply_route(route)
                except Exception:
                    logger.exception("TMS route sync failed", extra={"route_id": route.id})
                    return
                report.routes_upserted += 1
                if assigned:
                    report.drivers_assigned += 1

        await asyncio.gather(*(apply(route) for route in routes))
        logger.info(
            "TMS sync done",
            extra={
                "routes_seen": report.routes_seen,
                "routes_upserted": report.routes_upserted,
                "drivers_assigned": report.drivers_assigned,
            },
        )
        return report
