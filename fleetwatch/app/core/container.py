"""
Service wiring.

Builds the stores and services for one application instance. Nothing here
is a process-wide singleton: tests and parallel instances build their own.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from fleetwatch.app.core.config import settings
from fleetwatch.app.domain.geofence.hysteresis import GeofenceThresholds
from fleetwatch.app.services.driver_state_store import DriverStateStore
from fleetwatch.app.services.events import EventBus, build_event_bus
from fleetwatch.app.services.idempotency import IdempotencyStore
from fleetwatch.app.services.ingress import IngressGateway
from fleetwatch.app.services.processor import GeofenceProcessor
from fleetwatch.app.services.queue import DurableQueue
from fleetwatch.app.services.route_resolver import HttpRouteResolver, RouteResolver, SqlRouteResolver
from fleetwatch.app.services.route_sync import RouteSyncService
from fleetwatch.app.services.tms_client import TmsClient
from fleetwatch.app.services.worker import QueueWorker


@dataclass
class ServiceContainer:
    idempotency: IdempotencyStore
    queue: DurableQueue
    state_store: DriverStateStore
    route_resolver: RouteResolver
    event_bus: EventBus
    ingress: IngressGateway
    processor: GeofenceProcessor
    worker: QueueWorker
    route_sync: RouteSyncService
    tms_client: Optional[TmsClient] = None
    worker_task: Optional[asyncio.Task] = None

    def start_worker(self) -> asyncio.Task:
        self.worker_task = asyncio.create_task(self.worker.run_forever())
        return self.worker_task

    async def aclose(self) -> None:
        # The in-flight batch may still call the TMS API
        self.worker.stop()
        if self.worker_task is not None:
            await self.worker_task
            self.worker_task = None
        if self.tms_client is not None:
            await self.tms_client.aclose()


def build_services(
    session_factory,
    redis,
    tms_client: TmsClient = None,
    event_bus: EventBus = None,
    route_resolver: RouteResolver = None,
    thresholds: GeofenceThresholds = None,
) -> ServiceContainer:
    """Assemble the pipeline around a session factory and a redis client."""
    if tms_client is None and (settings.route_source == "http" or settings.tms_api_url):
        tms_client = TmsClient()

    if route_resolver is None:
        if settings.route_source == "http":
            route_resolver = HttpRouteResolver(tms_client)
        else:
            route_resolver = SqlRouteResolver(session_factory)

    event_bus = event_bus or build_event_bus(redis)
    idempotency = IdempotencyStore(redis)
    queue = DurableQueue(session_factory)
    state_store = DriverStateStore(session_factory)
    processor = GeofenceProcessor(
        state_store,
        route_resolver,
        event_bus,
        thresholds=thresholds or GeofenceThresholds.from_settings(settings),
    )

    return ServiceContainer(
        idempotency=idempotency,
        queue=queue,
        state_store=state_store,
        route_resolver=route_resolver,
        event_bus=event_bus,
        ingress=IngressGateway(idempotency, queue),
        processor=processor,
        worker=QueueWorker(queue, processor),
        route_sync=RouteSyncService(session_factory, state_store, event_bus, tms_client=tms_client),
        tms_client=tms_client,
    )


async def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the services built at startup."""
    return request.app.state.services
