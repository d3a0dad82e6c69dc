"""
Geofence Processor.

Consumes accepted position reports and advances the per-driver state
machine:

1. load driver state (default IDLE state if absent)
2. record the last position
3. bind a route if none is bound yet
4. evaluate the sample against the current stop (hysteresis)
5. persist with a write conditional on the version read in step 1
6. publish gps.received and any transition event

A version conflict means another writer touched the driver in between;
the whole read-compute-write is re-run a bounded number of times.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import StaleStateError, TransientDependencyError
from fleetwatch.app.domain.geofence.hysteresis import DomainEvent, GeofenceThresholds, evaluate_sample
from fleetwatch.app.models.driver_enums import DriverPhase
from fleetwatch.app.models.driver_state import DriverState
from fleetwatch.app.schemas.gps import PositionReport
from fleetwatch.app.services.driver_state_store import DriverStateStore, new_driver_state
from fleetwatch.app.models.event_enums import DomainEventType, EventSource
from fleetwatch.app.services.events import EventBus
from fleetwatch.app.services.route_resolver import RouteResolver

logger = logging.getLogger("fleetwatch.processor")


@dataclass
class ProcessingResult:
    """What one report did to its driver."""
    state: DriverState
    events: List[DomainEvent] = field(default_factory=list)
    route_bound: bool = False
    attempts: int = 1


class GeofenceProcessor:

    def __init__(
        self,
        state_store: DriverStateStore,
        route_resolver: RouteResolver,
        event_bus: EventBus,
        thresholds: GeofenceThresholds = None,
        max_attempts: int = None,
    ):
        self.state_store = state_store
        self.route_resolver = route_resolver
        self.event_bus = event_bus
        self.thresholds = thresholds or GeofenceThresholds.from_settings(settings)
        self.max_attempts = max_attempts if max_attempts is not None else settings.state_write_attempts

    async def process(self, report: PositionReport) -> ProcessingResult:
        """
        Apply one report to its driver's state.

        Raises:
            TransientDependencyError: dependency outage, or the version conflict
                persisted through every attempt; the message should be redelivered
        """
        last_conflict: Optional[StaleStateError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._apply(report)
            except StaleStateError as e:
                last_conflict = e
                logger.info(
                    "Driver state conflict, retrying",
                    extra={"driver_id": report.driver_id, "event_id": report.event_id, "attempt": attempt},
                )
                continue
            result.attempts = attempt
            await self._publish(report, result.events)
            return result

        raise TransientDependencyError(
            "driver-state-store",
            f"Driver {report.driver_id} kept changing during {self.max_attempts} attempts: {last_conflict}",
        )

    async def _apply(self, report: PositionReport) -> ProcessingResult:
        # 1. Load (or start) the driver's state
        state = await self.state_store.get(report.driver_id)
        if state is None:
            state = new_driver_state(report.driver_id)
        read_version = state.version

        # 2. Position is always recorded
        changes: Dict[str, Any] = {
            "last_lat": report.lat,
            "last_lon": report.lng,
            "last_update_at": report.timestamp,
        }
        view = _StateView.of(state)
        route_bound = False

        # 3. Route binding
        if view.route_id:
            route = await self.route_resolver.get_route(view.route_id)
        else:
            route = await self.route_resolver.get_current_route_for_driver(report.driver_id)
            if route is not None:
                binding = {
                    "route_id": route.route_id,
                    "current_stop_index": 0,
                    "phase": DriverPhase.ENROUTE,
                    "inside_count": 0,
                    "outside_count": 0,
                }
                changes.update(binding)
                view.apply(binding)
                route_bound = True
                logger.info(
                    "Driver bound to route",
                    extra={"driver_id": report.driver_id, "route_id": route.route_id},
                )

        events: List[DomainEvent] = []
        if route is None or not route.stops:
            logger.debug(
                "No usable route, position recorded only",
                extra={"driver_id": report.driver_id, "event_id": report.event_id, "route_id": view.route_id},
            )
        elif view.phase == DriverPhase.COMPLETED:
            logger.debug(
                "Route already completed, position recorded only",
                extra={"driver_id": report.driver_id, "route_id": view.route_id},
            )
        else:
            # 4-7. Geofence evaluation and transition
            step = evaluate_sample(view, route, report, self.thresholds)
            changes.update(step.changes)
            if step.event is not None:
                events.append(step.event)
                logger.info(
                    "Geofence transition %s",
                    step.event.type,
                    extra={
                        "driver_id": report.driver_id,
                        "event_id": report.event_id,
                        "route_id": route.route_id,
                        "stop_id": step.stop.stop_id,
                        "stop_index": step.stop_index,
                        "distance_m": round(step.distance_m, 1),
                    },
                )

        # 8. Persist, conditional on the version we read
        new_state = await self.state_store.update(report.driver_id, changes, expected_version=read_version)
        return ProcessingResult(state=new_state, events=events, route_bound=route_bound)

    async def _publish(self, report: PositionReport, events: List[DomainEvent]) -> None:
        # State is already durable; publish failures are logged by the bus
        await self.event_bus.publish(
            DomainEventType.GPS_RECEIVED,
            {"eventId": report.event_id, "driverId": report.driver_id},
            EventSource.INGEST,
        )
        for event in events:
            await self.event_bus.publish(event.type, event.detail, EventSource.DETECTOR)


@dataclass
class _StateView:
    """Mutable working copy of the fields the state machine reads."""
    route_id: Optional[str]
    current_stop_index: Optional[int]
    phase: DriverPhase
    inside_count: int
    outside_count: int

    @classmethod
    def of(cls, state: DriverState) -> "_StateView":
        return cls(
            route_id=state.route_id,
            current_stop_index=state.current_stop_index,
            phase=state.phase or DriverPhase.IDLE,
            inside_count=state.inside_count or 0,
            outside_count=state.outside_count or 0,
        )

    def apply(self, changes: Dict[str, Any]) -> None:
        for name, value in changes.items():
            setattr(self, name, value)
