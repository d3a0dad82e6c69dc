"""
Geofence hysteresis state machine (Domain Logic).

Decides arrival and departure from one position sample at a time.
Pure: takes the current driver state and returns field changes plus the
domain event to emit, leaving persistence to the caller.

Phases: IDLE -> ENROUTE -> AT_STOP -> ENROUTE (next stop) -> ... -> COMPLETED
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fleetwatch.app.domain.geofence.geo import haversine_meters
from fleetwatch.app.models.driver_enums import DriverPhase
from fleetwatch.app.models.route_enums import StopType
from fleetwatch.app.schemas.gps import PositionReport
from fleetwatch.app.schemas.route import RouteSnapshot, StopSnapshot
from fleetwatch.app.models.event_enums import DomainEventType


@dataclass(frozen=True)
class GeofenceThresholds:
    """Tunable geofence parameters."""
    arrive_radius_m: float = 150
    depart_exit_radius_m: float = 200
    arrive_max_speed_kph: float = 15
    depart_min_speed_kph: float = 8
    arrive_dwell_pings: int = 2
    depart_dwell_pings: int = 2
    use_exit_radius_for_departure: bool = True

    @classmethod
    def from_settings(cls, settings) -> "GeofenceThresholds":
        return cls(
            arrive_radius_m=settings.arrive_radius_m,
            depart_exit_radius_m=settings.depart_exit_radius_m,
            arrive_max_speed_kph=settings.arrive_max_speed_kph,
            depart_min_speed_kph=settings.depart_min_speed_kph,
            arrive_dwell_pings=settings.arrive_dwell_pings,
            depart_dwell_pings=settings.depart_dwell_pings,
            use_exit_radius_for_departure=settings.use_exit_radius_for_departure,
        )

    def entry_radius(self, stop: StopSnapshot) -> float:
        return stop.radius_m if stop.radius_m is not None else self.arrive_radius_m

    def exit_radius(self, stop: StopSnapshot) -> float:
        """Boundary a driver must cross to count as outside while AT_STOP."""
        entry = self.entry_radius(stop)
        if not self.use_exit_radius_for_departure:
            return entry
        return max(entry, self.depart_exit_radius_m)


@dataclass
class DomainEvent:
    type: str
    detail: Dict[str, Any]


@dataclass
class GeofenceStep:
    """Outcome of evaluating one sample against the current stop."""
    stop: StopSnapshot
    stop_index: int
    distance_m: float
    is_inside: bool
    changes: Dict[str, Any] = field(default_factory=dict)
    event: Optional[DomainEvent] = None


def evaluate_sample(state, route: RouteSnapshot, report: PositionReport, thresholds: GeofenceThresholds) -> GeofenceStep:
    """
    Evaluate one position sample for a driver bound to `route`.

    `state` needs `phase`, `current_stop_index`, `inside_count` and
    `outside_count`. The route must have at least one stop.

    Counters are consecutive runs: a contrary sample resets the opposing run.
    """
    idx = min(state.current_stop_index or 0, len(route.stops) - 1)
    stop = route.stops[idx]
    at_stop = state.phase == DriverPhase.AT_STOP

    distance = haversine_meters(report.lat, report.lng, stop.lat, stop.lng)
    radius = thresholds.exit_radius(stop) if at_stop else thresholds.entry_radius(stop)
    is_inside = distance <= radius

    if is_inside:
        inside_count = (state.inside_count or 0) + 1
        outside_count = 0
    else:
        inside_count = 0
        outside_count = (state.outside_count or 0) + 1

    step = GeofenceStep(
        stop=stop,
        stop_index=idx,
        distance_m=distance,
        is_inside=is_inside,
        changes={"inside_count": inside_count, "outside_count": outside_count},
    )

    speed = report.speed
    occurred_at = report.timestamp.isoformat()

    if not at_stop:
        arrived = (
            is_inside
            and speed <= thresholds.arrive_max_speed_kph
            and inside_count >= thresholds.arrive_dwell_pings
        )
        if arrived:
            step.changes.update({
                "phase": DriverPhase.AT_STOP,
                "arrived_at": report.timestamp,
                "outside_count": 0,
            })
            step.event = DomainEvent(
                type=(
                    DomainEventType.DRIVER_ARRIVED_PICKUP
                    if stop.stop_type == StopType.PICKUP
                    else DomainEventType.DRIVER_ARRIVED_DELIVERY
                ),
                detail={
                    "eventId": report.event_id,
                    "driverId": report.driver_id,
                    "routeId": route.route_id,
                    "stopId": stop.stop_id,
                    "stopIndex": idx,
                    "lat": report.lat,
                    "lng": report.lng,
                    "occurredAt": occurred_at,
                },
            )
        return step

    departed = (
        not is_inside
        and speed >= thresholds.depart_min_speed_kph
        and outside_count >= thresholds.depart_dwell_pings
    )
    if departed:
        next_idx = idx + 1
        completed = next_idx >= len(route.stops)
        step.changes.update({
            "phase": DriverPhase.COMPLETED if completed else DriverPhase.ENROUTE,
            "current_stop_index": idx if completed else next_idx,
            "departed_at": report.timestamp,
            "inside_count": 0,
        })
        step.event = DomainEvent(
            type=DomainEventType.DRIVER_DEPARTED_STOP,
            detail={
                "eventId": report.event_id,
                "driverId": report.driver_id,
                "routeId": route.route_id,
                "stopId": stop.stop_id,
                "stopIndex": idx,
                "occurredAt": occurred_at,
            },
        )
    return step
