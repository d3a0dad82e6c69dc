"""
Driver tracking enumerations.
"""

import enum


class DriverPhase(str, enum.Enum):
    """Geofence phase of a driver along its bound route."""
    IDLE = "IDLE"  # No route bound yet
    ENROUTE = "ENROUTE"  # Travelling towards the current stop
    AT_STOP = "AT_STOP"  # Arrived and dwelling at the current stop
    COMPLETED = "COMPLETED"  # Departed the final stop of the route
