"""
Route-related enumerations.
"""

import enum


class RouteStatus(str, enum.Enum):
    """Route status as reported by the TMS."""
    PLANNED = "PLANNED"
    EN_ROUTE = "EN_ROUTE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StopType(str, enum.Enum):
    """Route stop type enumeration."""
    PICKUP = "PICKUP"  # Collect shipment
    DELIVERY = "DELIVERY"  # Hand over shipment
