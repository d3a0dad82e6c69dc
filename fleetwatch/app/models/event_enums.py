"""
Domain event enumerations.
"""


class DomainEventType:
    """Event type constants."""
    GPS_RECEIVED = "gps.received"
    TMS_UPDATED = "tms.updated"
    DRIVER_ARRIVED_PICKUP = "driver.arrived.pickup"
    DRIVER_ARRIVED_DELIVERY = "driver.arrived.delivery"
    DRIVER_DEPARTED_STOP = "driver.departed.stop"


class EventSource:
    DETECTOR = "fleetwatch.detector"
    INGEST = "fleetwatch.ingest"
    TMS = "fleetwatch.tms"
