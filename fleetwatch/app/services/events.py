"""
Domain Event Bus.

Fire-and-forget publication of derived business events. Delivery is
independent of state durability: a failed publish is logged and swallowed,
consumers dedupe by eventId + event type.
"""

import json
import logging
from typing import Any, Dict, Optional

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.reliability import bounded
from fleetwatch.app.models.event_enums import EventSource


logger = logging.getLogger("fleetwatch.events")


class RedisStreamBackend:
    """Appends events to a Redis stream."""

    def __init__(self, redis, stream: str, maxlen: int = 10000):
        self.redis = redis
        self.stream = stream
        self.maxlen = maxlen

    async def send(self, event_type: str, detail: Dict[str, Any], source: str) -> None:
        await self.redis.xadd(
            self.stream,
            {"type": event_type, "source": source, "detail": json.dumps(detail, default=str)},
            maxlen=self.maxlen,
            approximate=True,
        )


class EventBus:
    """
    Publishes domain events through an optional backend.

    With no backend configured `publish` is a no-op.
    """

    def __init__(self, backend=None, timeout: float = None):
        self.backend = backend
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds

    async def publish(self, event_type: str, detail: Dict[str, Any], source: str = EventSource.DETECTOR) -> bool:
        """
        Publish one event.

        Returns:
            True if the backend accepted it, False on no backend or failure
        """
        if self.backend is None:
            return False
        try:
            await bounded(self.backend.send(event_type, detail, source), self.timeout, "event-bus")
        except Exception as e:
            logger.error(
                "Event publish failed: %s",
                e,
                extra={
                    "event_type": event_type,
                    "event_id": detail.get("eventId"),
                    "driver_id": detail.get("driverId"),
                },
            )
            return False
        return True


def build_event_bus(redis=None, backend_name: Optional[str] = None) -> EventBus:
    """Event bus for the configured backend ("none" or "redis")."""
    backend_name = backend_name or settings.event_bus_backend
    if backend_name == "redis" and redis is not None:
        return EventBus(RedisStreamBackend(redis, settings.event_bus_name, settings.event_stream_maxlen))
    if backend_name not in ("none", "redis"):
        logger.warning("Unknown event bus backend %r, events disabled", backend_name)
    return EventBus()
