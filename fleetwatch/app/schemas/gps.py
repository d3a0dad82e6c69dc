"""
GPS position report schemas.

The ingress boundary validates every field here; nothing downstream
re-checks presence or ranges.
"""

import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")


class PositionReport(BaseModel):
    """A single GPS ping as sent by a device producer."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    event_id: str = Field(..., alias="eventId", min_length=8, max_length=256, strict=True)
    driver_id: str = Field(..., alias="driverId", min_length=1, max_length=128, strict=True)
    timestamp: datetime
    lat: float = Field(..., ge=-90, le=90, strict=True, allow_inf_nan=False)
    lng: float = Field(..., ge=-180, le=180, strict=True, allow_inf_nan=False)
    speed_kph: Optional[float] = Field(None, alias="speedKph", ge=0, strict=True, allow_inf_nan=False)

    @field_validator("driver_id")
    @classmethod
    def driver_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("driverId must not be blank")
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def timestamp_is_iso_string(cls, value):
        # pydantic also parses epoch numbers, digit strings and bare dates
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str) or not ISO_DATETIME.match(value):
            raise ValueError("timestamp must be an ISO-8601 date-time string")
        return value

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def speed(self) -> float:
        """Reported speed, treating a missing reading as stationary."""
        return self.speed_kph if self.speed_kph is not None else 0.0


class QueueEnvelope(BaseModel):
    """Message placed on the durable queue by the ingress gateway."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["gps"] = "gps"
    payload: PositionReport
    received_at: datetime = Field(..., alias="receivedAt")
    correlation_id: Optional[str] = Field(None, alias="correlationId")


class IngressResponse(BaseModel):
    """Response body of the GPS webhook."""
    ok: bool = True
    deduped: Optional[bool] = None
