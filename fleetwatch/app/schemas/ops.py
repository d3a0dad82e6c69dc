"""
Ops schemas for queue and dead-letter inspection.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Any, Dict
from fleetwatch.app.models.dlq import DLQStatus


class DeadLetterResponse(BaseModel):
    id: int
    message_id: Optional[int]
    message_type: str
    partition_key: str
    dedup_key: Optional[str]
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    receive_count: int
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeadLetterListResponse(BaseModel):
    items: List[DeadLetterResponse]
    total: int


class QueueStatsResponse(BaseModel):
    pending: int
    in_flight: int
    dead_lettered: int
