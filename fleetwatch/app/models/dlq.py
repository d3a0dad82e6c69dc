"""
Dead Letter Queue (DLQ) Model.

Stores queue messages that exhausted their delivery attempts.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from fleetwatch.app.db.session import Base
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    PROCESSED = "PROCESSED"
    ARCHIVED = "ARCHIVED"  # Gave up


class DeadLetterQueue(Base):
    """
    Dead Letter Queue table.
    Captures poison messages for inspection and manual redrive.
    """
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    message_id = Column(Integer, nullable=True)
    message_type = Column(String(32), nullable=False, index=True)
    partition_key = Column(String(128), nullable=False, index=True)
    dedup_key = Column(String(256), nullable=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # Original envelope

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    receive_count = Column(Integer, default=0)
    retry_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DLQ(id={self.id}, partition='{self.partition_key}', status='{self.status}')>"
