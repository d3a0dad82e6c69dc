"""
Durable Queue message model.

A row lives from enqueue until acknowledgement (or dead-lettering).
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index
from sqlalchemy.sql import func
from fleetwatch.app.db.session import Base


class QueueMessage(Base):
    """
    Queue Message model.

    `visible_at` implements the visibility window: a received message is
    hidden until it is acknowledged or the window expires.
    """
    __tablename__ = "queue_messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    partition_key = Column(String(128), nullable=False)
    dedup_key = Column(String(256), nullable=True, unique=True)
    message_type = Column(String(32), nullable=False)
    body = Column(JSON, nullable=False)

    receive_count = Column(Integer, default=0, nullable=False)
    visible_at = Column(DateTime(timezone=True), nullable=False)
    receipt_handle = Column(String(64), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_queue_messages_partition_id', 'partition_key', 'id'),
    )

    def __repr__(self):
        return f"<QueueMessage(id={self.id}, partition='{self.partition_key}', receives={self.receive_count})>"
