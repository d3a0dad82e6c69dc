"""
Durable Queue backed by the relational database.

Semantics:
- at-least-once: a received message stays hidden for the visibility window
  and reappears unless it is acknowledged;
- per-key ordering: only the oldest message of each partition is ever
  deliverable, so a partition is consumed one message at a time;
- dead-lettering: after `max_receive_count` failed deliveries the message is
  moved to the dead letter table;
- duplicate `dedup_key` enqueues are absorbed while the first is pending.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, OperationalError

from fleetwatch.app.core.clock import utcnow
from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import NotFoundError, TransientDependencyError
from fleetwatch.app.core.reliability import bounded
from fleetwatch.app.models.queue_message import QueueMessage
from fleetwatch.app.models.dlq import DeadLetterQueue, DLQStatus

logger = logging.getLogger("fleetwatch.queue")


@dataclass
class ReceivedMessage:
    """A delivered message; `receipt_handle` identifies this delivery."""
    id: int
    partition_key: str
    dedup_key: Optional[str]
    message_type: str
    body: Dict[str, Any]
    receive_count: int
    receipt_handle: str


class DurableQueue:

    def __init__(
        self,
        session_factory,
        visibility_timeout: int = None,
        max_receive_count: int = None,
        retry_delay: int = None,
        timeout: float = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.visibility_timeout = visibility_timeout if visibility_timeout is not None else settings.queue_visibility_timeout_seconds
        self.max_receive_count = max_receive_count if max_receive_count is not None else settings.queue_max_receive_count
        self.retry_delay = retry_delay if retry_delay is not None else settings.queue_retry_delay_seconds
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds
        self.clock = clock

    async def _run(self, coro):
        try:
            return await bounded(coro, self.timeout, "queue")
        except OperationalError as e:
            raise TransientDependencyError("queue", str(e.orig) if e.orig else str(e))

    async def enqueue(self, message: Dict[str, Any], partition_key: str, dedup_key: Optional[str] = None) -> bool:
        """
        Append a message to its partition.

        Returns:
            False if a pending message already carries `dedup_key`
        """
        return await self._run(self._enqueue(message, partition_key, dedup_key))

    async def _enqueue(self, message, partition_key, dedup_key) -> bool:
        async with self.session_factory() as db:
            db.add(QueueMessage(
                partition_key=partition_key,
                dedup_key=dedup_key,
                message_type=message.get("type", "unknown"),
                body=message,
                receive_count=0,
                visible_at=self.clock(),
            ))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Duplicate enqueue absorbed", extra={"dedup_key": dedup_key})
                return False
        return True

    async def receive(self, max_messages: int = 10) -> List[ReceivedMessage]:
        """Claim up to `max_messages` deliverable messages, at most one per partition."""
        return await self._run(self._receive(max_messages))

    async def _receive(self, max_messages: int) -> List[ReceivedMessage]:
        now = self.clock()
        claimed: List[ReceivedMessage] = []

        async with self.session_factory() as db:
            heads = (
                select(func.min(QueueMessage.id))
                .group_by(QueueMessage.partition_key)
            )
            result = await db.execute(
                select(QueueMessage)
                .where(QueueMessage.id.in_(heads), QueueMessage.visible_at <= now)
                .order_by(QueueMessage.id)
                .limit(max_messages)
            )
            candidates = result.scalars().all()

            for msg in candidates:
                if msg.receive_count >= self.max_receive_count:
                    # Consumer never acked nor released within its budget
                    await self._move_to_dead_letter(db, msg, msg.last_error or "Maximum receive count exceeded")
                    continue

                receipt = uuid.uuid4().hex
                claim = await db.execute(
                    update(QueueMessage)
                    .where(
                        QueueMessage.id == msg.id,
                        QueueMessage.receive_count == msg.receive_count,
                        QueueMessage.visible_at <= now,
                    )
                    .values(
                        receive_count=msg.receive_count + 1,
                        visible_at=now + timedelta(seconds=self.visibility_timeout),
                        receipt_handle=receipt,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claim.rowcount != 1:
                    # Another consumer won this delivery
                    continue

                claimed.append(ReceivedMessage(
                    id=msg.id,
                    partition_key=msg.partition_key,
                    dedup_key=msg.dedup_key,
                    message_type=msg.message_type,
                    body=msg.body,
                    receive_count=msg.receive_count + 1,
                    receipt_handle=receipt,
                ))

            await db.commit()

        return claimed

    async def ack(self, message: ReceivedMessage) -> bool:
        """Delete a delivered message. False if the delivery already expired."""
        return await self._run(self._ack(message))

    async def _ack(self, message: ReceivedMessage) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(QueueMessage).where(
                    QueueMessage.id == message.id,
                    QueueMessage.receipt_handle == message.receipt_handle,
                )
            )
            await db.commit()

        if result.rowcount != 1:
            logger.warning(
                "Ack for expired delivery ignored",
                extra={"message_id": message.id, "partition_key": message.partition_key},
            )
            return False
        return True

    async def release(self, message: ReceivedMessage, error: str) -> bool:
        """
        Report a failed delivery.

        The message reappears after the retry delay, or is dead-lettered once
        its receive budget is spent.

        Returns:
            True if the message was dead-lettered
        """
        return await self._run(self._release(message, error))

    async def _release(self, message: ReceivedMessage, error: str) -> bool:
        async with self.session_factory() as db:
            if message.receive_count >= self.max_receive_count:
                row = await self._owned(db, message)
                if row is None:
                    return False
                await self._move_to_dead_letter(db, row, error)
                await db.commit()
                return True

            await db.execute(
                update(QueueMessage)
                .where(
                    QueueMessage.id == message.id,
                    QueueMessage.receipt_handle == message.receipt_handle,
                )
                .values(
                    visible_at=self.clock() + timedelta(seconds=self.retry_delay),
                    last_error=error,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return False

    async def dead_letter(self, message: ReceivedMessage, error: str) -> bool:
        """Move a delivered message straight to the dead letter table."""
        return await self._run(self._dead_letter(message, error))

    async def _dead_letter(self, message: ReceivedMessage, error: str) -> bool:
        async with self.session_factory() as db:
            row = await self._owned(db, message)
            if row is None:
                return False
            await self._move_to_dead_letter(db, row, error)
            await db.commit()
        return True

    async def _owned(self, db, message: ReceivedMessage) -> Optional[QueueMessage]:
        result = await db.execute(
            select(QueueMessage).where(
                QueueMessage.id == message.id,
                QueueMessage.receipt_handle == message.receipt_handle,
            )
        )
        return result.scalar_one_or_none()

    async def _move_to_dead_letter(self, db, row: QueueMessage, error: str) -> None:
        db.add(DeadLetterQueue(
            message_id=row.id,
            message_type=row.message_type,
            partition_key=row.partition_key,
            dedup_key=row.dedup_key,
            error_message=error,
            payload=row.body,
            status=DLQStatus.FAILED,
            receive_count=row.receive_count,
        ))
        await db.execute(delete(QueueMessage).where(QueueMessage.id == row.id))
        logger.error(
            "Message moved to dead letter queue",
            extra={
                "message_id": row.id,
                "partition_key": row.partition_key,
                "dedup_key": row.dedup_key,
                "receive_count": row.receive_count,
                "error": error,
            },
        )

    async def redrive(self, dead_letter_id: int) -> DeadLetterQueue:
        """Re-enqueue a dead letter and mark it RETRYING."""
        return await self._run(self._redrive(dead_letter_id))

    async def _redrive(self, dead_letter_id: int) -> DeadLetterQueue:
        async with self.session_factory() as db:
            result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dead_letter_id))
            item = result.scalar_one_or_none()
            if item is None:
                raise NotFoundError("Dead letter", dead_letter_id)

            db.add(QueueMessage(
                partition_key=item.partition_key,
                dedup_key=item.dedup_key,
                message_type=item.message_type,
                body=item.payload or {},
                receive_count=0,
                visible_at=self.clock(),
            ))
            item.status = DLQStatus.RETRYING
            item.retry_count = (item.retry_count or 0) + 1
            item.last_retry_at = self.clock()
            try:
                await db.commit()
            except IntegrityError:
                # Same dedup key is already pending again
                await db.rollback()
                result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dead_letter_id))
                return result.scalar_one()
            await db.refresh(item)
            return item

    async def stats(self) -> Dict[str, int]:
        return await self._run(self._stats())

    async def _stats(self) -> Dict[str, int]:
        now = self.clock()
        async with self.session_factory() as db:
            pending = await db.execute(select(func.count(QueueMessage.id)).where(QueueMessage.visible_at <= now))
            in_flight = await db.execute(select(func.count(QueueMessage.id)).where(QueueMessage.visible_at > now))
            dead = await db.execute(
                select(func.count(DeadLetterQueue.id)).where(DeadLetterQueue.status == DLQStatus.FAILED)
            )
            return {
                "pending": pending.scalar() or 0,
                "in_flight": in_flight.scalar() or 0,
                "dead_lettered": dead.scalar() or 0,
            }
