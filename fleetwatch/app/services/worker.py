"""
Queue Worker.

Pulls batches from the durable queue and runs the geofence processor on
each record. Records are isolated: one failure is released for redelivery
while the rest of the batch is acked normally.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from pydantic import ValidationError as PydanticValidationError

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import PoisonMessage
from fleetwatch.app.core.observability import bind_correlation_id, reset_correlation_id
from fleetwatch.app.schemas.gps import PositionReport, QueueEnvelope
from fleetwatch.app.services.processor import GeofenceProcessor
from fleetwatch.app.services.queue import DurableQueue, ReceivedMessage

logger = logging.getLogger("fleetwatch.worker")


@dataclass
class BatchReport:
    received: int = 0
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    dead_lettered: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


def decode_envelope(message: ReceivedMessage) -> QueueEnvelope:
    try:
        return QueueEnvelope.model_validate(message.body)
    except PydanticValidationError as e:
        raise PoisonMessage(f"Malformed envelope: {e.error_count()} error(s)", message.id)


class QueueWorker:

    def __init__(
        self,
        queue: DurableQueue,
        processor: GeofenceProcessor,
        batch_size: int = None,
        poll_interval: float = None,
    ):
        self.queue = queue
        self.processor = processor
        self.batch_size = batch_size if batch_size is not None else settings.worker_batch_size
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        self._stopping = asyncio.Event()

    async def run_once(self) -> BatchReport:
        """Receive and handle one batch."""
        messages = await self.queue.receive(self.batch_size)
        report = BatchReport(received=len(messages))
        if not messages:
            return report

        # One message per partition, so the batch is safe to run concurrently
        outcomes = await asyncio.gather(*(self._handle(message) for message in messages))
        for message, outcome in zip(messages, outcomes):
            getattr(report, outcome).append(message.id)
        return report

    async def _handle(self, message: ReceivedMessage) -> str:
        context = {"message_id": message.id, "partition_key": message.partition_key}
        if message.message_type != "gps":
            logger.warning("Ignoring non-gps message", extra={**context, "type": message.message_type})
            try:
                await self.queue.ack(message)
            except Exception:
                # Visibility timeout will bring it back
                logger.exception("Could not ack skipped message", extra=context)
                return "failed"
            return "skipped"

        try:
            envelope = decode_envelope(message)
        except PoisonMessage as e:
            logger.error(e.message, extra=context)
            try:
                await self.queue.dead_letter(message, e.message)
            except Exception:
                logger.exception("Could not dead-letter message", extra=context)
                return "failed"
            return "dead_lettered"

        # Processor and store logs for this record carry the ingress request's id
        token = bind_correlation_id(envelope.correlation_id)
        try:
            return await self._process(message, envelope.payload)
        finally:
            reset_correlation_id(token)

    async def _process(self, message: ReceivedMessage, report: PositionReport) -> str:
        context = {
            "message_id": message.id,
            "driver_id": report.driver_id,
            "event_id": report.event_id,
            "receive_count": message.receive_count,
        }

        try:
            await self.processor.process(report)
        except Exception as e:
            logger.exception("Record failed", extra=context)
            try:
                dead = await self.queue.release(message, f"{type(e).__name__}: {e}")
            except Exception:
                # Visibility timeout will bring it back
                logger.exception("Could not release message", extra=context)
                return "failed"
            return "dead_lettered" if dead else "failed"

        try:
            await self.queue.ack(message)
        except Exception:
            # Redelivery replays the report; dedupe is the consumer's job
            logger.exception("Ack failed", extra=context)
        return "succeeded"

    async def run_forever(self) -> None:
        """Poll until `stop()` is called."""
        logger.info("Queue worker started", extra={"batch_size": self.batch_size})
        while not self._stopping.is_set():
            try:
                batch = await self.run_once()
            except Exception:
                logger.exception("Batch receive failed")
                batch = BatchReport()

            if batch.received == 0:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Queue worker stopped")

    def stop(self) -> None:
        self._stopping.set()
