"""
Ingress Gateway.

Turns a signed raw webhook body into at most one queued message:
authenticate -> validate -> deduplicate -> enqueue.
"""

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from fleetwatch.app.core.clock import utcnow
from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import ValidationError, jsonable_errors
from fleetwatch.app.core.observability import current_correlation_id
from fleetwatch.app.core.signature import verify_signature
from fleetwatch.app.schemas.gps import PositionReport, QueueEnvelope
from fleetwatch.app.services.idempotency import IdempotencyStore
from fleetwatch.app.services.queue import DurableQueue

logger = logging.getLogger("fleetwatch.ingress")


@dataclass
class IngressResult:
    """Outcome of an accepted report."""
    event_id: str
    driver_id: str
    deduped: bool


def parse_json_body(raw_body: bytes):
    """Decode a raw JSON body, mapping decode failures to ValidationError."""
    try:
        return json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Body is not valid JSON", details={"reason": str(e)})


def parse_position_report(raw_body: bytes) -> PositionReport:
    data = parse_json_body(raw_body)
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object")
    try:
        return PositionReport.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Invalid position report", details={"errors": jsonable_errors(e.errors())})


class IngressGateway:

    def __init__(
        self,
        idempotency: IdempotencyStore,
        queue: DurableQueue,
        secret: str = None,
        ttl_seconds: int = None,
    ):
        self.idempotency = idempotency
        self.queue = queue
        self.secret = secret if secret is not None else settings.hmac_secret_gps
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.idempotency_ttl_seconds

    async def accept(self, raw_body: bytes, signature: str) -> IngressResult:
        """
        Accept one raw position report.

        Raises:
            AuthError: missing or forged signature
            ValidationError: malformed payload
            TransientDependencyError: idempotency store or queue unavailable
        """
        # 1. Authenticate over the exact bytes received
        verify_signature(raw_body, signature, self.secret)

        # 2. Parse and validate
        report = parse_position_report(raw_body)

        # 3. Deduplicate (single atomic conditional write)
        first_seen = await self.idempotency.put_if_absent(report.event_id, self.ttl_seconds)
        if not first_seen:
            logger.info("Duplicate report", extra={"event_id": report.event_id, "driver_id": report.driver_id})
            return IngressResult(event_id=report.event_id, driver_id=report.driver_id, deduped=True)

        # 4. Enqueue, ordered per driver
        envelope = QueueEnvelope(payload=report, received_at=utcnow(), correlation_id=current_correlation_id())
        try:
            await self.queue.enqueue(
                envelope.model_dump(mode="json", by_alias=True),
                partition_key=report.driver_id,
                dedup_key=report.event_id,
            )
        except Exception:
            # Let the producer's retry through instead of deduplicating it away
            await self.idempotency.release(report.event_id)
            raise

        logger.debug("Report accepted", extra={"event_id": report.event_id, "driver_id": report.driver_id})
        return IngressResult(event_id=report.event_id, driver_id=report.driver_id, deduped=False)
