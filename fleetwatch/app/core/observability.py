"""
Observability.

A correlation id follows each GPS report from the webhook request, through
the queue envelope, into the worker that processes it. `CorrelationIdFilter`
stamps the active id on every log record so ingress, queue and processor
lines for one report can be joined.
"""

import time
import uuid
import logging
from contextvars import ContextVar, Token
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"
WEBHOOK_SEGMENT = "/webhooks/"

logger = logging.getLogger("fleetwatch.http")

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def bind_correlation_id(correlation_id: Optional[str]) -> Token:
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: Token) -> None:
    _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Copies the active correlation id onto each record ("-" outside one)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = _correlation_id.get() or "-"
        return True


def configure_logging(debug: bool = False) -> None:
    """Install a root handler for the fleetwatch loggers."""
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
    ))
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, handlers=[handler])


def webhook_outcome(path: str, status_code: int) -> str:
    """Name what a webhook response means for the producer."""
    if status_code == 401:
        return "signature_rejected"
    if status_code in (400, 422):
        return "invalid"
    if status_code == 503:
        return "dependency_unavailable"
    if status_code >= 500:
        return "error"
    # GPS repeats are answered 200 instead of 202
    if path.endswith("/gps") and status_code == 200:
        return "deduplicated"
    return "accepted"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id per request and logs webhook outcomes."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = bind_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers[CORRELATION_HEADER] = correlation_id
            response.headers["X-Process-Time"] = str(duration_ms)
            self._log(request, response.status_code, correlation_id, duration_ms)
            return response
        finally:
            reset_correlation_id(token)

    def _log(self, request: Request, status_code: int, correlation_id: str, duration_ms: float) -> None:
        path = request.url.path
        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
        }

        if WEBHOOK_SEGMENT not in path:
            level = logging.ERROR if status_code >= 500 else logging.DEBUG
            logger.log(level, "%s %s -> %s", request.method, path, status_code, extra=log_data)
            return

        source = path.rsplit("/", 1)[-1]
        outcome = webhook_outcome(path, status_code)
        log_data.update(webhook=source, outcome=outcome)
        if status_code >= 500:
            logger.error("Webhook %s %s", source, outcome, extra=log_data)
        elif status_code >= 400:
            logger.warning("Webhook %s %s", source, outcome, extra=log_data)
        else:
            logger.info("Webhook %s %s", source, outcome, extra=log_data)
