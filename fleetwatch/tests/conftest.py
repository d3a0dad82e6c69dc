"""
Centralized Test Configuration.
"""

import json
import time
import uuid

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from fleetwatch.app.main import app
from fleetwatch.app.core.config import settings
from fleetwatch.app.core.container import build_services, get_services
from fleetwatch.app.core.signature import compute_signature
from fleetwatch.app.db.session import get_db, Base
from fleetwatch.app.domain.geofence.hysteresis import GeofenceThresholds
from fleetwatch.app.schemas.gps import PositionReport
from fleetwatch.app.schemas.route import TmsRoute
from fleetwatch.app.services.events import EventBus
from fleetwatch.app.services.route_resolver import SqlRouteResolver
from fleetwatch.app.services.tms_client import TmsClient


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# File-backed SQLite so concurrent sessions get their own connections
@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fleetwatch.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}
        self.streams = {}
        self._closed = False

    def _alive(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    async def ping(self):
        return not self._closed

    async def get(self, key):
        return self.store.get(key) if self._alive(key) else None

    async def set(self, key, value, ex=None, nx=False):
        if nx and self._alive(key):
            return None
        self.store[key] = value
        if ex is not None:
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.store[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys):
        return sum(1 for key in keys if self._alive(key))

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        entries = self.streams.setdefault(name, [])
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, dict(fields)))
        return entry_id

    async def flushdb(self):
        self.store = {}
        self.expiry = {}
        self.streams = {}

    async def aclose(self):
        self._closed = True


class RecordingEventBackend:
    """Keeps published events in memory; can be told to fail."""

    def __init__(self):
        self.events = []
        self.fail = False

    async def send(self, event_type, detail, source):
        if self.fail:
            raise ConnectionError("event bus down")
        self.events.append({"type": event_type, "detail": detail, "source": source})

    def types(self, include_gps=False):
        return [
            e["type"] for e in self.events
            if include_gps or e["type"] not in ("gps.received", "tms.updated")
        ]

    def clear(self):
        self.events = []


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture
def event_backend():
    return RecordingEventBackend()


@pytest.fixture
def thresholds():
    return GeofenceThresholds()


@pytest.fixture
def tms_routes():
    """Routes served by the fake TMS API, keyed by route id."""
    return {}


@pytest.fixture
def tms_transport(tms_routes):
    """httpx transport emulating the TMS API over `tms_routes`."""
    def handler(request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        if parts == ["routes"]:
            return httpx.Response(200, json=list(tms_routes.values()))
        if len(parts) == 2 and parts[0] == "routes":
            route = tms_routes.get(parts[1])
            return httpx.Response(200, json=route) if route else httpx.Response(404, json={"error": "not found"})
        if len(parts) >= 2 and parts[0] == "drivers":
            driver_routes = [r for r in tms_routes.values() if r["driverId"] == parts[1]]
            if not driver_routes:
                return httpx.Response(404, json={"error": "not found"})
            if len(parts) == 2:
                return httpx.Response(200, json={"id": parts[1], "name": "Driver"})
            return httpx.Response(200, json=driver_routes)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
async def services(session_factory, redis, event_backend, thresholds, tms_transport):
    tms_client = TmsClient(base_url="http://tms.test", timeout=2, transport=tms_transport)
    container = build_services(
        session_factory,
        redis,
        tms_client=tms_client,
        event_bus=EventBus(event_backend),
        route_resolver=SqlRouteResolver(session_factory),
        thresholds=thresholds,
    )
    yield container
    await container.aclose()


@pytest.fixture
def ops_token(monkeypatch):
    monkeypatch.setattr(settings, "ops_api_token", "ops-test-token")
    return "ops-test-token"


@pytest.fixture
async def client(services, session_factory):
    """Async client for testing."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_services():
        return services

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_services] = override_get_services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def sign():
    """Sign a body the way a producer does."""
    def _sign(body: bytes, secret: str = None) -> str:
        return compute_signature(body, secret or settings.hmac_secret_gps)
    return _sign


@pytest.fixture
def gps_body():
    """Build a raw GPS webhook body."""
    def _body(**overrides) -> bytes:
        payload = {
            "eventId": f"evt-{uuid.uuid4().hex[:12]}",
            "driverId": "driver-1",
            "timestamp": "2025-03-01T10:00:00Z",
            "lat": 52.52,
            "lng": 13.405,
            "speedKph": 12.5,
        }
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not ...}
        return json.dumps(payload).encode("utf-8")
    return _body


@pytest.fixture
def make_report():
    """Build PositionReports with increasing timestamps."""
    counter = {"n": 0}

    def _report(driver_id="driver-1", lat=0.0, lng=0.0, speed=None, event_id=None):
        counter["n"] += 1
        return PositionReport(
            event_id=event_id or f"evt-{driver_id}-{counter['n']:06d}",
            driver_id=driver_id,
            timestamp=f"2025-03-01T10:{counter['n'] // 60:02d}:{counter['n'] % 60:02d}Z",
            lat=lat,
            lng=lng,
            speed_kph=speed,
        )
    return _report


def two_stop_route(route_id="route-1", driver_id="driver-1", status="EN_ROUTE", updated_at="2025-03-01T08:00:00Z"):
    """PICKUP at (0,0) and DELIVERY at (1,1), both 150 m."""
    return {
        "id": route_id,
        "driverId": driver_id,
        "shipmentId": f"SHP-{route_id}",
        "status": status,
        "updatedAt": updated_at,
        "stops": [
            {"id": f"{route_id}-pickup", "sequence": 1, "type": "PICKUP",
             "location": {"lat": 0.0, "lng": 0.0}, "radiusM": 150},
            {"id": f"{route_id}-delivery", "sequence": 2, "type": "DELIVERY",
             "location": {"lat": 1.0, "lng": 1.0}, "radiusM": 150},
        ],
    }


@pytest.fixture
def route_factory():
    return two_stop_route


@pytest.fixture
def seed_route(services, event_backend):
    """Store a route snapshot locally, as the TMS sync would."""
    async def _seed(**kwargs):
        snapshot = await services.route_sync.upsert_route(TmsRoute.model_validate(two_stop_route(**kwargs)))
        event_backend.clear()
        return snapshot
    return _seed
