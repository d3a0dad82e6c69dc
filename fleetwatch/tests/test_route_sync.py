"""
TMS Sync Tests.

Route snapshots from the TMS webhook and from polling, and driver assignment.
"""

import json

import pytest
from sqlalchemy import select

from fleetwatch.app.core.config import settings
from fleetwatch.app.models.driver_enums import DriverPhase
from fleetwatch.app.models.route import RouteStop
from fleetwatch.app.schemas.route import TmsRoute


@pytest.mark.asyncio
async def test_upsert_publishes_tms_updated(services, route_factory, event_backend):
    snapshot = await services.route_sync.upsert_route(TmsRoute.model_validate(route_factory()))

    assert snapshot.route_id == "route-1"
    assert event_backend.events == [{
        "type": "tms.updated",
        "source": "fleetwatch.tms",
        "detail": {
            "routeId": "route-1",
            "driverId": "driver-1",
            "stopCount": 2,
            "updatedAt": "2025-03-01T08:00:00+00:00",
        },
    }]


@pytest.mark.asyncio
async def test_upsert_replaces_stops(services, session_factory, route_factory):
    payload = route_factory()
    await services.route_sync.upsert_route(TmsRoute.model_validate(payload))

    payload["stops"] = payload["stops"][:1]
    await services.route_sync.upsert_route(TmsRoute.model_validate(payload))

    async with session_factory() as db:
        stops = (await db.execute(select(RouteStop).where(RouteStop.route_id == "route-1"))).scalars().all()
    assert [s.stop_id for s in stops] == ["route-1-pickup"]


@pytest.mark.asyncio
async def test_en_route_assigns_driver(services, route_factory):
    assigned = await services.route_sync.apply_route(TmsRoute.model_validate(route_factory()))

    assert assigned is True
    state = await services.state_store.get("driver-1")
    assert state.route_id == "route-1"
    assert state.phase == DriverPhase.ENROUTE
    assert state.current_stop_index == 0

    # Same route again is a no-op
    assert await services.route_sync.apply_route(TmsRoute.model_validate(route_factory())) is False
    assert (await services.state_store.get("driver-1")).version == state.version


@pytest.mark.asyncio
async def test_planned_route_does_not_assign(services, route_factory):
    assigned = await services.route_sync.apply_route(TmsRoute.model_validate(route_factory(status="PLANNED")))

    assert assigned is False
    assert await services.state_store.get("driver-1") is None


@pytest.mark.asyncio
async def test_new_route_resets_progress(services, seed_route, make_report, route_factory):
    await seed_route()
    await services.processor.process(make_report(lat=0.0, speed=0))
    await services.processor.process(make_report(lat=0.0, speed=0))
    assert (await services.state_store.get("driver-1")).phase == DriverPhase.AT_STOP

    assert await services.route_sync.ensure_driver_assigned("driver-1", "route-2") is True

    state = await services.state_store.get("driver-1")
    assert state.route_id == "route-2"
    assert state.phase == DriverPhase.ENROUTE
    assert state.current_stop_index == 0
    assert state.inside_count == 0
    assert state.arrived_at is None


@pytest.mark.asyncio
async def test_sync_from_tms(services, tms_routes, route_factory):
    tms_routes["route-1"] = route_factory()
    tms_routes["route-2"] = route_factory(route_id="route-2", driver_id="driver-2", status="PLANNED")

    report = await services.route_sync.sync_from_tms()

    assert report.routes_seen == 2
    assert report.routes_upserted == 2
    assert report.drivers_assigned == 1
    assert (await services.route_resolver.get_route("route-2")).driver_id == "driver-2"


@pytest.mark.asyncio
async def test_sync_skips_failing_route(services, tms_routes, route_factory, mocker):
    tms_routes["route-1"] = route_factory()
    tms_routes["route-2"] = route_factory(route_id="route-2", driver_id="driver-2")

    real_upsert = services.route_sync.upsert_route

    async def upsert(payload):
        if payload.id == "route-2":
            raise RuntimeError("bad route")
        return await real_upsert(payload)

    mocker.patch.object(services.route_sync, "upsert_route", side_effect=upsert)

    report = await services.route_sync.sync_from_tms()

    assert report.routes_seen == 2
    assert report.routes_upserted == 1


@pytest.mark.asyncio
async def test_tms_webhook(client, services, route_factory, sign):
    body = json.dumps(route_factory()).encode()
    response = await client.post(
        "/v1/webhooks/tms",
        content=body,
        headers={"X-Signature": sign(body, settings.hmac_secret_tms)},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "routeId": "route-1", "stopCount": 2, "driverAssigned": True}
    assert (await services.state_store.get("driver-1")).route_id == "route-1"


@pytest.mark.asyncio
async def test_tms_webhook_rejects_gps_secret(client, route_factory, sign):
    body = json.dumps(route_factory()).encode()
    response = await client.post("/v1/webhooks/tms", content=body, headers={"X-Signature": sign(body)})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_tms_webhook_invalid_payload(client, sign):
    body = json.dumps({"id": "route-1", "stops": []}).encode()
    response = await client.post(
        "/v1/webhooks/tms",
        content=body,
        headers={"X-Signature": sign(body, settings.hmac_secret_tms)},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_VALIDATION"
