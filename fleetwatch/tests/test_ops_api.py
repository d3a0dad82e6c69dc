"""
Ops and Driver State API Tests.
"""

import pytest

from fleetwatch.app.core.config import settings
from fleetwatch.app.services.queue import ReceivedMessage


async def dead_letter_one(services, event_id="evt-dead-00001"):
    await services.queue.enqueue({"type": "gps", "payload": {"eventId": event_id}}, "driver-1", dedup_key=event_id)
    message: ReceivedMessage = (await services.queue.receive(1))[0]
    await services.queue.dead_letter(message, "Malformed envelope")


@pytest.mark.asyncio
async def test_ops_disabled_without_token(client, monkeypatch):
    monkeypatch.setattr(settings, "ops_api_token", None)
    response = await client.get("/v1/ops/queue/stats")

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


@pytest.mark.asyncio
async def test_ops_rejects_wrong_token(client, ops_token):
    response = await client.get("/v1/ops/queue/stats", headers={"X-Ops-Token": "nope"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_queue_stats(client, services, ops_token):
    await services.queue.enqueue({"type": "gps", "payload": {}}, "driver-1", dedup_key="evt-stats-0001")

    response = await client.get("/v1/ops/queue/stats", headers={"X-Ops-Token": ops_token})

    assert response.status_code == 200
    assert response.json() == {"pending": 1, "in_flight": 0, "dead_lettered": 0}


@pytest.mark.asyncio
async def test_list_and_redrive_dead_letters(client, services, ops_token):
    await dead_letter_one(services)
    headers = {"X-Ops-Token": ops_token}

    listing = await client.get("/v1/ops/dlq", params={"status": "FAILED"}, headers=headers)
    assert listing.status_code == 200
    body = listing.json()
    assert body["total"] == 1
    item = body["items"][0]
    assert item["dedup_key"] == "evt-dead-00001"
    assert item["error_message"] == "Malformed envelope"

    redriven = await client.post(f"/v1/ops/dlq/{item['id']}/redrive", headers=headers)
    assert redriven.status_code == 200
    assert redriven.json()["status"] == "RETRYING"
    assert redriven.json()["retry_count"] == 1

    stats = await services.queue.stats()
    assert stats["pending"] == 1
    assert stats["dead_lettered"] == 0


@pytest.mark.asyncio
async def test_redrive_unknown_dead_letter(client, ops_token):
    response = await client.post("/v1/ops/dlq/4242/redrive", headers={"X-Ops-Token": ops_token})

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_trigger_tms_sync(client, tms_routes, route_factory, ops_token):
    tms_routes["route-1"] = route_factory()

    response = await client.post("/v1/ops/tms/sync", headers={"X-Ops-Token": ops_token})

    assert response.status_code == 200
    assert response.json() == {"routes_seen": 1, "routes_upserted": 1, "drivers_assigned": 1}


@pytest.mark.asyncio
async def test_driver_state_endpoint(client, services, seed_route, make_report):
    await seed_route()
    await services.processor.process(make_report(lat=0.0, speed=0))

    response = await client.get("/v1/drivers/driver-1/state")

    assert response.status_code == 200
    data = response.json()
    assert data["route_id"] == "route-1"
    assert data["phase"] == "ENROUTE"
    assert data["inside_count"] == 1
    assert data["version"] == 1


@pytest.mark.asyncio
async def test_driver_state_not_found(client):
    response = await client.get("/v1/drivers/nobody/state")

    assert response.status_code == 404
