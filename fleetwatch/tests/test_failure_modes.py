"""
Failure Injection Tests.

Validates resilience against component failures.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fleetwatch.app.core.exceptions import TransientDependencyError
from fleetwatch.app.core.reliability import CircuitBreaker, CircuitOpenError, bounded
from fleetwatch.app.services.events import EventBus, RedisStreamBackend, build_event_bus
from fleetwatch.app.services.idempotency import IdempotencyStore


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers(mocker):
    cb = CircuitBreaker("test", failure_threshold=1, reset_timeout=10)
    clock = mocker.patch("fleetwatch.app.core.reliability.time.time", return_value=1000.0)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    clock.return_value = 1011.0
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_failed_trial_call_reopens(mocker):
    cb = CircuitBreaker("test", failure_threshold=3, reset_timeout=10)
    clock = mocker.patch("fleetwatch.app.core.reliability.time.time", return_value=1000.0)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(3):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    clock.return_value = 1011.0
    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


@pytest.mark.asyncio
async def test_bounded_turns_hang_into_transient_error():
    async def hang():
        await asyncio.sleep(10)

    with pytest.raises(TransientDependencyError) as exc:
        await bounded(hang(), 0.01, "route-resolver")
    assert exc.value.dependency == "route-resolver"
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_idempotency_outage_is_transient(mocker):
    redis = mocker.AsyncMock()
    redis.set.side_effect = RedisConnectionError("connection refused")
    store = IdempotencyStore(redis, prefix="idem:", timeout=1)

    with pytest.raises(TransientDependencyError) as exc:
        await store.put_if_absent("evt-1", 60)
    assert exc.value.dependency == "idempotency-store"


@pytest.mark.asyncio
async def test_idempotency_put_if_absent(redis):
    store = IdempotencyStore(redis, prefix="idem:", timeout=1)

    assert await store.put_if_absent("evt-1", 60) is True
    assert await store.put_if_absent("evt-1", 60) is False
    assert await store.exists("evt-1") is True
    assert "idem:evt-1" in redis.store

    await store.release("evt-1")
    assert await store.exists("evt-1") is False


@pytest.mark.asyncio
async def test_event_bus_without_backend_is_noop():
    bus = EventBus()
    assert await bus.publish("gps.received", {"eventId": "e"}) is False


@pytest.mark.asyncio
async def test_event_bus_swallows_backend_errors(mocker):
    backend = mocker.AsyncMock()
    backend.send.side_effect = RedisConnectionError("down")
    bus = EventBus(backend, timeout=1)

    assert await bus.publish("driver.departed.stop", {"eventId": "e", "driverId": "d"}) is False


@pytest.mark.asyncio
async def test_redis_stream_backend(redis):
    bus = build_event_bus(redis, backend_name="redis")
    assert isinstance(bus.backend, RedisStreamBackend)

    assert await bus.publish("driver.arrived.pickup", {"eventId": "e", "stopIndex": 0}) is True

    (entry_id, fields), = redis.streams[bus.backend.stream]
    assert fields["type"] == "driver.arrived.pickup"
    assert fields["source"] == "fleetwatch.detector"
    assert fields["detail"] == '{"eventId": "e", "stopIndex": 0}'


def test_unknown_event_backend_disables_events(redis):
    assert build_event_bus(redis, backend_name="kafka").backend is None
