"""
Reliability utilities.

Includes the Circuit Breaker pattern and a timeout guard that turns a hung
dependency call into a retryable failure.
"""

import time
import asyncio
from typing import Awaitable, Callable, Any, TypeVar

from fleetwatch.app.core.exceptions import TransientDependencyError

T = TypeVar("T")


class CircuitOpenError(TransientDependencyError):
    def __init__(self, dependency: str):
        super().__init__(dependency, f"Circuit for {dependency} is OPEN")


async def bounded(awaitable: Awaitable[T], timeout: float, dependency: str) -> T:
    """
    Await a dependency call with an upper bound.

    Raises:
        TransientDependencyError: if the call does not finish within `timeout`
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise TransientDependencyError(dependency, f"{dependency} timed out after {timeout}s")


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' consecutive failures occur, the circuit opens and
    rejects calls for 'reset_timeout' seconds, then lets one trial call through.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"
