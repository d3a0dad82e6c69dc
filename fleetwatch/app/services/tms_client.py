"""
HTTP client for the TMS (route/shipment management) API.

Every call is bounded by the client timeout and guarded by a circuit
breaker; outages surface as TransientDependencyError, a 404 as None.
"""

import logging
from typing import List, Optional

import httpx

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import TransientDependencyError
from fleetwatch.app.core.reliability import CircuitBreaker
from fleetwatch.app.schemas.route import TmsRoute

logger = logging.getLogger("fleetwatch.tms")


class TmsClient:

    def __init__(self, base_url: str = None, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.http = httpx.AsyncClient(
            base_url=base_url or settings.tms_api_url,
            timeout=timeout if timeout is not None else settings.dependency_timeout_seconds,
            transport=transport,
        )
        self.breaker = CircuitBreaker("tms-api", failure_threshold=5, reset_timeout=30)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get_json(self, path: str):
        """GET a JSON document; None on 404."""
        try:
            response = await self.breaker.call(self._fetch, path)
        except httpx.TimeoutException:
            raise TransientDependencyError("tms-api", f"GET {path} timed out")
        except httpx.TransportError as e:
            raise TransientDependencyError("tms-api", f"GET {path} failed: {e}")

        if response is None:
            return None
        return response.json()

    async def _fetch(self, path: str) -> Optional[httpx.Response]:
        response = await self.http.get(path)
        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            # Raised inside the breaker so it counts as a failure
            raise httpx.TransportError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.warning("TMS rejected GET %s with %s", path, response.status_code)
            return None
        return response

    async def get_route(self, route_id: str) -> Optional[TmsRoute]:
        data = await self._get_json(f"/routes/{route_id}")
        return TmsRoute.model_validate(data) if data else None

    async def driver_exists(self, driver_id: str) -> bool:
        return await self._get_json(f"/drivers/{driver_id}") is not None

    async def list_driver_routes(self, driver_id: str) -> List[TmsRoute]:
        data = await self._get_json(f"/drivers/{driver_id}/routes")
        return [TmsRoute.model_validate(item) for item in data or []]

    async def list_routes(self) -> List[TmsRoute]:
        data = await self._get_json("/routes")
        return [TmsRoute.model_validate(item) for item in data or []]
