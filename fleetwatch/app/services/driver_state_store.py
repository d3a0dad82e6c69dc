"""
Driver State Store.

Persists per-driver geofence state. Every write increments `version`;
writes that pass `expected_version` are conditional and fail with
`StaleStateError` if another writer got there first.
"""

from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from fleetwatch.app.core.config import settings
from fleetwatch.app.core.exceptions import StaleStateError, TransientDependencyError
from fleetwatch.app.core.reliability import bounded
from fleetwatch.app.models.driver_enums import DriverPhase
from fleetwatch.app.models.driver_state import DriverState

# Fields a caller may change; driver_id and version are managed here
MUTABLE_FIELDS = frozenset({
    "route_id",
    "current_stop_index",
    "phase",
    "last_lat",
    "last_lon",
    "last_update_at",
    "arrived_at",
    "departed_at",
    "inside_count",
    "outside_count",
})


def new_driver_state(driver_id: str) -> DriverState:
    """Default state for a driver seen for the first time."""
    return DriverState(
        driver_id=driver_id,
        phase=DriverPhase.IDLE,
        inside_count=0,
        outside_count=0,
        version=0,
    )


class DriverStateStore:

    def __init__(self, session_factory, timeout: float = None):
        self.session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.dependency_timeout_seconds

    async def _run(self, coro):
        try:
            return await bounded(coro, self.timeout, "driver-state-store")
        except OperationalError as e:
            raise TransientDependencyError("driver-state-store", str(e.orig) if e.orig else str(e))

    async def get(self, driver_id: str) -> Optional[DriverState]:
        return await self._run(self._get(driver_id))

    async def _get(self, driver_id: str) -> Optional[DriverState]:
        async with self.session_factory() as db:
            result = await db.execute(select(DriverState).where(DriverState.driver_id == driver_id))
            return result.scalar_one_or_none()

    async def put(self, state: DriverState) -> DriverState:
        """Full replace of a driver's state; version is bumped by one."""
        fields = {name: getattr(state, name) for name in MUTABLE_FIELDS}
        return await self.update(state.driver_id, fields)

    async def update(
        self,
        driver_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> DriverState:
        """
        Upsert selected fields and increment the version.

        Args:
            driver_id: Driver to write
            fields: Field name -> new value (see MUTABLE_FIELDS)
            expected_version: When given, the write only succeeds if the stored
                version still equals it. `0` also matches a driver with no row.

        Returns:
            The state as written

        Raises:
            ValueError: for unknown field names
            StaleStateError: when the conditional write lost
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown driver state fields: {sorted(unknown)}")
        return await self._run(self._update(driver_id, dict(fields), expected_version))

    async def _update(self, driver_id, fields, expected_version) -> DriverState:
        async with self.session_factory() as db:
            stmt = (
                update(DriverState)
                .where(DriverState.driver_id == driver_id)
                .values(**fields, version=DriverState.version + 1)
                .execution_options(synchronize_session=False)
            )
            if expected_version is not None:
                stmt = stmt.where(DriverState.version == expected_version)

            result = await db.execute(stmt)

            if result.rowcount == 0:
                current = (await db.execute(
                    select(DriverState.version).where(DriverState.driver_id == driver_id)
                )).scalar_one_or_none()

                if current is not None or expected_version not in (None, 0):
                    await db.rollback()
                    raise StaleStateError(driver_id, expected_version, current)

                # First write for this driver
                state = new_driver_state(driver_id)
                for name, value in fields.items():
                    setattr(state, name, value)
                state.version = 1
                db.add(state)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    raise StaleStateError(driver_id, expected_version or 0)
                return await self._get(driver_id)

            await db.commit()

        return await self._get(driver_id)
