"""
Driver State database model.

One row per driver, mutated only through the versioned state store.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from fleetwatch.app.db.session import Base
from fleetwatch.app.models.driver_enums import DriverPhase


class DriverState(Base):
    """
    Driver State model.

    Tracks where a driver is along its bound route and the hysteresis
    counters for the current stop. `version` increases on every write.
    """
    __tablename__ = "driver_states"

    driver_id = Column(String(128), primary_key=True)

    # Route binding
    route_id = Column(String(128), nullable=True, index=True)
    current_stop_index = Column(Integer, nullable=True)
    phase = Column(Enum(DriverPhase), default=DriverPhase.IDLE, nullable=False, index=True)

    # Last reported position
    last_lat = Column(Float, nullable=True)
    last_lon = Column(Float, nullable=True)
    last_update_at = Column(DateTime(timezone=True), nullable=True)

    # Stop visit timing
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    departed_at = Column(DateTime(timezone=True), nullable=True)

    # Hysteresis run counters
    inside_count = Column(Integer, default=0, nullable=False)
    outside_count = Column(Integer, default=0, nullable=False)

    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<DriverState(driver_id='{self.driver_id}', phase='{self.phase}', version={self.version})>"
