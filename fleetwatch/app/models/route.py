"""
Route snapshot database models.

Local copies of TMS routes, written by the TMS sync and read by the
route resolver. The processor never mutates them.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from fleetwatch.app.db.session import Base
from fleetwatch.app.models.route_enums import RouteStatus, StopType


class Route(Base):
    """Route assigned to a single driver."""
    __tablename__ = "routes"

    route_id = Column(String(128), primary_key=True)
    driver_id = Column(String(128), nullable=False, index=True)
    shipment_id = Column(String(128), nullable=True)

    status = Column(Enum(RouteStatus), default=RouteStatus.PLANNED, nullable=False, index=True)

    # TMS-side modification time, drives PLANNED route precedence
    updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Route(route_id='{self.route_id}', driver_id='{self.driver_id}', status='{self.status}')>"


class RouteStop(Base):
    """Pickup or delivery stop of a route, ordered by sequence."""
    __tablename__ = "route_stops"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    route_id = Column(String(128), ForeignKey('routes.route_id', ondelete="CASCADE"), nullable=False, index=True)
    stop_id = Column(String(128), nullable=False)
    sequence = Column(Integer, nullable=False)
    stop_type = Column(Enum(StopType), nullable=False)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    radius_m = Column(Float, nullable=True)  # falls back to the arrival radius

    __table_args__ = (
        UniqueConstraint('route_id', 'sequence', name='uq_route_stops_route_sequence'),
    )

    def __repr__(self):
        return f"<RouteStop(route_id='{self.route_id}', seq={self.sequence}, type='{self.stop_type}')>"
