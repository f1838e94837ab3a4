"""
Trip database model.

A trip is one odometer segment of a vehicle. Active trips of one
(owner, vehicle) pair form that vehicle's mileage chain.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Index
from sqlalchemy.sql import func
from mileage_chain.app.db.session import Base
from mileage_chain.app.models.trip_enums import TripLifecycle


class Trip(Base):
    """
    Trip model.

    Soft-deleted trips keep their row with deleted_at set; the domain layer
    converts rows into ActiveTrip / SoftDeletedTrip values instead of
    checking deleted_at at each call site.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant and chain key
    owner_id = Column(Integer, nullable=False, index=True)
    vehicle_id = Column(Integer, nullable=False, index=True)

    # Human-facing label, e.g. "T-0042"
    trip_serial_number = Column(String(50), nullable=True)

    # Chronology (naive UTC)
    trip_start_date = Column(DateTime, nullable=False)
    trip_end_date = Column(DateTime, nullable=False)

    # Odometer readings
    start_km = Column(Integer, nullable=False)
    end_km = Column(Integer, nullable=False)

    # Fuel
    refueling_done = Column(Boolean, default=False, nullable=False)
    fuel_quantity = Column(Float, nullable=True)
    calculated_kmpl = Column(Float, nullable=True)

    # Soft delete
    deleted_at = Column(DateTime, nullable=True)
    deletion_reason = Column(String(500), nullable=True)
    deleted_by = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_trips_chain_start', 'owner_id', 'vehicle_id', 'trip_start_date'),
        Index('ix_trips_chain_end', 'owner_id', 'vehicle_id', 'trip_end_date'),
    )

    @property
    def lifecycle(self) -> TripLifecycle:
        return TripLifecycle.SOFT_DELETED if self.deleted_at is not None else TripLifecycle.ACTIVE

    @property
    def label(self) -> str:
        return self.trip_serial_number or f"#{self.id}"

    def __repr__(self):
        return f"<Trip(id={self.id}, vehicle_id={self.vehicle_id}, km={self.start_km}-{self.end_km}, lifecycle='{self.lifecycle.value}')>"
