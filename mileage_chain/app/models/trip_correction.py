"""
Trip Correction database model.

One row per field rewritten by a cascading odometer correction.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from mileage_chain.app.db.session import Base


class TripCorrection(Base):
    """
    Trip Correction model.

    The corrected trip gets an 'end_km' row; every shifted subsequent trip
    gets an 'odometer_cascade' row with "start-end" before and after.
    """
    __tablename__ = "trip_corrections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id', ondelete='CASCADE'), nullable=False, index=True)
    field_name = Column(String(50), nullable=False)
    old_value = Column(String(100), nullable=True)
    new_value = Column(String(100), nullable=True)
    correction_reason = Column(Text, nullable=True)
    affects_subsequent_trips = Column(Boolean, default=False, nullable=False)

    corrected_by = Column(Integer, nullable=True)
    corrected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<TripCorrection(trip_id={self.trip_id}, field='{self.field_name}', {self.old_value}->{self.new_value})>"
