"""
Audit Log Database Model.

Structured before/after entries for every chain operation.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from sqlalchemy.sql import func
from mileage_chain.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for chain writes, guards and repairs.

    Events logged:
    - TRIP_CREATED / TRIP_UPDATED / TRIP_WRITE_REJECTED (with gap classification)
    - TRIP_DELETED / TRIP_DELETION_PREVENTED / TRIP_RECOVERED
    - MILEAGE_RECALCULATED / MILEAGE_CHAIN_REBUILT
    - CHAIN_VALIDATED / CONTINUITY_ANALYZED / CHAIN_BREAKS_DETECTED
    - ODOMETER_CASCADE_CORRECTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # Tenant whose data was touched
    owner_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=False, default="trip")
    entity_id = Column(String(100), index=True, nullable=True)

    # Outcome classification (gap class, deletion outcome, calculation method...)
    classification = Column(String(100), nullable=True)
    severity = Column(String(20), nullable=False, default="info")

    # Before/after snapshots (JSON for flexibility)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)

    message = Column(Text, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id}, classification={self.classification})>"
