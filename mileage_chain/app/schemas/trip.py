"""
Trip schemas for the mileage chain.

Request bodies for trip writes and the structured results of chain
operations.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from mileage_chain.app.domain.chain.entries import naive_utc


class TripCreate(BaseModel):
    """Schema for recording a trip."""
    vehicle_id: int = Field(..., gt=0, description="Vehicle whose chain the trip joins")
    trip_serial_number: Optional[str] = Field(None, max_length=50, description="Human-facing label, e.g. T-0042")

    trip_start_date: datetime = Field(..., description="Trip start (aware values are converted to UTC)")
    trip_end_date: datetime = Field(..., description="Trip end (aware values are converted to UTC)")

    # Odometer readings; end_km > start_km is enforced by the chain validator
    start_km: int = Field(..., ge=0, description="Odometer reading at trip start")
    end_km: int = Field(..., ge=0, description="Odometer reading at trip end")

    refueling_done: bool = Field(default=False, description="Whether the tank was filled during this trip")
    fuel_quantity: Optional[float] = Field(None, ge=0, description="Litres filled (refueling trips)")

    @field_validator("trip_start_date", "trip_end_date")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        return naive_utc(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.trip_end_date < self.trip_start_date:
            raise ValueError("trip_end_date must not be before trip_start_date")
        return self


class TripUpdate(BaseModel):
    """Schema for a partial trip update. Only fields that are sent are changed."""
    vehicle_id: Optional[int] = Field(None, gt=0)
    trip_serial_number: Optional[str] = Field(None, max_length=50)
    trip_start_date: Optional[datetime] = None
    trip_end_date: Optional[datetime] = None
    start_km: Optional[int] = Field(None, ge=0)
    end_km: Optional[int] = Field(None, ge=0)
    refueling_done: Optional[bool] = None
    fuel_quantity: Optional[float] = Field(None, ge=0)

    @field_validator("trip_start_date", "trip_end_date")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value) if value is not None else None


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    owner_id: int
    vehicle_id: int
    trip_serial_number: Optional[str]
    trip_start_date: datetime
    trip_end_date: datetime
    start_km: int
    end_km: int
    refueling_done: bool
    fuel_quantity: Optional[float]
    calculated_kmpl: Optional[float]
    deleted_at: Optional[datetime] = None
    deletion_reason: Optional[str] = None
    deleted_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContinuityCheckResponse(BaseModel):
    """Gap classification of a write that passed validation."""
    classification: str  # no_predecessor, perfect, acceptable, moderate, large
    gap_km: Optional[int]
    predecessor_id: Optional[int]
    predecessor_serial: Optional[str]
    message: str
    requires_investigation: bool = False


class RecalculationResult(BaseModel):
    """Outcome of a mileage recalculation. Failures are reported, not raised."""
    trip_id: Optional[int] = None
    success: bool
    old_kmpl: Optional[float] = None
    new_kmpl: Optional[float] = None
    method: str
    anchor_trip_id: Optional[int] = None
    updated: bool = False
    message: str


class TripWriteResult(BaseModel):
    """Response after an accepted insert or update."""
    trip: TripResponse
    created: bool
    continuity: ContinuityCheckResponse
    mileage: List[RecalculationResult] = []
    warnings: List[str] = []


class DeletionImpactResponse(BaseModel):
    """What deleting a trip does to the rest of its chain."""
    outcome: str
    impact_level: str
    is_refueling_trip: bool
    downstream_trip_count: int
    dependent_trip_ids: List[int] = []
    dependent_trip_labels: List[str] = []
    next_refueling_trip_id: Optional[int] = None
    next_refueling_trip_serial: Optional[str] = None
    recalculation_possible: bool
    message: str


class DeletionResult(BaseModel):
    """Response after a delete request."""
    trip_id: int
    outcome: str  # hard_deleted or soft_deleted
    deleted_at: Optional[datetime] = None
    deletion_reason: Optional[str] = None
    impact: DeletionImpactResponse
    message: str


class RecoveryRequest(BaseModel):
    """Schema for restoring a soft-deleted trip."""
    reason: str = Field(..., min_length=1, max_length=500, description="Why the trip is being restored (for audit log)")


class RecoveryResult(BaseModel):
    success: bool
    message: str
    trip: Optional[TripResponse] = None


class CascadeCorrectionRequest(BaseModel):
    """Schema for correcting a trip's end reading and shifting every later trip."""
    new_end_km: int = Field(..., gt=0, description="Corrected end odometer reading")
    reason: str = Field(..., min_length=1, max_length=500, description="Correction reason (stored with each correction)")


class CascadeAffectedTrip(BaseModel):
    trip_id: int
    trip_serial_number: Optional[str]
    old_start_km: int
    new_start_km: int
    old_end_km: int
    new_end_km: int


class CascadeCorrectionResult(BaseModel):
    """Response after a cascading odometer correction."""
    success: bool
    trip_id: int
    old_end_km: int
    new_end_km: int
    delta_km: int
    affected_trips_count: int
    affected_trips: List[CascadeAffectedTrip] = []
    mileage: List[RecalculationResult] = []
    message: str


class CascadePreviewItem(BaseModel):
    """One subsequent trip as a cascade correction would leave it."""
    trip_id: int
    trip_serial_number: Optional[str]
    trip_start_date: datetime
    current_start_km: int
    new_start_km: int
    current_end_km: int
    new_end_km: int


class AuditLogResponse(BaseModel):
    """Schema for an audit trail entry."""
    id: int
    actor_id: Optional[int]
    actor_username: Optional[str]
    owner_id: Optional[int]
    action: str
    entity_type: str
    entity_id: Optional[str]
    classification: Optional[str]
    severity: str
    old_values: Optional[Dict[str, Any]]
    new_values: Optional[Dict[str, Any]]
    tags: Optional[List[str]]
    message: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True
