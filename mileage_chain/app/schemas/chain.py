"""
Chain audit schemas.

Issues, continuity analysis, breaks and rebuild results for one vehicle.
"""

from pydantic import BaseModel
from typing import List, Optional
from datetime import date


class ChainIssue(BaseModel):
    """One finding of a chain validation run."""
    issue_type: str
    severity: str
    trip_id: Optional[int] = None
    trip_serial_number: Optional[str] = None
    description: str
    suggested_fix: Optional[str] = None
    fix_applied: bool = False
    fix_result: Optional[str] = None


class ContinuityAnalysis(BaseModel):
    """Gap counts and score for a vehicle. continuity_score is None with no trips."""
    vehicle_id: int
    analysis_date: date
    total_trips: int
    perfect_continuity_count: int
    small_gaps_count: int
    moderate_gaps_count: int
    large_gaps_count: int
    negative_gaps_count: int
    total_gap_km: int
    avg_gap_km: float
    max_gap_km: int
    continuity_score: Optional[int]
    recommendations: List[str] = []


class ChainBreak(BaseModel):
    """A non-zero gap between two adjacent trips."""
    break_location: str
    trip_before_id: int
    trip_before_serial: Optional[str]
    trip_after_id: int
    trip_after_serial: Optional[str]
    gap_km: int
    gap_type: str  # negative_gap, large_gap, small_gap
    suggested_action: str


class ChainRebuildResult(BaseModel):
    vehicle_id: int
    trips_processed: int
    refueling_trips_updated: int
    chain_status: str
