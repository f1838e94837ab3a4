"""
Fuel efficiency (km/L) for refueling trips.

Tank-to-tank: distance from the previous refueling trip's end reading to
this trip's end reading, divided by the fuel put in at this refueling.
A vehicle's first refueling trip falls back to its own distance.
"""

from dataclasses import dataclass
from typing import Optional

from mileage_chain.app.core.config import settings
from mileage_chain.app.domain.chain.entries import ActiveTrip
from mileage_chain.app.domain.chain.index import ChainIndex
from mileage_chain.app.models.trip_enums import CalculationMethod


@dataclass(frozen=True)
class MileageComputation:
    method: CalculationMethod
    kmpl: Optional[float] = None
    anchor: Optional[ActiveTrip] = None
    distance_km: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kmpl is not None


class MileageCalculator:

    def __init__(self, tolerance: float = None):
        self.tolerance = settings.recalculation_tolerance if tolerance is None else tolerance

    def compute(self, index: ChainIndex, trip: ActiveTrip) -> MileageComputation:
        if not trip.refueling_done:
            return MileageComputation(
                method=CalculationMethod.NOT_APPLICABLE,
                error="Trip is not a refueling trip",
            )

        if trip.fuel_quantity is None or trip.fuel_quantity <= 0:
            return MileageComputation(
                method=CalculationMethod.ERROR,
                error="Invalid or missing fuel quantity",
            )

        anchor = index.previous_refueling(trip.trip_end_date, exclude_id=trip.id)
        if anchor is not None:
            distance = trip.end_km - anchor.end_km
            method = CalculationMethod.TANK_TO_TANK
        else:
            distance = trip.end_km - trip.start_km
            method = CalculationMethod.SIMPLE

        return MileageComputation(
            method=method,
            kmpl=round(distance / trip.fuel_quantity, 2),
            anchor=anchor,
            distance_km=distance,
        )

    def needs_write(self, old: Optional[float], new: float, force: bool = False) -> bool:
        """A stored value is only rewritten when missing, stale, or forced."""
        if force or old is None:
            return True
        return abs(new - old) > self.tolerance
