"""
Deletion guard: decides between a hard delete and a soft delete.

A refueling trip is the fuel baseline for the non-refueling trips that
follow it. If nothing later can take over that role, the trip is retained
as a soft-deleted row instead of being physically removed.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from mileage_chain.app.domain.chain.entries import ActiveTrip
from mileage_chain.app.domain.chain.index import ChainIndex
from mileage_chain.app.models.trip_enums import DeletionOutcome, ImpactLevel


@dataclass(frozen=True)
class DeletionImpact:
    outcome: DeletionOutcome
    impact_level: ImpactLevel
    is_refueling_trip: bool
    downstream_trip_count: int
    dependent_trip_ids: List[int] = field(default_factory=list)
    dependent_trip_labels: List[str] = field(default_factory=list)
    next_refueling: Optional[ActiveTrip] = None
    recalculation_possible: bool = True
    message: str = ""
    deletion_reason: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "impact_level": self.impact_level.value,
            "is_refueling_trip": self.is_refueling_trip,
            "downstream_trip_count": self.downstream_trip_count,
            "dependent_trip_ids": list(self.dependent_trip_ids),
            "dependent_trip_labels": list(self.dependent_trip_labels),
            "next_refueling_trip_id": self.next_refueling.id if self.next_refueling else None,
            "next_refueling_trip_serial": self.next_refueling.trip_serial_number if self.next_refueling else None,
            "recalculation_possible": self.recalculation_possible,
            "message": self.message,
        }


class DeletionGuard:

    def assess(self, index: ChainIndex, trip: ActiveTrip) -> DeletionImpact:
        downstream = index.downstream(trip.trip_end_date, exclude_id=trip.id)

        if not trip.refueling_done:
            if downstream:
                message = f"Non-refueling trip deleted; {len(downstream)} later trips are unaffected"
                level = ImpactLevel.LOW
            else:
                message = "Non-refueling trip deleted"
                level = ImpactLevel.NONE
            return DeletionImpact(
                outcome=DeletionOutcome.HARD_DELETED,
                impact_level=level,
                is_refueling_trip=False,
                downstream_trip_count=len(downstream),
                message=message,
            )

        dependents = index.dependents(trip)
        next_refueling = index.next_refueling(trip.trip_end_date, exclude_id=trip.id)
        common = dict(
            is_refueling_trip=True,
            downstream_trip_count=len(downstream),
            dependent_trip_ids=[t.id for t in dependents],
            dependent_trip_labels=[t.label for t in dependents],
            next_refueling=next_refueling,
        )

        if not dependents:
            return DeletionImpact(
                outcome=DeletionOutcome.HARD_DELETED,
                impact_level=ImpactLevel.MODERATE if next_refueling else ImpactLevel.NONE,
                message=(
                    f"Mileage will be recalculated using next refueling trip {next_refueling.label}"
                    if next_refueling else "No dependent trips"
                ),
                **common,
            )

        if next_refueling is not None:
            return DeletionImpact(
                outcome=DeletionOutcome.HARD_DELETED,
                impact_level=ImpactLevel.MODERATE,
                message=f"Mileage will be recalculated using next refueling trip {next_refueling.label}",
                **common,
            )

        return DeletionImpact(
            outcome=DeletionOutcome.SOFT_DELETED,
            impact_level=ImpactLevel.HIGH,
            recalculation_possible=False,
            message="Warning: Dependent trips will lose tank-to-tank mileage calculation",
            deletion_reason=(
                f"Soft deleted - has {len(dependents)} dependent non-refueling trips "
                "that would lose mileage calculation"
            ),
            **common,
        )
