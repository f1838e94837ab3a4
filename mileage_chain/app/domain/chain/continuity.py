"""
Odometer continuity validation.

Every insert or update that touches a trip's vehicle, dates or readings is
checked here before it is written. Hard violations raise; soft ones are
classified and returned so the caller can audit them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from mileage_chain.app.core.config import settings
from mileage_chain.app.core.exceptions import (
    NonPositiveDistanceError,
    OdometerRegressionError,
    SuccessorConflictError,
)
from mileage_chain.app.domain.chain.entries import ActiveTrip
from mileage_chain.app.domain.chain.index import ChainIndex
from mileage_chain.app.models.trip_enums import GapClassification

logger = logging.getLogger("mileage.chain")

DATE_FORMAT = "%d-%m-%Y %H:%M"


@dataclass(frozen=True)
class ContinuityCheck:
    """Outcome of a write that passed validation."""
    classification: GapClassification
    gap_km: Optional[int]
    predecessor: Optional[ActiveTrip]
    successor: Optional[ActiveTrip]
    message: str
    requires_investigation: bool = False

    @property
    def severity(self) -> str:
        if self.classification == GapClassification.LARGE:
            return "error"
        if self.classification == GapClassification.MODERATE:
            return "warning"
        return "info"

    def as_dict(self) -> dict:
        return {
            "classification": self.classification.value,
            "gap_km": self.gap_km,
            "predecessor_id": self.predecessor.id if self.predecessor else None,
            "predecessor_serial": self.predecessor.trip_serial_number if self.predecessor else None,
            "message": self.message,
            "requires_investigation": self.requires_investigation,
        }


class ContinuityValidator:
    """Classifies odometer gaps and rejects writes that break the chain."""

    def __init__(self, acceptable_km: int = None, moderate_km: int = None):
        self.acceptable_km = settings.gap_acceptable_km if acceptable_km is None else acceptable_km
        self.moderate_km = settings.gap_moderate_km if moderate_km is None else moderate_km

    def classify_gap(self, gap_km: Optional[int]) -> GapClassification:
        if gap_km is None:
            return GapClassification.NO_PREDECESSOR
        if gap_km < 0:
            return GapClassification.NEGATIVE
        if gap_km == 0:
            return GapClassification.PERFECT
        if gap_km <= self.acceptable_km:
            return GapClassification.ACCEPTABLE
        if gap_km <= self.moderate_km:
            return GapClassification.MODERATE
        return GapClassification.LARGE

    def validate(self, index: ChainIndex, candidate: ActiveTrip, end_km_changed: bool = False) -> ContinuityCheck:
        """
        Validate `candidate` against the active chain in `index`.

        `index` may or may not already contain the candidate; the candidate's
        own id is always excluded from neighbour lookups.

        Raises:
            NonPositiveDistanceError: end_km <= start_km
            OdometerRegressionError: start_km below the predecessor's end_km
            SuccessorConflictError: a changed end_km overruns the next trip's start_km
        """
        if candidate.end_km <= candidate.start_km:
            raise NonPositiveDistanceError(candidate.label, candidate.start_km, candidate.end_km)

        check = self.inspect(index, candidate)
        predecessor = check.predecessor

        if check.classification == GapClassification.NEGATIVE:
            raise OdometerRegressionError(
                trip_label=candidate.label,
                start_km=candidate.start_km,
                predecessor_id=predecessor.id,
                predecessor_serial=predecessor.trip_serial_number,
                predecessor_end_km=predecessor.end_km,
                predecessor_end_date=predecessor.trip_end_date.strftime(DATE_FORMAT),
            )

        successor = check.successor
        if end_km_changed and successor is not None and successor.start_km < candidate.end_km:
            raise SuccessorConflictError(
                trip_label=candidate.label,
                new_end_km=candidate.end_km,
                successor_id=successor.id,
                successor_serial=successor.trip_serial_number,
                successor_start_km=successor.start_km,
            )

        if check.classification == GapClassification.MODERATE:
            logger.warning(check.message)
        elif check.classification == GapClassification.LARGE:
            logger.warning(check.message, extra={"requires_investigation": True})

        return check

    def inspect(self, index: ChainIndex, candidate: ActiveTrip) -> ContinuityCheck:
        """Classify the candidate's gap without enforcing anything."""
        predecessor = index.predecessor(candidate.trip_start_date, exclude_id=candidate.id)
        successor = index.successor(candidate.trip_end_date, exclude_id=candidate.id)
        gap_km = candidate.start_km - predecessor.end_km if predecessor else None
        classification = self.classify_gap(gap_km)

        return ContinuityCheck(
            classification=classification,
            gap_km=gap_km,
            predecessor=predecessor,
            successor=successor,
            message=self._describe(classification, gap_km, predecessor, candidate),
            requires_investigation=classification == GapClassification.LARGE,
        )

    def _describe(
        self,
        classification: GapClassification,
        gap_km: Optional[int],
        predecessor: Optional[ActiveTrip],
        candidate: ActiveTrip,
    ) -> str:
        if classification == GapClassification.NO_PREDECESSOR:
            return "First trip for vehicle - no previous trip to validate against"
        if classification == GapClassification.PERFECT:
            return "Perfect odometer continuity maintained"
        if classification == GapClassification.ACCEPTABLE:
            return f"Small gap of {gap_km} km - likely vehicle movement without trip logging"

        context = (
            f"Previous trip {predecessor.label} ended at {predecessor.end_km} km on "
            f"{predecessor.trip_end_date.strftime(DATE_FORMAT)}. "
            f"Current trip {candidate.label} starts at {candidate.start_km} km."
        )
        if classification == GapClassification.NEGATIVE:
            return f"Gap: {gap_km} km (negative - odometer went backwards). {context}"
        if classification == GapClassification.MODERATE:
            return (
                f"Moderate odometer gap detected: {gap_km} km between trips. {context} "
                "Please verify if any trips are missing."
            )
        return (
            f"LARGE ODOMETER GAP ALERT: {gap_km} km gap detected! {context} "
            "This large gap suggests missing trips or data entry error. "
            "Please investigate and add any missing trips."
        )
