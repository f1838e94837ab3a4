"""
Chain auditor.

Pure scans over an ordered list of active trips. Nothing here writes:
findings carry a ChainFix describing the repair, and the engine decides
whether to apply it.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, List, Optional, Sequence

from mileage_chain.app.core.config import settings
from mileage_chain.app.domain.chain.continuity import ContinuityValidator
from mileage_chain.app.domain.chain.entries import ActiveTrip
from mileage_chain.app.models.trip_enums import (
    BreakType,
    GapClassification,
    IssueSeverity,
    IssueType,
)


@dataclass(frozen=True)
class ChainFix:
    """A repair the engine may apply when auto-fix is on."""
    action: str  # "raise_start_km" | "recalculate_mileage"
    value: Optional[int] = None


@dataclass(frozen=True)
class ChainFinding:
    issue_type: IssueType
    severity: IssueSeverity
    trip: Optional[ActiveTrip]
    description: str
    suggested_fix: Optional[str]
    fix: Optional[ChainFix] = None
    default_fix_result: Optional[str] = None


@dataclass
class ContinuityReport:
    analysis_date: date
    total_trips: int = 0
    perfect_continuity_count: int = 0
    small_gaps_count: int = 0
    moderate_gaps_count: int = 0
    large_gaps_count: int = 0
    negative_gaps_count: int = 0
    total_gap_km: int = 0
    avg_gap_km: float = 0.0
    max_gap_km: int = 0
    continuity_score: Optional[int] = None
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChainBreakFinding:
    break_location: str
    before: ActiveTrip
    after: ActiveTrip
    gap_km: int
    gap_type: BreakType
    suggested_action: str


class ChainAuditor:

    def __init__(
        self,
        large_gap_km: int = None,
        min_kmpl: float = None,
        max_kmpl: float = None,
        validator: ContinuityValidator = None,
    ):
        self.large_gap_km = settings.auditor_large_gap_km if large_gap_km is None else large_gap_km
        self.min_kmpl = settings.min_realistic_kmpl if min_kmpl is None else min_kmpl
        self.max_kmpl = settings.max_realistic_kmpl if max_kmpl is None else max_kmpl
        self.validator = validator or ContinuityValidator()

    def scan(self, trips: Sequence[ActiveTrip]) -> Iterator[ChainFinding]:
        """
        Walk `trips` (already in chain order) and yield every issue found.

        Yields a single no_issues finding when the walk is clean.
        """
        found = False
        previous = None

        for trip in trips:
            if trip.end_km <= trip.start_km:
                found = True
                yield ChainFinding(
                    issue_type=IssueType.NEGATIVE_DISTANCE,
                    severity=IssueSeverity.CRITICAL,
                    trip=trip,
                    description=f"End KM ({trip.end_km}) is not greater than Start KM ({trip.start_km})",
                    suggested_fix="Swap start and end KM values",
                    default_fix_result="Manual intervention required",
                )

            if previous is not None:
                gap = trip.start_km - previous.end_km
                if gap < 0:
                    found = True
                    # Raising start_km must not turn the trip into a zero/negative distance
                    fix = ChainFix("raise_start_km", previous.end_km) if previous.end_km < trip.end_km else None
                    yield ChainFinding(
                        issue_type=IssueType.ODOMETER_REGRESSION,
                        severity=IssueSeverity.HIGH,
                        trip=trip,
                        description=(
                            f"Start KM ({trip.start_km}) is less than previous trip end KM ({previous.end_km})"
                        ),
                        suggested_fix=f"Adjust start KM to {previous.end_km}",
                        fix=fix,
                        default_fix_result=None if fix else "Manual intervention required",
                    )
                elif gap > self.large_gap_km:
                    found = True
                    yield ChainFinding(
                        issue_type=IssueType.LARGE_ODOMETER_GAP,
                        severity=IssueSeverity.MEDIUM,
                        trip=trip,
                        description=f"Large gap of {gap} km from previous trip",
                        suggested_fix="Check for missing trips",
                        default_fix_result="Manual verification required",
                    )

            if trip.refueling_done and trip.fuel_quantity is not None and trip.fuel_quantity > 0:
                if trip.calculated_kmpl is None:
                    found = True
                    yield ChainFinding(
                        issue_type=IssueType.MISSING_MILEAGE_CALCULATION,
                        severity=IssueSeverity.LOW,
                        trip=trip,
                        description="Mileage not calculated for refueling trip",
                        suggested_fix="Recalculate mileage",
                        fix=ChainFix("recalculate_mileage"),
                    )
                elif not (self.min_kmpl <= trip.calculated_kmpl <= self.max_kmpl):
                    found = True
                    yield ChainFinding(
                        issue_type=IssueType.UNREALISTIC_MILEAGE,
                        severity=IssueSeverity.MEDIUM,
                        trip=trip,
                        description=f"Unrealistic mileage: {trip.calculated_kmpl:.2f} km/L",
                        suggested_fix="Verify fuel quantity and odometer readings",
                        default_fix_result="Manual verification required",
                    )

            previous = trip

        if not found:
            yield ChainFinding(
                issue_type=IssueType.NO_ISSUES,
                severity=IssueSeverity.INFO,
                trip=None,
                description="Mileage chain validation complete - no issues found",
                suggested_fix=None,
                default_fix_result="All checks passed",
            )

    def analyze_continuity(self, trips: Sequence[ActiveTrip], analysis_date: date) -> ContinuityReport:
        report = ContinuityReport(analysis_date=analysis_date, total_trips=len(trips))

        for previous, trip in zip(trips, trips[1:]):
            gap = trip.start_km - previous.end_km
            classification = self.validator.classify_gap(gap)
            if classification == GapClassification.NEGATIVE:
                report.negative_gaps_count += 1
            elif classification == GapClassification.PERFECT:
                report.perfect_continuity_count += 1
            elif classification == GapClassification.ACCEPTABLE:
                report.small_gaps_count += 1
            elif classification == GapClassification.MODERATE:
                report.moderate_gaps_count += 1
            else:
                report.large_gaps_count += 1
            report.total_gap_km += abs(gap)
            report.max_gap_km = max(report.max_gap_km, abs(gap))

        if report.total_trips:
            report.avg_gap_km = round(report.total_gap_km / report.total_trips, 2)
            report.continuity_score = continuity_score(report)
        report.recommendations = recommendations(report)
        return report

    def detect_breaks(self, trips: Sequence[ActiveTrip]) -> List[ChainBreakFinding]:
        breaks = []
        for before, after in zip(trips, trips[1:]):
            gap = after.start_km - before.end_km
            if gap == 0:
                continue
            if gap < 0:
                gap_type = BreakType.NEGATIVE_GAP
                action = f"Fix odometer: Trip {after.label} should start at {before.end_km} km or higher"
            elif gap > self.large_gap_km:
                gap_type = BreakType.LARGE_GAP
                action = "Check for missing trips or validate large gap is legitimate"
            else:
                gap_type = BreakType.SMALL_GAP
                action = "Small gap - likely legitimate vehicle movement without trip logging"
            breaks.append(ChainBreakFinding(
                break_location=(
                    f"Between {before.trip_end_date.strftime('%d-%m-%Y')} "
                    f"and {after.trip_start_date.strftime('%d-%m-%Y')}"
                ),
                before=before,
                after=after,
                gap_km=gap,
                gap_type=gap_type,
                suggested_action=action,
            ))
        return breaks


def continuity_score(report: ContinuityReport) -> Optional[int]:
    """0-100 score; None when there is nothing to score."""
    if report.total_trips == 0:
        return None
    if report.negative_gaps_count:
        return 0
    if report.large_gaps_count:
        score = 50 - 10 * report.large_gaps_count
    elif report.moderate_gaps_count:
        score = 70 - 5 * report.moderate_gaps_count
    elif report.small_gaps_count:
        score = 90 - 2 * report.small_gaps_count
    else:
        score = 100
    return max(score, 0)


def recommendations(report: ContinuityReport) -> List[str]:
    result = []
    if report.negative_gaps_count:
        result.append(
            f"CRITICAL: {report.negative_gaps_count} trips have negative odometer gaps. "
            "Immediate correction required."
        )
    if report.large_gaps_count:
        result.append(
            f"WARNING: {report.large_gaps_count} trips have large gaps (>50km). Check for missing trips."
        )
    if report.moderate_gaps_count > 3:
        result.append("Multiple moderate gaps detected. Consider reviewing trip logging practices.")
    if report.continuity_score is not None and report.continuity_score >= 90:
        result.append("Excellent odometer continuity maintained!")
    return result
