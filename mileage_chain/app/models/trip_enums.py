"""
Trip and mileage-chain enumerations.
"""

import enum


class TripLifecycle(str, enum.Enum):
    """Deletion-related trip state."""
    ACTIVE = "ACTIVE"  # Part of the chain
    SOFT_DELETED = "SOFT_DELETED"  # Retained for audit/recovery, excluded from the chain


class GapClassification(str, enum.Enum):
    """Odometer gap between a trip and its chronological predecessor."""
    NO_PREDECESSOR = "no_predecessor"  # First trip in the chain
    PERFECT = "perfect"  # gap == 0
    ACCEPTABLE = "acceptable"  # likely unlogged vehicle movement
    MODERATE = "moderate"  # warn, possibly a missing trip
    LARGE = "large"  # flag for investigation, never auto-corrected
    NEGATIVE = "negative"  # odometer went backwards, rejected


class CalculationMethod(str, enum.Enum):
    """How a refueling trip's km/L was (or was not) derived."""
    TANK_TO_TANK = "tank_to_tank"
    SIMPLE = "simple (first refueling)"
    NOT_APPLICABLE = "not_applicable"
    ERROR = "error"


class DeletionOutcome(str, enum.Enum):
    """Result of routing a delete through the deletion guard."""
    HARD_DELETED = "hard_deleted"
    SOFT_DELETED = "soft_deleted"


class ImpactLevel(str, enum.Enum):
    """Downstream impact of deleting a trip."""
    NONE = "none"
    LOW = "low"  # downstream trips exist, nothing depends on this one's fuel baseline
    MODERATE = "moderate"  # dependents re-anchor on the next refueling trip
    HIGH = "high"  # dependents would lose their baseline, soft delete


class IssueType(str, enum.Enum):
    """Chain auditor issue types."""
    NEGATIVE_DISTANCE = "negative_distance"
    ODOMETER_REGRESSION = "odometer_regression"
    LARGE_ODOMETER_GAP = "large_odometer_gap"
    MISSING_MILEAGE_CALCULATION = "missing_mileage_calculation"
    UNREALISTIC_MILEAGE = "unrealistic_mileage"
    NO_ISSUES = "no_issues"


class IssueSeverity(str, enum.Enum):
    """Chain auditor severities."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class BreakType(str, enum.Enum):
    """Kinds of non-zero gaps between adjacent trips."""
    NEGATIVE_GAP = "negative_gap"
    LARGE_GAP = "large_gap"
    SMALL_GAP = "small_gap"
