"""
Continuity Validator Tests.

Gap classification and write-time rejection of chain-breaking trips.
"""

import pytest

from mileage_chain.app.core.exceptions import (
    NonPositiveDistanceError,
    OdometerRegressionError,
    SuccessorConflictError,
)
from mileage_chain.app.domain.chain.continuity import ContinuityValidator
from mileage_chain.app.domain.chain.index import ChainIndex
from mileage_chain.app.models.trip_enums import GapClassification


@pytest.fixture
def validator():
    return ContinuityValidator(acceptable_km=10, moderate_km=50)


@pytest.mark.parametrize("gap, expected", [
    (None, GapClassification.NO_PREDECESSOR),
    (-1, GapClassification.NEGATIVE),
    (0, GapClassification.PERFECT),
    (10, GapClassification.ACCEPTABLE),
    (11, GapClassification.MODERATE),
    (50, GapClassification.MODERATE),
    (51, GapClassification.LARGE),
])
def test_classify_gap_thresholds(validator, gap, expected):
    assert validator.classify_gap(gap) == expected


def test_first_trip_has_no_predecessor(validator, chain_trip):
    check = validator.validate(ChainIndex([]), chain_trip(None, 0, 0, 100))

    assert check.classification == GapClassification.NO_PREDECESSOR
    assert check.gap_km is None
    assert check.message == "First trip for vehicle - no previous trip to validate against"


def test_non_positive_distance_rejected(validator, chain_trip):
    with pytest.raises(NonPositiveDistanceError) as exc:
        validator.validate(ChainIndex([]), chain_trip(None, 0, 100, 90))

    assert exc.value.error_code == "ERR_CHAIN_001"
    assert exc.value.status_code == 422

    with pytest.raises(NonPositiveDistanceError):
        validator.validate(ChainIndex([]), chain_trip(None, 0, 100, 100))


def test_regression_rejected_with_predecessor_context(validator, chain_trip):
    previous = chain_trip(1, 0, 0, 1000)
    candidate = chain_trip(None, 1, 980, 1100)

    with pytest.raises(OdometerRegressionError) as exc:
        validator.validate(ChainIndex([previous]), candidate)

    details = exc.value.details
    assert exc.value.error_code == "ERR_CHAIN_002"
    assert details["predecessor_id"] == 1
    assert details["predecessor_end_km"] == 1000
    assert details["gap_km"] == -20
    assert details["predecessor_end_date"] == "01-01-2025 17:00"
    assert "Gap: -20 km (negative - odometer went backwards)" in exc.value.message


def test_gap_classes_pass_with_messages(validator, chain_trip):
    index = ChainIndex([chain_trip(1, 0, 0, 1000)])

    perfect = validator.validate(index, chain_trip(None, 1, 1000, 1100))
    assert perfect.classification == GapClassification.PERFECT
    assert perfect.message == "Perfect odometer continuity maintained"

    small = validator.validate(index, chain_trip(None, 1, 1005, 1100))
    assert small.classification == GapClassification.ACCEPTABLE
    assert small.message == "Small gap of 5 km - likely vehicle movement without trip logging"

    moderate = validator.validate(index, chain_trip(None, 1, 1030, 1100))
    assert moderate.classification == GapClassification.MODERATE
    assert moderate.severity == "warning"
    assert moderate.message.startswith("Moderate odometer gap detected: 30 km")

    large = validator.validate(index, chain_trip(None, 1, 1200, 1300))
    assert large.classification == GapClassification.LARGE
    assert large.requires_investigation
    assert large.severity == "error"
    assert large.message.startswith("LARGE ODOMETER GAP ALERT: 200 km gap detected!")


def test_overlapping_trip_is_not_a_predecessor(validator, chain_trip):
    # Ends after the candidate starts, so it does not constrain it
    overlapping = chain_trip(1, 1, 0, 5000)
    candidate = chain_trip(None, 1, 100, 200)

    check = validator.validate(ChainIndex([overlapping]), candidate)
    assert check.classification == GapClassification.NO_PREDECESSOR


def test_successor_conflict_only_when_end_km_changes(validator, chain_trip):
    t1 = chain_trip(1, 0, 0, 1000)
    t2 = chain_trip(2, 1, 1000, 1100)
    index = ChainIndex([t1, t2])
    raised_end = chain_trip(1, 0, 0, 1050)

    with pytest.raises(SuccessorConflictError) as exc:
        validator.validate(index, raised_end, end_km_changed=True)
    assert exc.value.status_code == 409
    assert exc.value.details["remediation"] == "cascade_correction"

    # Serial or fuel edits do not re-check the successor
    check = validator.validate(index, raised_end, end_km_changed=False)
    assert check.classification == GapClassification.NO_PREDECESSOR


def test_inspect_reports_without_raising(validator, chain_trip):
    index = ChainIndex([chain_trip(1, 0, 0, 1000)])

    check = validator.inspect(index, chain_trip(None, 1, 900, 1100))
    assert check.classification == GapClassification.NEGATIVE
    assert check.gap_km == -100


def test_as_dict(validator, chain_trip):
    index = ChainIndex([chain_trip(1, 0, 0, 1000)])
    data = validator.validate(index, chain_trip(None, 1, 1003, 1100)).as_dict()

    assert data["classification"] == "acceptable"
    assert data["gap_km"] == 3
    assert data["predecessor_id"] == 1
    assert data["predecessor_serial"] == "T-001"
    assert data["requires_investigation"] is False
