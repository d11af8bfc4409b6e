"""Tests for competitor betting eligibility."""

from datetime import datetime

from podium.rating.eligibility import (
    CALIBRATING,
    INACTIVE,
    calibration_progress,
    ineligibility_reason,
    is_eligible,
    window_start,
)


def test_eligible_at_thresholds():
    assert ineligibility_reason(5, 2) is None
    assert is_eligible(5, 2)


def test_four_lifetime_races_is_calibrating():
    assert ineligibility_reason(4, 4) == CALIBRATING
    assert not is_eligible(4, 4)


def test_calibration_checked_before_activity():
    assert ineligibility_reason(0, 0) == CALIBRATING


def test_one_recent_race_is_inactive():
    assert ineligibility_reason(120, 1) == INACTIVE


def test_calibration_progress_is_capped():
    assert calibration_progress(0) == 0
    assert calibration_progress(3) == 3
    assert calibration_progress(17) == 5


def test_window_is_thirty_days():
    assert window_start(datetime(2026, 11, 30, 12, 0)) == datetime(2026, 10, 31, 12, 0)
