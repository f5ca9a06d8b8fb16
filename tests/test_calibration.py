from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FRAME_MS, arm_keypoints, calibration_frames

from pushsense.analyzer import PushupAnalyzer
from pushsense.calibration import (
    DEGENERATE_RANGE,
    TOO_FEW_CYCLES,
    TOO_FEW_FRAMES,
    CalibrationFrame,
    CalibrationProfile,
    CalibrationRecorder,
    InsufficientCalibrationData,
    analyze_calibration,
    calibrate_user,
    delete_calibration,
    find_rep_extremes,
)
from pushsense.storage import MemoryProfileStore, StorageError
from pushsense.thresholds import DEFAULT_PROFILE


def test_four_rep_capture_interpolates_thresholds():
    profile = analyze_calibration(calibration_frames(4), "alice")
    t = profile.thresholds
    assert profile.test_rep_count == 4
    assert len(profile.elbow_mins) == 4
    assert len(profile.elbow_maxes) == 3
    # Smoothed extremes are ~62.4 and ~167.6
    assert profile.elbow_mins == [62, 62, 62, 62]
    assert profile.elbow_maxes == [168, 168, 168]
    assert t.elbow_down_angle == 94
    assert t.elbow_up_angle == 147
    assert profile.shoulder_drops == [20, 20, 20, 20]
    assert t.shoulder_drop_threshold == 12
    assert 70 <= t.elbow_down_angle <= 130
    assert 130 <= t.elbow_up_angle <= 175
    # Not calibrated, carried from defaults
    assert t.min_frames_between_reps == DEFAULT_PROFILE.min_frames_between_reps
    assert t.confidence_threshold == DEFAULT_PROFILE.confidence_threshold
    assert t.body_alignment_threshold == DEFAULT_PROFILE.body_alignment_threshold


def test_extremes_walk():
    valleys, peaks, drops = find_rep_extremes(calibration_frames(3))
    assert len(valleys) == 3
    assert len(peaks) == 2
    assert valleys[0] == pytest.approx(62.38, abs=0.05)
    assert peaks[0] == pytest.approx(167.62, abs=0.05)
    assert drops == pytest.approx([20.0, 20.0, 20.0])


def test_small_drop_is_clamped_to_minimum():
    profile = analyze_calibration(calibration_frames(3, drop=4.0), "bob")
    assert profile.thresholds.shoulder_drop_threshold == 5


def test_too_few_frames():
    with pytest.raises(InsufficientCalibrationData) as exc:
        analyze_calibration(calibration_frames(4)[:29], "alice")
    assert exc.value.reason == TOO_FEW_FRAMES


def test_too_few_cycles():
    frames = [CalibrationFrame(170.0 - i, 100.0, i * FRAME_MS) for i in range(60)]
    with pytest.raises(InsufficientCalibrationData) as exc:
        analyze_calibration(frames, "alice")
    assert exc.value.reason == TOO_FEW_CYCLES


def test_tiny_range_is_degenerate():
    # Single-frame twitches around 130 deg: both thresholds clamp to 130
    frames = [
        CalibrationFrame(133.0 if i in (10, 30, 50, 70) else 130.0, 100.0, i * FRAME_MS)
        for i in range(80)
    ]
    with pytest.raises(InsufficientCalibrationData) as exc:
        analyze_calibration(frames, "alice")
    assert exc.value.reason == DEGENERATE_RANGE


def test_failed_calibration_leaves_stored_profile_alone():
    store = MemoryProfileStore()
    first = calibrate_user(calibration_frames(4), "alice", store)
    with pytest.raises(InsufficientCalibrationData):
        calibrate_user(calibration_frames(4)[:10], "alice", store)
    assert store.get_profile("alice") == first


def test_new_calibration_overwrites_previous():
    store = MemoryProfileStore()
    calibrate_user(calibration_frames(3, drop=4.0), "alice", store)
    latest = calibrate_user(calibration_frames(4), "alice", store)
    assert store.get_profile("alice").profile_id == latest.profile_id
    assert store.get_profile("alice").thresholds.shoulder_drop_threshold == 12


def test_storage_failure_still_returns_profile():
    class BrokenStore:
        def save_profile(self, profile):
            raise StorageError("disk full")

        def delete_profile(self, user_id):
            raise StorageError("disk full")

    profile = calibrate_user(calibration_frames(4), "alice", BrokenStore())
    assert profile.thresholds.elbow_down_angle == 94


def test_delete_calibration():
    store = MemoryProfileStore()
    calibrate_user(calibration_frames(4), "alice", store)
    delete_calibration("alice", store)
    assert store.get_profile("alice") is None


def test_profile_dict_round_trip():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    profile = analyze_calibration(calibration_frames(4), "alice", now=now)
    data = profile.to_dict()
    assert data["elbow_down_angle"] == 94
    assert data["calibrated_at"] == now.isoformat()
    assert "thresholds" not in data
    assert CalibrationProfile.from_dict(data) == profile


def test_calibrated_profile_reproduces_rep_count():
    frames = calibration_frames(4)
    profile = analyze_calibration(frames, "alice")
    analyzer = PushupAnalyzer(profile.thresholds)
    for f in frames:
        analyzer.process(arm_keypoints(f.elbow_angle, shoulder_y=f.shoulder_y), f.timestamp_ms)
    assert analyzer.count == profile.test_rep_count


def test_recorder_collects_usable_frames():
    recorder = CalibrationRecorder()
    assert recorder.push(arm_keypoints(90.0, shoulder_y=120.0), 0.0)
    assert not recorder.push([], 33.0)
    assert not recorder.push(arm_keypoints(90.0, confidence=0.1), 66.0)
    assert len(recorder) == 1
    assert recorder.skipped == 2
    frame = recorder.frames[0]
    assert frame.elbow_angle == pytest.approx(90.0)
    assert frame.shoulder_y == 120.0


def test_recorder_frames_calibrate():
    recorder = CalibrationRecorder()
    for f in calibration_frames(4):
        recorder.push(arm_keypoints(f.elbow_angle, shoulder_y=f.shoulder_y), f.timestamp_ms)
    profile = analyze_calibration(recorder.frames, "alice")
    assert profile.thresholds.elbow_down_angle == 94
    assert profile.thresholds.elbow_up_angle == 147
