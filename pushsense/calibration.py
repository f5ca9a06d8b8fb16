"""
Per-user threshold calibration from a short recorded sample of 3-5 push-ups.

Thresholds are placed at fixed fractions between the user's measured bottom
and top elbow angles, which absorbs limb proportions and camera angle.
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

import numpy as np

from .angles import SMOOTHING_WINDOW, centered_moving_average, elbow_angle_deg
from .keypoints import Keypoint, select_side
from .thresholds import DEFAULT_PROFILE, ThresholdProfile, profile_from_dict

logger = logging.getLogger(__name__)

# ~1 s of camera frames.
MIN_CALIBRATION_FRAMES = 30
MIN_CYCLES = 2
# deg/frame; smaller slope changes are treated as noise.
SLOPE_THRESHOLD_DEG = 0.5
DOWN_FRACTION = 0.3
UP_FRACTION = 0.8
DROP_FRACTION = 0.6
DEFAULT_AVG_DROP = 15.0
DOWN_ANGLE_RANGE = (70.0, 130.0)
UP_ANGLE_RANGE = (130.0, 175.0)
DROP_RANGE = (5.0, 50.0)

TOO_FEW_FRAMES = "too_few_frames"
TOO_FEW_CYCLES = "too_few_cycles"
DEGENERATE_RANGE = "degenerate_range"


class InsufficientCalibrationData(Exception):
    """Calibration sample too short or without enough rep cycles; nothing is applied."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


@dataclass(frozen=True)
class CalibrationFrame:
    elbow_angle: float
    shoulder_y: float
    timestamp_ms: float


@dataclass(frozen=True)
class CalibrationProfile:
    """Calibrated thresholds plus the raw extremes they were derived from."""
    user_id: str
    thresholds: ThresholdProfile
    test_rep_count: int
    elbow_mins: list[int] = field(default_factory=list)
    elbow_maxes: list[int] = field(default_factory=list)
    shoulder_drops: list[int] = field(default_factory=list)
    calibrated_at: str = ""
    profile_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("thresholds")
        data.update(self.thresholds.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalibrationProfile":
        """Raises InvalidProfileError for inverted or non-numeric thresholds."""
        return cls(
            user_id=str(data["user_id"]),
            thresholds=profile_from_dict(data),
            test_rep_count=int(data.get("test_rep_count", 0)),
            elbow_mins=list(data.get("elbow_mins", [])),
            elbow_maxes=list(data.get("elbow_maxes", [])),
            shoulder_drops=list(data.get("shoulder_drops", [])),
            calibrated_at=str(data.get("calibrated_at", "")),
            profile_id=str(data.get("profile_id", "")),
        )


class ProfileWriter(Protocol):
    def save_profile(self, profile: CalibrationProfile) -> None: ...

    def delete_profile(self, user_id: str) -> None: ...


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp(x: float, bounds: tuple[float, float]) -> float:
    return max(bounds[0], min(bounds[1], x))


def find_rep_extremes(
    frames: Sequence[CalibrationFrame],
) -> tuple[list[float], list[float], list[float]]:
    """
    Walk the smoothed elbow angle and return (valleys, peaks, shoulder_drops).
    A descending->ascending reversal is a valley (rep bottom) and records the
    shoulder drop since the last peak; ascending->descending is a peak.
    """
    angles = [f.elbow_angle for f in frames]
    shoulder_ys = [f.shoulder_y for f in frames]
    smoothed = centered_moving_average(angles, SMOOTHING_WINDOW)
    diffs = np.diff(smoothed)

    valleys: list[float] = []
    peaks: list[float] = []
    drops: list[float] = []
    direction: Optional[str] = None
    last_peak_idx = 0
    for i, diff in enumerate(diffs, start=1):
        if diff > SLOPE_THRESHOLD_DEG and direction == "down":
            valleys.append(float(smoothed[i - 1]))
            drops.append(float(shoulder_ys[i - 1] - shoulder_ys[last_peak_idx]))
            direction = "up"
        elif diff < -SLOPE_THRESHOLD_DEG and direction == "up":
            peaks.append(float(smoothed[i - 1]))
            last_peak_idx = i - 1
            direction = "down"
        elif direction is None:
            direction = "up" if diff > 0 else "down"
    return valleys, peaks, drops


def analyze_calibration(
    frames: Sequence[CalibrationFrame],
    user_id: str,
    defaults: ThresholdProfile = DEFAULT_PROFILE,
    now: Optional[datetime] = None,
) -> CalibrationProfile:
    """
    Derive a profile from calibration frames. Pure; raises InsufficientCalibrationData.
    Only the two elbow angles and the shoulder drop are calibrated, the rest comes from defaults.
    """
    if len(frames) < MIN_CALIBRATION_FRAMES:
        raise InsufficientCalibrationData(
            TOO_FEW_FRAMES, f"got {len(frames)} frames, need {MIN_CALIBRATION_FRAMES}"
        )
    valleys, peaks, drops = find_rep_extremes(frames)
    if len(valleys) < MIN_CYCLES or len(peaks) < MIN_CYCLES:
        raise InsufficientCalibrationData(
            TOO_FEW_CYCLES, f"found {len(valleys)} valleys and {len(peaks)} peaks, need {MIN_CYCLES} of each"
        )

    avg_min = float(np.mean(valleys))
    avg_max = float(np.mean(peaks))
    avg_drop = float(np.mean(drops)) if drops else DEFAULT_AVG_DROP
    span = avg_max - avg_min

    down = _round_half_up(avg_min + span * DOWN_FRACTION)
    up = _round_half_up(avg_min + span * UP_FRACTION)
    drop = max(DROP_RANGE[0], _round_half_up(avg_drop * DROP_FRACTION))
    thresholds = replace(
        defaults,
        elbow_down_angle=_clamp(down, DOWN_ANGLE_RANGE),
        elbow_up_angle=_clamp(up, UP_ANGLE_RANGE),
        shoulder_drop_threshold=_clamp(drop, DROP_RANGE),
    )
    if thresholds.elbow_down_angle >= thresholds.elbow_up_angle:
        raise InsufficientCalibrationData(
            DEGENERATE_RANGE, f"bottom {avg_min:.1f} and top {avg_max:.1f} do not bracket a usable band"
        )
    stamp = now or datetime.now(timezone.utc)
    profile = CalibrationProfile(
        user_id=user_id,
        thresholds=thresholds,
        test_rep_count=len(valleys),
        elbow_mins=[_round_half_up(v) for v in valleys],
        elbow_maxes=[_round_half_up(v) for v in peaks],
        shoulder_drops=[_round_half_up(v) for v in drops],
        calibrated_at=stamp.isoformat(),
        profile_id=f"cal-{uuid.uuid4().hex[:12]}",
    )
    logger.info(
        "calibration: user=%s reps=%s avg_min=%.1f avg_max=%.1f avg_drop=%.1f -> down=%s up=%s drop=%s",
        user_id, profile.test_rep_count, avg_min, avg_max, avg_drop,
        thresholds.elbow_down_angle, thresholds.elbow_up_angle, thresholds.shoulder_drop_threshold,
    )
    return profile


def calibrate_user(
    frames: Sequence[CalibrationFrame],
    user_id: str,
    store: ProfileWriter,
    defaults: ThresholdProfile = DEFAULT_PROFILE,
) -> CalibrationProfile:
    """
    Analyze and persist (overwriting the user's previous profile).
    A failed write is logged; the derived profile is still returned.
    """
    profile = analyze_calibration(frames, user_id, defaults=defaults)
    try:
        store.save_profile(profile)
    except Exception as e:
        logger.warning("calibration: could not persist profile for user=%s: %s", user_id, e)
    return profile


def delete_calibration(user_id: str, store: ProfileWriter) -> None:
    store.delete_profile(user_id)
    logger.info("calibration: deleted profile for user=%s", user_id)


class CalibrationRecorder:
    """Collects calibration frames from live keypoints using the session's selector and angle code."""

    def __init__(self, confidence_threshold: float = DEFAULT_PROFILE.confidence_threshold):
        self.confidence_threshold = confidence_threshold
        self.frames: list[CalibrationFrame] = []
        self.skipped = 0

    def push(self, keypoints: Iterable[Keypoint], timestamp_ms: float) -> bool:
        """Record one frame; returns False when no side was usable."""
        chain = select_side(keypoints, self.confidence_threshold)
        if chain is None:
            self.skipped += 1
            return False
        self.frames.append(
            CalibrationFrame(
                elbow_angle=elbow_angle_deg(chain),
                shoulder_y=chain.shoulder.y,
                timestamp_ms=float(timestamp_ms),
            )
        )
        return True

    def __len__(self) -> int:
        return len(self.frames)
