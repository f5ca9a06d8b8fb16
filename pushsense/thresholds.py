"""
Threshold profile consumed by the rep counter (default or calibrated per user).
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class InvalidProfileError(ValueError):
    """Profile values would make phase transitions ill-defined."""


@dataclass(frozen=True)
class ThresholdProfile:
    elbow_down_angle: float
    elbow_up_angle: float
    shoulder_drop_threshold: float
    min_frames_between_reps: int
    confidence_threshold: float
    body_alignment_threshold: float

    def validate(self) -> "ThresholdProfile":
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise InvalidProfileError(f"{f.name} must be a finite number, got {value!r}")
        if self.elbow_down_angle >= self.elbow_up_angle:
            raise InvalidProfileError(
                f"elbow_down_angle ({self.elbow_down_angle}) must be below elbow_up_angle ({self.elbow_up_angle})"
            )
        if self.min_frames_between_reps < 0:
            raise InvalidProfileError("min_frames_between_reps must be >= 0")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise InvalidProfileError("confidence_threshold must be within [0, 1]")
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Relaxed from strict 90/160: camera angle widens elbows and full lockout is not always visible.
DEFAULT_PROFILE = ThresholdProfile(
    elbow_down_angle=110.0,
    elbow_up_angle=150.0,
    shoulder_drop_threshold=15.0,
    min_frames_between_reps=8,
    confidence_threshold=0.2,
    body_alignment_threshold=160.0,
)

PROFILE_FIELDS = tuple(f.name for f in fields(ThresholdProfile))


def profile_from_dict(data: Mapping[str, Any], defaults: ThresholdProfile = DEFAULT_PROFILE) -> ThresholdProfile:
    """Build a profile from a mapping; missing fields come from defaults. Raises InvalidProfileError."""
    values = defaults.to_dict()
    for name in PROFILE_FIELDS:
        if name in data and data[name] is not None:
            values[name] = data[name]
    try:
        values["min_frames_between_reps"] = int(values["min_frames_between_reps"])
    except (TypeError, ValueError) as e:
        raise InvalidProfileError(f"min_frames_between_reps: {e}") from e
    return ThresholdProfile(**values).validate()


def load_profile(data: Optional[Mapping[str, Any]]) -> ThresholdProfile:
    """Validated profile from stored data, or the default when absent or malformed."""
    if not data:
        return DEFAULT_PROFILE
    try:
        return profile_from_dict(data)
    except InvalidProfileError as e:
        logger.warning("thresholds: rejecting stored profile (%s); using defaults", e)
        return DEFAULT_PROFILE
