"""
Joint angles from keypoints and the smoothing used on them.
"""
from __future__ import annotations

import math
from collections import deque
from typing import Sequence

import numpy as np

from .keypoints import ArmChain, Keypoint

# Trailing window (frames) for live elbow angle and shoulder Y smoothing.
SMOOTHING_WINDOW = 5
# Alignment reported when the ankle is not tracked (treated as a straight body).
NEUTRAL_ALIGNMENT_DEG = 180.0


def joint_angle_deg(a: Keypoint, b: Keypoint, c: Keypoint) -> float:
    """Angle at b for a-b-c in degrees, folded into [0, 180]."""
    radians = math.atan2(c.y - b.y, c.x - b.x) - math.atan2(a.y - b.y, a.x - b.x)
    angle = abs(math.degrees(radians))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def elbow_angle_deg(chain: ArmChain) -> float:
    return joint_angle_deg(chain.shoulder, chain.elbow, chain.wrist)


def body_alignment_deg(chain: ArmChain) -> float:
    """Shoulder-hip-ankle angle at the hip; neutral when the ankle is missing."""
    if chain.ankle is None:
        return NEUTRAL_ALIGNMENT_DEG
    return joint_angle_deg(chain.shoulder, chain.hip, chain.ankle)


class TrailingAverage:
    """Mean of the last `size` samples. Empty buffer reads as 0."""

    def __init__(self, size: int = SMOOTHING_WINDOW):
        self.size = size
        self._buf: deque[float] = deque(maxlen=size)

    def push(self, value: float) -> float:
        self._buf.append(float(value))
        return self.value

    @property
    def value(self) -> float:
        if not self._buf:
            return 0.0
        return sum(self._buf) / len(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        self._buf.clear()


def centered_moving_average(values: Sequence[float], window: int = SMOOTHING_WINDOW) -> np.ndarray:
    """Centered moving average; windows are truncated at both ends rather than padded."""
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    if n == 0 or window <= 1:
        return arr.copy()
    lo_off = window // 2
    hi_off = window - lo_off
    out = np.empty(n, dtype=float)
    for i in range(n):
        lo = max(0, i - lo_off)
        hi = min(n, i + hi_off)
        out[i] = arr[lo:hi].mean()
    return out
