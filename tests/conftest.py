from __future__ import annotations

import math
from typing import Callable, Optional

import pytest

from pushsense.calibration import CalibrationFrame
from pushsense.keypoints import Keypoint

FRAME_MS = 1000.0 / 30.0


def arm_keypoints(
    elbow_angle: float,
    side: str = "left",
    confidence: float = 0.9,
    shoulder_y: float = 100.0,
    alignment: Optional[float] = 180.0,
    x: float = 200.0,
) -> list[Keypoint]:
    """
    One side's shoulder/elbow/wrist/hip(/ankle) laid out so the elbow angle and the
    shoulder-hip-ankle angle are exactly the requested values.
    """
    theta = math.radians(elbow_angle)
    shoulder = (x, shoulder_y)
    elbow = (x, shoulder_y + 100.0)
    wrist = (elbow[0] + 100.0 * math.sin(theta), elbow[1] - 100.0 * math.cos(theta))
    hip = (x, shoulder_y + 200.0)
    pts = [
        Keypoint(f"{side}_shoulder", *shoulder, confidence),
        Keypoint(f"{side}_elbow", *elbow, confidence),
        Keypoint(f"{side}_wrist", *wrist, confidence),
        Keypoint(f"{side}_hip", *hip, confidence),
    ]
    if alignment is not None:
        alpha = math.radians(alignment)
        ankle = (hip[0] + 200.0 * math.sin(alpha), hip[1] - 200.0 * math.cos(alpha))
        pts.append(Keypoint(f"{side}_ankle", *ankle, confidence))
    return pts


def block_reps(reps: int, down: int = 8, up: int = 8, lead: int = 10) -> list[float]:
    """Square-wave elbow angles: `lead` frames at 170, then `reps` x (60 for down, 170 for up)."""
    angles = [170.0] * lead
    for _ in range(reps):
        angles += [60.0] * down + [170.0] * up
    return angles


def cosine_angles(cycles: float, period: int = 30) -> list[float]:
    """Elbow angle oscillating 60..170 deg starting at the top."""
    n = int(round(cycles * period))
    return [115.0 + 55.0 * math.cos(2 * math.pi * t / period) for t in range(n)]


def calibration_frames(cycles: int = 4, period: int = 30, drop: float = 20.0) -> list[CalibrationFrame]:
    """Clean calibration capture: `cycles` reps starting and ending at the top."""
    frames = []
    for t in range(cycles * period + 1):
        phase = 2 * math.pi * t / period
        frames.append(
            CalibrationFrame(
                elbow_angle=115.0 + 55.0 * math.cos(phase),
                shoulder_y=100.0 + drop / 2.0 * (1.0 - math.cos(phase)),
                timestamp_ms=t * FRAME_MS,
            )
        )
    return frames


@pytest.fixture
def make_keypoints() -> Callable[..., list[Keypoint]]:
    return arm_keypoints


@pytest.fixture
def feed() -> Callable:
    """Run a list of elbow angles through an analyzer; returns the per-frame states."""

    def _feed(analyzer, angles, start_ms: float = 0.0, frame_ms: float = FRAME_MS, **kp_kwargs):
        states = []
        for i, angle in enumerate(angles):
            ts = start_ms + i * frame_ms
            states.append(analyzer.process(arm_keypoints(angle, **kp_kwargs), ts).state)
        return states

    return _feed
