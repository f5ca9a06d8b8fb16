from __future__ import annotations

import numpy as np
import pytest

from conftest import arm_keypoints

from pushsense.angles import (
    TrailingAverage,
    body_alignment_deg,
    centered_moving_average,
    elbow_angle_deg,
    joint_angle_deg,
)
from pushsense.keypoints import Keypoint, select_side


def _kp(x, y):
    return Keypoint("p", x, y, 1.0)


@pytest.mark.parametrize("angle", [30.0, 60.0, 90.0, 135.0, 170.0])
def test_elbow_angle_matches_geometry(angle):
    chain = select_side(arm_keypoints(angle), 0.2)
    assert elbow_angle_deg(chain) == pytest.approx(angle)


def test_joint_angle_is_folded_into_0_180():
    assert joint_angle_deg(_kp(1, 0), _kp(0, 0), _kp(0, 1)) == pytest.approx(90.0)
    assert joint_angle_deg(_kp(0, 1), _kp(0, 0), _kp(1, 0)) == pytest.approx(90.0)
    assert joint_angle_deg(_kp(1, 0), _kp(0, 0), _kp(-1, 0)) == pytest.approx(180.0)
    # reflex side of 270 deg folds to 90
    assert joint_angle_deg(_kp(0, -1), _kp(0, 0), _kp(-1, 0)) == pytest.approx(90.0)


def test_body_alignment_uses_ankle_or_neutral():
    assert body_alignment_deg(select_side(arm_keypoints(90.0, alignment=150.0), 0.2)) == pytest.approx(150.0)
    assert body_alignment_deg(select_side(arm_keypoints(90.0, alignment=None), 0.2)) == 180.0


def test_trailing_average_window():
    avg = TrailingAverage(5)
    assert avg.value == 0.0
    values = [avg.push(v) for v in [10, 20, 30, 40, 50, 60]]
    assert values[0] == 10
    assert values[1] == 15
    assert values[4] == 30
    # oldest sample falls out
    assert values[5] == 40
    assert len(avg) == 5
    avg.reset()
    assert len(avg) == 0


def test_centered_moving_average_truncates_edges():
    out = centered_moving_average([0, 10, 20, 30, 40, 50], 5)
    expected = np.array([10.0, 15.0, 20.0, 30.0, 35.0, 40.0])
    np.testing.assert_allclose(out, expected)


def test_centered_moving_average_short_input():
    assert len(centered_moving_average([], 5)) == 0
    np.testing.assert_allclose(centered_moving_average([3.0], 5), [3.0])
