"""
Draw the tracked arm chain and the workout HUD on frames (in-place).
"""
from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .analyzer import Phase, PushupState
from .keypoints import Keypoint, select_side

_PHASE_COLORS = {
    Phase.UP: (0, 200, 0),
    Phase.DOWN: (0, 140, 255),
    Phase.TRANSITION: (200, 200, 0),
}


def _pt(kp: Keypoint) -> tuple[int, int]:
    return (int(round(kp.x)), int(round(kp.y)))


def draw_arm_chain(
    frame: np.ndarray,
    keypoints: list[Keypoint],
    confidence_threshold: float,
    color: tuple[int, int, int] = (0, 255, 0),
    thickness: int = 2,
) -> None:
    """Draw shoulder-elbow-wrist and shoulder-hip(-ankle) of the side the counter uses."""
    chain = select_side(keypoints, confidence_threshold)
    if chain is None:
        return
    segments = [(chain.shoulder, chain.elbow), (chain.elbow, chain.wrist), (chain.shoulder, chain.hip)]
    if chain.ankle is not None:
        segments.append((chain.hip, chain.ankle))
    for a, b in segments:
        cv2.line(frame, _pt(a), _pt(b), (255, 255, 255), thickness)
    for kp in (chain.shoulder, chain.elbow, chain.wrist, chain.hip, chain.ankle):
        if kp is not None:
            cv2.circle(frame, _pt(kp), 6, color, -1)


def draw_workout_hud(
    frame: np.ndarray,
    state: PushupState,
    keypoints: Optional[list[Keypoint]] = None,
    confidence_threshold: float = 0.2,
    status: Optional[str] = None,
) -> None:
    """Count, phase, form score and the current feedback line."""
    h, w = frame.shape[:2]
    color = _PHASE_COLORS.get(state.phase, (255, 255, 255))
    if keypoints:
        draw_arm_chain(frame, keypoints, confidence_threshold, color=color)

    overlay = frame.copy()
    cv2.rectangle(overlay, (0, 0), (w, 150), (40, 40, 40), -1)
    cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

    font = cv2.FONT_HERSHEY_SIMPLEX
    y0, dy = 32, 30

    def put(line: str, y: int, scale: float = 0.7, col: tuple[int, int, int] = (255, 255, 255)) -> None:
        cv2.putText(frame, line, (12, y), font, scale, col, 2, cv2.LINE_AA)

    put(f"Push-ups: {state.count}", y0, 0.9, (0, 255, 0))
    put(f"Phase: {state.phase.value}   Form: {state.form_score:.0f}", y0 + dy, 0.7, color)
    put(f"Elbow: {state.elbow_angle:.0f} deg   Body: {state.body_alignment:.0f} deg", y0 + 2 * dy)
    if status:
        put(status, y0 + 3 * dy, 0.6, (200, 200, 200))

    text = state.feedback_text
    if text:
        cv2.putText(frame, text, (12, h - 24), font, 0.8, (0, 200, 255), 2, cv2.LINE_AA)
