"""
Per-frame form score: alignment and pacing penalties on a 0-100 scale.
"""
from __future__ import annotations

from typing import Optional, Sequence

from .feedback import MINOR, SEVERE, Feedback, FeedbackKind

MAX_SCORE = 100.0
MAX_ALIGNMENT_PENALTY = 40.0
# Alignment below this reads as sagging hips rather than a slight drop.
HIP_SAG_CUTOFF_DEG = 140.0
# Consecutive reps closer than this are "too fast".
MIN_REP_INTERVAL_MS = 800.0
PACING_PENALTY = 30.0
PACING_FLOOR = 10.0


def alignment_penalty(alignment_deg: float, threshold_deg: float) -> tuple[float, Optional[Feedback]]:
    """Return (penalty, warning) for a body alignment angle."""
    if alignment_deg >= threshold_deg:
        return 0.0, None
    penalty = min(MAX_ALIGNMENT_PENALTY, (threshold_deg - alignment_deg) * 2.0)
    severity = SEVERE if alignment_deg < HIP_SAG_CUTOFF_DEG else MINOR
    return penalty, Feedback(FeedbackKind.ALIGNMENT_WARNING, severity)


def reps_too_fast(rep_timestamps: Sequence[float]) -> bool:
    if len(rep_timestamps) < 2:
        return False
    return (rep_timestamps[-1] - rep_timestamps[-2]) < MIN_REP_INTERVAL_MS


def apply_pacing(score: float) -> float:
    return max(score - PACING_PENALTY, PACING_FLOOR)


def clamp_score(score: float) -> float:
    return max(0.0, min(MAX_SCORE, score))


def rep_quality(score: float) -> str:
    if score >= 80:
        return "great"
    if score >= 60:
        return "good"
    return "poor"
