"""
Structured per-frame feedback. Decision code works with Feedback tags;
display text is produced only at the boundary by render_feedback().
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FeedbackKind(Enum):
    NO_POSE = "no_pose"
    ALIGNMENT_WARNING = "alignment_warning"
    REP_COUNTED = "rep_counted"
    PHASE_PROMPT = "phase_prompt"
    PACING_WARNING = "pacing_warning"


@dataclass(frozen=True)
class Feedback:
    kind: FeedbackKind
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"kind": self.kind.value, "detail": self.detail, "text": render_feedback(self)}


NO_POSE = Feedback(FeedbackKind.NO_POSE)
PACING = Feedback(FeedbackKind.PACING_WARNING)

# Alignment severities
SEVERE = "severe"
MINOR = "minor"

# Phase prompt keys
PROMPT_PUSH_UP = "push_up"
PROMPT_START = "start"
PROMPT_KEEP_GOING = "keep_going"
PROMPT_FINISH_REP = "finish_rep"
PROMPT_GO_LOWER = "go_lower"

_TEXT = {
    (FeedbackKind.NO_POSE, None): "Position yourself so your full body is visible",
    (FeedbackKind.ALIGNMENT_WARNING, SEVERE): "Keep your body straight - avoid sagging hips",
    (FeedbackKind.ALIGNMENT_WARNING, MINOR): "Slight hip drop detected - engage your core",
    (FeedbackKind.REP_COUNTED, "great"): "Great rep!",
    (FeedbackKind.REP_COUNTED, "good"): "Good rep - watch your form",
    (FeedbackKind.REP_COUNTED, "poor"): "Rep counted - try to improve form",
    (FeedbackKind.PHASE_PROMPT, PROMPT_PUSH_UP): "Good depth! Now push up",
    (FeedbackKind.PHASE_PROMPT, PROMPT_START): "Lower your chest to the ground",
    (FeedbackKind.PHASE_PROMPT, PROMPT_KEEP_GOING): "Good position - keep going!",
    (FeedbackKind.PHASE_PROMPT, PROMPT_FINISH_REP): "Push all the way up",
    (FeedbackKind.PHASE_PROMPT, PROMPT_GO_LOWER): "Go lower for a full rep",
    (FeedbackKind.PACING_WARNING, None): "Slow down for proper form",
}


def render_feedback(feedback: Optional[Feedback]) -> str:
    if feedback is None:
        return ""
    return _TEXT.get((feedback.kind, feedback.detail), "")


def resolve_feedback(
    no_pose: bool = False,
    alignment: Optional[Feedback] = None,
    rep_counted: Optional[Feedback] = None,
    phase_prompt: Optional[Feedback] = None,
    pacing: bool = False,
) -> Optional[Feedback]:
    """
    Pick the single message shown for a frame.

    No-pose beats everything. The pacing warning overrides whatever else was
    chosen. Otherwise a counted rep reports its quality, then an alignment
    warning, then the phase prompt.
    """
    if no_pose:
        return NO_POSE
    if pacing:
        return PACING
    if rep_counted is not None:
        return rep_counted
    if alignment is not None:
        return alignment
    return phase_prompt
