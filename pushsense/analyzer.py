"""
Push-up phase state machine and rep counter.

One PushupAnalyzer per workout session. Each call to process() consumes one
frame of keypoints and returns the output snapshot plus the telemetry events
produced by that frame; the analyzer itself never touches storage.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Union

from .angles import NEUTRAL_ALIGNMENT_DEG, TrailingAverage, body_alignment_deg, elbow_angle_deg
from .feedback import (
    PROMPT_FINISH_REP,
    PROMPT_GO_LOWER,
    PROMPT_KEEP_GOING,
    PROMPT_PUSH_UP,
    PROMPT_START,
    Feedback,
    FeedbackKind,
    render_feedback,
    resolve_feedback,
)
from .form import MAX_SCORE, alignment_penalty, apply_pacing, clamp_score, rep_quality, reps_too_fast
from .keypoints import Keypoint, select_side
from .thresholds import DEFAULT_PROFILE, ThresholdProfile

logger = logging.getLogger(__name__)


class Phase(Enum):
    UP = "up"
    DOWN = "down"
    TRANSITION = "transition"


@dataclass(frozen=True)
class FrameEvent:
    """Per-frame telemetry sample."""
    timestamp_ms: float
    has_pose: bool
    confidence: float = 0.0
    elbow_angle: float = 0.0
    shoulder_y: float = 0.0
    body_alignment: float = NEUTRAL_ALIGNMENT_DEG
    shoulder_drop_confirmed: bool = False


@dataclass(frozen=True)
class RepEvent:
    """Emitted once per counted rep."""
    rep: int
    timestamp_ms: float
    elbow_min: float
    elbow_max: float
    duration_ms: float
    form_score: float


TelemetryEvent = Union[FrameEvent, RepEvent]


@dataclass
class PushupState:
    phase: Phase
    count: int
    form_score: float
    feedback: Optional[Feedback]
    elbow_angle: float
    body_alignment: float

    @property
    def feedback_text(self) -> str:
        return render_feedback(self.feedback)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "count": self.count,
            "form_score": round(self.form_score),
            "feedback": self.feedback_text,
            "feedback_kind": self.feedback.kind.value if self.feedback else None,
            "elbow_angle": round(self.elbow_angle),
            "body_alignment": round(self.body_alignment),
        }


@dataclass
class FrameResult:
    state: PushupState
    events: list[TelemetryEvent]


@dataclass
class AnalyzerState:
    """All mutable memory of one session."""
    phase: Phase = Phase.UP
    count: int = 0
    was_down: bool = False
    rep_form_scores: list[float] = field(default_factory=list)
    rep_timestamps: list[float] = field(default_factory=list)
    last_elbow_angle: float = 180.0
    last_body_alignment: float = NEUTRAL_ALIGNMENT_DEG
    total_frames: int = 0
    consecutive_bad_frames: int = 0
    frames_since_last_rep: int = 0
    elbow_window: TrailingAverage = field(default_factory=TrailingAverage)
    shoulder_window: TrailingAverage = field(default_factory=TrailingAverage)
    # Shoulder Y captured on entering "up"; baseline for drop detection.
    shoulder_y_at_up: Optional[float] = None
    # Computed on down frames; does not gate counting.
    shoulder_drop_confirmed: bool = False
    rep_min_angle: Optional[float] = None
    rep_max_angle: Optional[float] = None
    first_pose_ms: Optional[float] = None


class PushupAnalyzer:
    """
    Rep counter for a single session.
    A rep is counted on reaching the up threshold after a down frame, unless the
    previous frame was already "up" or the debounce window has not elapsed.
    """

    def __init__(self, profile: ThresholdProfile = DEFAULT_PROFILE):
        self.profile = profile
        self.state = AnalyzerState()

    def reset(self) -> None:
        self.state = AnalyzerState()

    @property
    def count(self) -> int:
        return self.state.count

    @property
    def rep_timestamps(self) -> list[float]:
        return list(self.state.rep_timestamps)

    @property
    def rep_form_scores(self) -> list[float]:
        return list(self.state.rep_form_scores)

    def average_form_score(self) -> int:
        scores = self.state.rep_form_scores
        if not scores:
            return 0
        return int(round(sum(scores) / len(scores)))

    def process(
        self,
        keypoints: Iterable[Keypoint],
        timestamp_ms: Optional[float] = None,
    ) -> FrameResult:
        ts = float(timestamp_ms) if timestamp_ms is not None else time.time() * 1000.0
        st = self.state
        st.total_frames += 1
        st.frames_since_last_rep += 1

        chain = select_side(keypoints, self.profile.confidence_threshold)
        if chain is None:
            st.consecutive_bad_frames += 1
            if st.consecutive_bad_frames == 1:
                logger.debug("analyzer: pose lost at frame %s", st.total_frames)
            snapshot = PushupState(
                phase=st.phase,
                count=st.count,
                form_score=0.0,
                feedback=resolve_feedback(no_pose=True),
                elbow_angle=st.last_elbow_angle,
                body_alignment=st.last_body_alignment,
            )
            return FrameResult(snapshot, [FrameEvent(timestamp_ms=ts, has_pose=False)])

        st.consecutive_bad_frames = 0
        if st.first_pose_ms is None:
            st.first_pose_ms = ts

        elbow = st.elbow_window.push(elbow_angle_deg(chain))
        shoulder_y = st.shoulder_window.push(chain.shoulder.y)
        alignment = body_alignment_deg(chain)
        st.last_elbow_angle = elbow
        st.last_body_alignment = alignment
        st.rep_min_angle = elbow if st.rep_min_angle is None else min(st.rep_min_angle, elbow)
        st.rep_max_angle = elbow if st.rep_max_angle is None else max(st.rep_max_angle, elbow)

        penalty, alignment_warning = alignment_penalty(alignment, self.profile.body_alignment_threshold)
        score = MAX_SCORE - penalty

        rep_stats = None
        prompt = self._advance_phase(elbow, shoulder_y)
        if prompt is None:
            rep_stats = self._count_rep(ts, shoulder_y)
            prompt = Feedback(FeedbackKind.PHASE_PROMPT, PROMPT_KEEP_GOING)

        pacing = reps_too_fast(st.rep_timestamps)
        if pacing:
            score = apply_pacing(score)
        score = clamp_score(score)

        events: list[TelemetryEvent] = [
            FrameEvent(
                timestamp_ms=ts,
                has_pose=True,
                confidence=chain.confidence,
                elbow_angle=elbow,
                shoulder_y=shoulder_y,
                body_alignment=alignment,
                shoulder_drop_confirmed=st.shoulder_drop_confirmed,
            )
        ]
        rep_feedback = None
        if rep_stats is not None:
            st.rep_form_scores.append(score)
            elbow_min, elbow_max, duration_ms = rep_stats
            events.append(
                RepEvent(
                    rep=st.count,
                    timestamp_ms=ts,
                    elbow_min=elbow_min,
                    elbow_max=elbow_max,
                    duration_ms=duration_ms,
                    form_score=score,
                )
            )
            rep_feedback = Feedback(FeedbackKind.REP_COUNTED, rep_quality(score))
            logger.info(
                "live_rep: rep %s (side=%s score=%.0f min=%.1f max=%.1f dur_ms=%.0f)",
                st.count, chain.side, score, elbow_min, elbow_max, duration_ms,
            )

        snapshot = PushupState(
            phase=st.phase,
            count=st.count,
            form_score=score,
            feedback=resolve_feedback(
                alignment=alignment_warning,
                rep_counted=rep_feedback,
                phase_prompt=prompt,
                pacing=pacing,
            ),
            elbow_angle=elbow,
            body_alignment=alignment,
        )
        return FrameResult(snapshot, events)

    def _advance_phase(self, elbow: float, shoulder_y: float) -> Optional[Feedback]:
        """Apply one transition. Returns the phase prompt, or None when a rep is due."""
        st, p = self.state, self.profile
        previous = st.phase
        if st.phase is Phase.UP and st.shoulder_y_at_up is None:
            st.shoulder_y_at_up = shoulder_y

        if elbow <= p.elbow_down_angle:
            st.phase = Phase.DOWN
            st.was_down = True
            if st.shoulder_y_at_up is not None and shoulder_y - st.shoulder_y_at_up > p.shoulder_drop_threshold:
                st.shoulder_drop_confirmed = True
            return Feedback(FeedbackKind.PHASE_PROMPT, PROMPT_PUSH_UP)

        if elbow >= p.elbow_up_angle:
            due = (
                st.was_down
                and previous is not Phase.UP
                and st.frames_since_last_rep > p.min_frames_between_reps
            )
            st.phase = Phase.UP
            if due:
                return None
            if st.shoulder_y_at_up is None:
                st.shoulder_y_at_up = shoulder_y
            key = PROMPT_START if st.count == 0 else PROMPT_KEEP_GOING
            return Feedback(FeedbackKind.PHASE_PROMPT, key)

        st.phase = Phase.TRANSITION
        key = PROMPT_FINISH_REP if st.was_down else PROMPT_GO_LOWER
        return Feedback(FeedbackKind.PHASE_PROMPT, key)

    def _count_rep(self, ts: float, shoulder_y: float) -> tuple[float, float, float]:
        """Book a rep; returns (elbow_min, elbow_max, duration_ms) of the finished rep."""
        st = self.state
        previous_ts = st.rep_timestamps[-1] if st.rep_timestamps else st.first_pose_ms
        duration_ms = ts - previous_ts if previous_ts is not None else 0.0
        elbow_min = st.rep_min_angle if st.rep_min_angle is not None else st.last_elbow_angle
        elbow_max = st.rep_max_angle if st.rep_max_angle is not None else st.last_elbow_angle

        st.count += 1
        st.was_down = False
        st.shoulder_drop_confirmed = False
        st.shoulder_y_at_up = shoulder_y
        st.rep_timestamps.append(ts)
        st.frames_since_last_rep = 0
        st.rep_min_angle = None
        st.rep_max_angle = None
        return elbow_min, elbow_max, duration_ms
