"""
Session telemetry: live accumulation of detection quality and per-rep stats,
finalized records, and feedback-driven threshold suggestions.
"""
from __future__ import annotations

import json
import logging
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .analyzer import FrameEvent, RepEvent, TelemetryEvent
from .thresholds import ThresholdProfile

logger = logging.getLogger(__name__)

# Keep one sample per this many pose frames.
SAMPLE_EVERY = 10
MIN_LABELED_SESSIONS = 2
TIGHTEN_DOWN_DELTA = -10.0
LOOSEN_DOWN_DELTA = 8.0
LOOSEN_UP_DELTA = -5.0


class AccuracyRating(Enum):
    ACCURATE = "accurate"
    OVERCOUNTED = "overcounted"
    UNDERCOUNTED = "undercounted"


class FeedbackAlreadyAttachedError(Exception):
    pass


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


@dataclass
class SessionTelemetry:
    session_id: str
    user_id: str
    session_date: str
    total_frames: int
    frames_with_pose: int
    frames_without_pose: int
    avg_confidence: float
    elbow_angle_samples: list[int]
    shoulder_y_samples: list[int]
    body_alignment_samples: list[int]
    rep_elbow_mins: list[int]
    rep_elbow_maxes: list[int]
    rep_durations: list[int]
    rep_form_scores: list[int]
    thresholds_used: dict[str, float]
    was_calibrated: bool
    user_reported_count: Optional[int] = None
    count_accuracy_rating: Optional[AccuracyRating] = None
    feedback_note: str = ""

    def attach_feedback(
        self,
        rating: AccuracyRating | str,
        note: str = "",
        reported_count: Optional[int] = None,
    ) -> None:
        """Label the session once after it closes."""
        if self.count_accuracy_rating is not None:
            raise FeedbackAlreadyAttachedError(f"session {self.session_id} already rated")
        self.count_accuracy_rating = AccuracyRating(rating)
        self.feedback_note = note or ""
        self.user_reported_count = reported_count

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["count_accuracy_rating"] = self.count_accuracy_rating.value if self.count_accuracy_rating else None
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionTelemetry":
        values = dict(data)
        rating = values.get("count_accuracy_rating")
        values["count_accuracy_rating"] = AccuracyRating(rating) if rating else None
        return cls(**values)


@dataclass
class _LiveCounters:
    frame_count: int = 0
    pose_frame_count: int = 0
    confidence_sum: float = 0.0
    elbow_angle_samples: list[int] = field(default_factory=list)
    shoulder_y_samples: list[int] = field(default_factory=list)
    body_alignment_samples: list[int] = field(default_factory=list)
    rep_elbow_mins: list[int] = field(default_factory=list)
    rep_elbow_maxes: list[int] = field(default_factory=list)
    rep_durations: list[int] = field(default_factory=list)
    rep_form_scores: list[int] = field(default_factory=list)


class TelemetryAccumulator:
    """Per-session collector fed with analyzer events."""

    def __init__(self, session_id: Optional[str] = None, started_at: Optional[datetime] = None):
        self._begin(session_id, started_at)

    def _begin(self, session_id: Optional[str], started_at: Optional[datetime]) -> None:
        self.session_id = session_id or f"tel-{uuid.uuid4().hex[:12]}"
        self.started_at = started_at or datetime.now(timezone.utc)
        self._live = _LiveCounters()

    def reset(self) -> None:
        self._begin(None, None)

    @property
    def frame_count(self) -> int:
        return self._live.frame_count

    def record(self, event: TelemetryEvent) -> None:
        if isinstance(event, RepEvent):
            self.record_rep(event)
        else:
            self.record_frame(event)

    def record_all(self, events: Iterable[TelemetryEvent]) -> None:
        for event in events:
            self.record(event)

    def record_frame(self, event: FrameEvent) -> None:
        live = self._live
        live.frame_count += 1
        if not event.has_pose:
            return
        live.pose_frame_count += 1
        live.confidence_sum += event.confidence
        if live.pose_frame_count % SAMPLE_EVERY == 0:
            live.elbow_angle_samples.append(_round_half_up(event.elbow_angle))
            live.shoulder_y_samples.append(_round_half_up(event.shoulder_y))
            live.body_alignment_samples.append(_round_half_up(event.body_alignment))

    def record_rep(self, event: RepEvent) -> None:
        live = self._live
        live.rep_elbow_mins.append(_round_half_up(event.elbow_min))
        live.rep_elbow_maxes.append(_round_half_up(event.elbow_max))
        live.rep_durations.append(_round_half_up(event.duration_ms))
        live.rep_form_scores.append(_round_half_up(event.form_score))

    def summarize(self, user_id: str, profile: ThresholdProfile, was_calibrated: bool) -> SessionTelemetry:
        """Materialize the record without resetting; same data gives the same record."""
        live = self._live
        avg_conf = (
            round(live.confidence_sum / live.pose_frame_count, 2) if live.pose_frame_count > 0 else 0.0
        )
        return SessionTelemetry(
            session_id=self.session_id,
            user_id=user_id,
            session_date=self.started_at.isoformat(),
            total_frames=live.frame_count,
            frames_with_pose=live.pose_frame_count,
            frames_without_pose=live.frame_count - live.pose_frame_count,
            avg_confidence=avg_conf,
            elbow_angle_samples=list(live.elbow_angle_samples),
            shoulder_y_samples=list(live.shoulder_y_samples),
            body_alignment_samples=list(live.body_alignment_samples),
            rep_elbow_mins=list(live.rep_elbow_mins),
            rep_elbow_maxes=list(live.rep_elbow_maxes),
            rep_durations=list(live.rep_durations),
            rep_form_scores=list(live.rep_form_scores),
            thresholds_used={
                "elbow_down_angle": profile.elbow_down_angle,
                "elbow_up_angle": profile.elbow_up_angle,
                "shoulder_drop_threshold": profile.shoulder_drop_threshold,
            },
            was_calibrated=was_calibrated,
        )

    def finish(self, user_id: str, profile: ThresholdProfile, was_calibrated: bool) -> SessionTelemetry:
        session = self.summarize(user_id, profile, was_calibrated)
        logger.info(
            "telemetry: session %s finished (frames=%s pose=%s reps=%s)",
            session.session_id, session.total_frames, session.frames_with_pose, len(session.rep_form_scores),
        )
        self.reset()
        return session


@dataclass(frozen=True)
class ThresholdSuggestion:
    """Advisory only; callers decide whether to apply it or recalibrate."""
    direction: str  # "tighten" | "loosen"
    message: str
    adjusted_down: Optional[int] = None
    adjusted_up: Optional[int] = None
    sessions_considered: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _avg_threshold(sessions: list[SessionTelemetry], key: str) -> float:
    return sum(float(s.thresholds_used[key]) for s in sessions) / len(sessions)


def suggest_threshold_adjustments(sessions: Iterable[SessionTelemetry]) -> Optional[ThresholdSuggestion]:
    """Compare overcounted vs undercounted labels and propose a threshold nudge."""
    labeled = [
        s for s in sessions
        if s.count_accuracy_rating is not None and s.count_accuracy_rating is not AccuracyRating.ACCURATE
    ]
    if len(labeled) < MIN_LABELED_SESSIONS:
        return None
    over = [s for s in labeled if s.count_accuracy_rating is AccuracyRating.OVERCOUNTED]
    under = [s for s in labeled if s.count_accuracy_rating is AccuracyRating.UNDERCOUNTED]

    if len(over) > len(under):
        avg_down = _avg_threshold(over, "elbow_down_angle")
        return ThresholdSuggestion(
            direction="tighten",
            message="Detection seems too sensitive. Tightening thresholds to require deeper reps.",
            adjusted_down=_round_half_up(avg_down + TIGHTEN_DOWN_DELTA),
            sessions_considered=len(labeled),
        )
    if len(under) > len(over):
        avg_down = _avg_threshold(under, "elbow_down_angle")
        avg_up = _avg_threshold(under, "elbow_up_angle")
        return ThresholdSuggestion(
            direction="loosen",
            message="Detection may be missing some reps. Loosening thresholds.",
            adjusted_down=_round_half_up(avg_down + LOOSEN_DOWN_DELTA),
            adjusted_up=_round_half_up(avg_up + LOOSEN_UP_DELTA),
            sessions_considered=len(labeled),
        )
    return None


def export_telemetry(sessions: Iterable[SessionTelemetry]) -> str:
    return json.dumps([s.to_dict() for s in sessions], indent=2)
