"""
Workout session: wires the active profile, one analyzer and one telemetry
accumulator together, and hands finished records to the stores.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

from .analyzer import PushupAnalyzer, PushupState
from .calibration import CalibrationProfile
from .keypoints import Keypoint
from .telemetry import (
    AccuracyRating,
    SessionTelemetry,
    TelemetryAccumulator,
    ThresholdSuggestion,
    suggest_threshold_adjustments,
)
from .thresholds import DEFAULT_PROFILE, InvalidProfileError, ThresholdProfile

logger = logging.getLogger(__name__)


class ProfileReader(Protocol):
    def get_profile(self, user_id: str) -> Optional[CalibrationProfile]: ...


class TelemetryWriter(Protocol):
    def save_session(self, session: SessionTelemetry) -> None: ...


class FeedbackStore(Protocol):
    def update_feedback(
        self,
        session_id: str,
        rating: AccuracyRating | str,
        note: str = "",
        reported_count: Optional[int] = None,
    ) -> SessionTelemetry: ...

    def list_sessions(self, user_id: Optional[str] = None) -> list[SessionTelemetry]: ...


def load_active_profile(store: Optional[ProfileReader], user_id: str) -> tuple[ThresholdProfile, bool]:
    """
    Profile for a new session and whether it is calibrated.
    Missing, invalid or unreadable profiles fall back to the defaults.
    """
    if store is None:
        return DEFAULT_PROFILE, False
    try:
        stored = store.get_profile(user_id)
    except InvalidProfileError as e:
        logger.warning("session: invalid calibration for user=%s (%s); using defaults", user_id, e)
        return DEFAULT_PROFILE, False
    except Exception as e:
        logger.warning("session: could not load calibration for user=%s: %s", user_id, e)
        return DEFAULT_PROFILE, False
    if stored is None:
        return DEFAULT_PROFILE, False
    return stored.thresholds, True


@dataclass
class SessionSummary:
    session_id: str
    user_id: str
    count: int
    rep_timestamps: list[float]
    rep_form_scores: list[float]
    average_form_score: int
    duration_sec: float
    telemetry: SessionTelemetry
    saved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "count": self.count,
            "rep_timestamps": list(self.rep_timestamps),
            "rep_form_scores": list(self.rep_form_scores),
            "average_form_score": self.average_form_score,
            "duration_sec": self.duration_sec,
            "saved": self.saved,
            "telemetry": self.telemetry.to_dict(),
        }


class WorkoutSession:
    """One user's live workout. Not shared between users or threads."""

    def __init__(
        self,
        user_id: str = "anonymous",
        profile: Optional[ThresholdProfile] = None,
        was_calibrated: bool = False,
        telemetry_store: Optional[TelemetryWriter] = None,
    ):
        self.user_id = user_id
        self.profile = profile or DEFAULT_PROFILE
        self.was_calibrated = was_calibrated
        self.telemetry_store = telemetry_store
        self.analyzer = PushupAnalyzer(self.profile)
        self.accumulator = TelemetryAccumulator()
        self.session_id = self.accumulator.session_id
        self.last_state: Optional[PushupState] = None
        self._first_ts: Optional[float] = None
        self._last_ts: Optional[float] = None
        self._summary: Optional[SessionSummary] = None

    @classmethod
    def start(
        cls,
        user_id: str,
        profile_store: Optional[ProfileReader] = None,
        telemetry_store: Optional[TelemetryWriter] = None,
    ) -> "WorkoutSession":
        profile, calibrated = load_active_profile(profile_store, user_id)
        session = cls(user_id, profile, calibrated, telemetry_store)
        logger.info(
            "session: started %s user=%s calibrated=%s down=%s up=%s",
            session.session_id, user_id, calibrated, profile.elbow_down_angle, profile.elbow_up_angle,
        )
        return session

    @property
    def finished(self) -> bool:
        return self._summary is not None

    def process_frame(self, keypoints: Iterable[Keypoint], timestamp_ms: Optional[float] = None) -> PushupState:
        if self._summary is not None:
            raise RuntimeError(f"session {self.session_id} already finished")
        result = self.analyzer.process(keypoints, timestamp_ms)
        self.accumulator.record_all(result.events)
        ts = result.events[0].timestamp_ms
        if self._first_ts is None:
            self._first_ts = ts
        self._last_ts = ts
        self.last_state = result.state
        return result.state

    def finish(self) -> SessionSummary:
        """Close the session and persist telemetry; calling again returns the same summary."""
        if self._summary is not None:
            return self._summary
        telemetry = self.accumulator.summarize(self.user_id, self.profile, self.was_calibrated)
        saved = False
        if self.telemetry_store is not None:
            try:
                self.telemetry_store.save_session(telemetry)
                saved = True
            except Exception as e:
                logger.warning("session: could not save telemetry %s: %s", telemetry.session_id, e)
        duration = 0.0
        if self._first_ts is not None and self._last_ts is not None:
            duration = (self._last_ts - self._first_ts) / 1000.0
        self._summary = SessionSummary(
            session_id=telemetry.session_id,
            user_id=self.user_id,
            count=self.analyzer.count,
            rep_timestamps=self.analyzer.rep_timestamps,
            rep_form_scores=self.analyzer.rep_form_scores,
            average_form_score=self.analyzer.average_form_score(),
            duration_sec=duration,
            telemetry=telemetry,
            saved=saved,
        )
        logger.info(
            "session: finished %s user=%s reps=%s avg_form=%s saved=%s",
            self.session_id, self.user_id, self._summary.count, self._summary.average_form_score, saved,
        )
        return self._summary


def record_feedback(
    store: FeedbackStore,
    session_id: str,
    rating: AccuracyRating | str,
    note: str = "",
    reported_count: Optional[int] = None,
) -> SessionTelemetry:
    """Attach the post-session accuracy label through a telemetry store."""
    session = store.update_feedback(session_id, rating, note=note, reported_count=reported_count)
    logger.info("session: feedback %s for %s", session.count_accuracy_rating.value, session_id)
    return session


def suggest_for_user(store: FeedbackStore, user_id: str) -> Optional[ThresholdSuggestion]:
    return suggest_threshold_adjustments(store.list_sessions(user_id))
