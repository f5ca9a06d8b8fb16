from __future__ import annotations

import pytest

from conftest import arm_keypoints, block_reps, cosine_angles

from pushsense.analyzer import FrameEvent, Phase, PushupAnalyzer, RepEvent
from pushsense.feedback import FeedbackKind, PROMPT_PUSH_UP, PROMPT_START
from pushsense.thresholds import DEFAULT_PROFILE


def test_initial_phase_is_up():
    analyzer = PushupAnalyzer()
    assert analyzer.state.phase is Phase.UP
    assert analyzer.count == 0


@pytest.mark.parametrize("cycles,expected", [(1.5, 1), (3.0, 3), (5.5, 5)])
def test_oscillation_counts_whole_cycles(feed, cycles, expected):
    analyzer = PushupAnalyzer()
    feed(analyzer, cosine_angles(cycles))
    assert analyzer.count == expected


def test_square_wave_counts_each_rep_once(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, block_reps(4), frame_ms=100.0)
    assert analyzer.count == 4
    assert states[-1].phase is Phase.UP


def test_count_is_monotonic_and_lists_stay_aligned(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, cosine_angles(4.5))
    counts = [s.count for s in states]
    assert counts == sorted(counts)
    assert len(analyzer.rep_form_scores) == len(analyzer.rep_timestamps) == analyzer.count


def test_debounce_rejects_second_cycle_inside_window(feed):
    analyzer = PushupAnalyzer()
    feed(analyzer, [170.0] * 10 + [60.0] * 8 + [170.0] * 5, frame_ms=100.0)
    assert analyzer.count == 1

    # Down and back up within min_frames_between_reps of the last rep
    feed(analyzer, [60.0] * 3 + [170.0] * 10, start_ms=10_000.0, frame_ms=100.0)
    assert analyzer.count == 1

    feed(analyzer, [60.0] * 8 + [170.0] * 8, start_ms=20_000.0, frame_ms=100.0)
    assert analyzer.count == 2


def test_staying_up_does_not_count(feed):
    analyzer = PushupAnalyzer()
    feed(analyzer, [170.0] * 40)
    assert analyzer.count == 0


def test_transition_band_without_reaching_down_does_not_count(feed):
    analyzer = PushupAnalyzer()
    feed(analyzer, [170.0] * 10 + [130.0] * 10 + [170.0] * 10)
    assert analyzer.count == 0


def test_no_pose_frames_hold_phase_and_zero_score(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, [170.0] * 10 + [60.0] * 8)
    assert states[-1].phase is Phase.DOWN
    for i in range(5):
        result = analyzer.process([], 5_000.0 + i * 33.0)
        assert result.state.form_score == 0
        assert result.state.phase is Phase.DOWN
        assert result.state.count == 0
        assert result.state.feedback.kind is FeedbackKind.NO_POSE
        assert result.events == [FrameEvent(timestamp_ms=5_000.0 + i * 33.0, has_pose=False)]


def test_all_low_confidence_session_reports_zero_and_initial_phase():
    analyzer = PushupAnalyzer()
    for i in range(20):
        state = analyzer.process(arm_keypoints(60.0, confidence=0.1), i * 33.0).state
        assert state.form_score == 0
        assert state.phase is Phase.UP
    assert analyzer.state.total_frames == 20


def test_phase_prompts(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, [170.0] * 6 + [60.0] * 8)
    assert states[0].feedback.detail == PROMPT_START
    assert states[-1].feedback.detail == PROMPT_PUSH_UP
    assert states[-1].feedback_text == "Good depth! Now push up"


def test_counted_rep_reports_quality_and_emits_rep_event():
    analyzer = PushupAnalyzer()
    events = []
    states = []
    for i, angle in enumerate(block_reps(1)):
        result = analyzer.process(arm_keypoints(angle), i * 100.0)
        events.extend(result.events)
        states.append(result.state)
    reps = [e for e in events if isinstance(e, RepEvent)]
    assert len(reps) == 1
    rep = reps[0]
    assert rep.rep == 1
    assert rep.form_score == 100
    assert rep.elbow_min == pytest.approx(60.0)
    assert rep.elbow_max == pytest.approx(170.0)
    # First rep measures from the first pose frame
    assert rep.duration_ms == pytest.approx(rep.timestamp_ms)

    counting = next(s for s in states if s.count == 1)
    assert counting.feedback.kind is FeedbackKind.REP_COUNTED
    assert counting.feedback_text == "Great rep!"


def test_alignment_penalty_lowers_score(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, [170.0] * 3, alignment=150.0)
    # threshold 160 -> (160 - 150) * 2
    assert states[-1].form_score == pytest.approx(80.0)
    assert states[-1].feedback.kind is FeedbackKind.ALIGNMENT_WARNING
    assert states[-1].feedback_text == "Slight hip drop detected - engage your core"

    states = feed(analyzer, [170.0] * 3, alignment=120.0)
    assert states[-1].form_score == pytest.approx(60.0)
    assert states[-1].feedback_text == "Keep your body straight - avoid sagging hips"


def test_missing_ankle_counts_as_straight_body(feed):
    analyzer = PushupAnalyzer()
    states = feed(analyzer, [170.0] * 3, alignment=None)
    assert states[-1].body_alignment == 180.0
    assert states[-1].form_score == 100


def test_fast_reps_get_pacing_penalty(feed):
    analyzer = PushupAnalyzer()
    # 16 frames per rep at 30 ms/frame -> reps ~480 ms apart
    states = feed(analyzer, block_reps(3), frame_ms=30.0)
    assert analyzer.count == 3
    scores = analyzer.rep_form_scores
    assert scores[0] == 100
    assert scores[1] <= 100 - 30
    assert scores[2] <= 100 - 30
    assert states[-1].feedback.kind is FeedbackKind.PACING_WARNING
    assert states[-1].feedback_text == "Slow down for proper form"


def test_pacing_floor(feed):
    analyzer = PushupAnalyzer()
    feed(analyzer, block_reps(2), frame_ms=30.0, alignment=100.0)
    # 100 - 40 alignment = 60, pacing -> max(30, 10)
    assert analyzer.rep_form_scores[1] == pytest.approx(30.0)


def test_shoulder_drop_is_tracked_but_does_not_gate_counting(feed):
    analyzer = PushupAnalyzer()
    events = []
    for i, angle in enumerate([170.0] * 10 + [60.0] * 8):
        events.extend(analyzer.process(arm_keypoints(angle, shoulder_y=100.0), i * 100.0).events)
    assert not events[-1].shoulder_drop_confirmed

    analyzer = PushupAnalyzer()
    frames = [(170.0, 100.0)] * 10 + [(60.0, 140.0)] * 8 + [(170.0, 100.0)] * 8
    last_down = None
    for i, (angle, y) in enumerate(frames):
        result = analyzer.process(arm_keypoints(angle, shoulder_y=y), i * 100.0)
        if result.state.phase is Phase.DOWN:
            last_down = result.events[0]
    assert last_down.shoulder_drop_confirmed
    assert analyzer.count == 1


def test_average_form_score_and_reset(feed):
    analyzer = PushupAnalyzer()
    assert analyzer.average_form_score() == 0
    feed(analyzer, block_reps(2), frame_ms=100.0)
    assert analyzer.average_form_score() == 100
    analyzer.reset()
    assert analyzer.count == 0
    assert analyzer.rep_timestamps == []


def test_sessions_are_independent(feed):
    a = PushupAnalyzer()
    b = PushupAnalyzer()
    feed(a, block_reps(2), frame_ms=100.0)
    assert a.count == 2
    assert b.count == 0


def test_custom_profile_changes_thresholds(feed):
    from dataclasses import replace

    strict = replace(DEFAULT_PROFILE, elbow_down_angle=50.0)
    analyzer = PushupAnalyzer(strict)
    feed(analyzer, block_reps(2), frame_ms=100.0)
    assert analyzer.count == 0


def test_state_to_dict_shape(feed):
    analyzer = PushupAnalyzer()
    state = feed(analyzer, [170.0])[-1]
    data = state.to_dict()
    assert data == {
        "phase": "up",
        "count": 0,
        "form_score": 100,
        "feedback": "Lower your chest to the ground",
        "feedback_kind": "phase_prompt",
        "elbow_angle": 170,
        "body_alignment": 180,
    }
