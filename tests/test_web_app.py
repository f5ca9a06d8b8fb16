from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import arm_keypoints, block_reps, calibration_frames

import web_app
from pushsense.storage import MemoryProfileStore, MemoryTelemetryStore


@pytest.fixture
def client():
    web_app.app.state.profiles = MemoryProfileStore()
    web_app.app.state.telemetry = MemoryTelemetryStore()
    return TestClient(web_app.app)


def _frame_payload(angle, ts):
    return {
        "keypoints": [
            {"name": kp.name, "x": kp.x, "y": kp.y, "confidence": kp.confidence}
            for kp in arm_keypoints(angle)
        ],
        "timestamp_ms": ts,
    }


def _calibration_body(frames):
    return {
        "frames": [
            {"elbow_angle": f.elbow_angle, "shoulder_y": f.shoulder_y, "timestamp_ms": f.timestamp_ms}
            for f in frames
        ]
    }


def _workout(client, user_id, reps):
    with client.websocket_connect(f"/ws/session?user_id={user_id}") as ws:
        opening = ws.receive_json()
        for i, angle in enumerate(block_reps(reps)):
            ws.send_json(_frame_payload(angle, i * 100.0))
            state = ws.receive_json()
            assert state["type"] == "state"
        ws.send_json({"type": "stop"})
        summary = ws.receive_json()
    return opening, state, summary


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_websocket_session_counts_and_saves(client):
    opening, state, summary = _workout(client, "alice", 3)
    assert opening["type"] == "session"
    assert opening["calibrated"] is False
    assert opening["thresholds"]["elbow_down_angle"] == 110.0
    assert state["count"] == 3
    assert state["phase"] == "up"
    assert summary["type"] == "summary"
    assert summary["count"] == 3
    assert summary["saved"] is True
    assert summary["session_id"] == opening["session_id"]
    assert web_app.app.state.telemetry.get_session(opening["session_id"]) is not None


def test_websocket_skips_bad_messages_and_reports_no_pose(client):
    with client.websocket_connect("/ws/session") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"keypoints": [{"x": 1}]})
        ws.send_json({"keypoints": [], "timestamp_ms": 0})
        state = ws.receive_json()
        assert state["feedback_kind"] == "no_pose"
        assert state["form_score"] == 0
        ws.send_json({"type": "stop"})
        summary = ws.receive_json()
    assert summary["user_id"] == "anonymous"
    assert summary["telemetry"]["frames_without_pose"] == 1


def test_websocket_drops_bad_fields_and_still_summarizes(client):
    with client.websocket_connect("/ws/session?user_id=alice") as ws:
        ws.receive_json()
        ws.send_json(_frame_payload(170.0, 0.0))
        assert ws.receive_json()["type"] == "state"

        ws.send_json({**_frame_payload(170.0, 0.0), "timestamp_ms": "later"})
        ws.send_json({**_frame_payload(170.0, 0.0), "timestamp_ms": True})
        ws.send_json({"keypoints": [1, 2], "timestamp_ms": 50.0})
        ws.send_json({"image": 5})

        ws.send_json(_frame_payload(170.0, 100.0))
        state = ws.receive_json()
        assert state["type"] == "state"
        assert state["count"] == 0
        ws.send_json({"type": "stop"})
        summary = ws.receive_json()
    assert summary["type"] == "summary"
    assert summary["saved"] is True
    assert summary["telemetry"]["total_frames"] == 2
    assert summary["duration_sec"] == pytest.approx(0.1)


def test_calibration_flow(client):
    resp = client.post("/calibration/alice", json=_calibration_body(calibration_frames(4)))
    assert resp.status_code == 200
    data = resp.json()
    assert data["elbow_down_angle"] == 94
    assert data["elbow_up_angle"] == 147
    assert data["test_rep_count"] == 4

    profile = client.get("/profiles/alice").json()
    assert profile["calibrated"] is True
    assert profile["thresholds"]["elbow_up_angle"] == 147
    assert profile["calibration"]["profile_id"] == data["profile_id"]

    opening, _, _ = _workout(client, "alice", 1)
    assert opening["calibrated"] is True

    assert client.delete("/calibration/alice").json() == {"user_id": "alice", "calibrated": False}
    assert client.get("/profiles/alice").json()["calibrated"] is False


def test_calibration_from_keypoint_frames(client):
    body = {
        "keypoint_frames": [
            {
                "keypoints": _frame_payload(f.elbow_angle, f.timestamp_ms)["keypoints"],
                "timestamp_ms": f.timestamp_ms,
            }
            for f in calibration_frames(4)
        ]
    }
    resp = client.post("/calibration/bob", json=body)
    assert resp.status_code == 200
    assert resp.json()["elbow_down_angle"] == 94


def test_insufficient_calibration_is_422_and_keeps_profile(client):
    client.post("/calibration/alice", json=_calibration_body(calibration_frames(4)))
    resp = client.post("/calibration/alice", json=_calibration_body(calibration_frames(4)[:10]))
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason"] == "too_few_frames"
    assert client.get("/profiles/alice").json()["thresholds"]["elbow_down_angle"] == 94


def test_feedback_endpoint(client):
    _, _, summary = _workout(client, "alice", 1)
    url = f"/sessions/{summary['session_id']}/feedback"

    resp = client.post(url, json={"rating": "overcounted", "note": "twitch", "reported_count": 0})
    assert resp.status_code == 200
    assert resp.json()["count_accuracy_rating"] == "overcounted"
    assert client.post(url, json={"rating": "accurate"}).status_code == 409
    assert client.post("/sessions/nope/feedback", json={"rating": "accurate"}).status_code == 404
    assert client.post(url, json={"rating": "maybe"}).status_code == 422


def test_suggestion_and_export(client):
    assert client.get("/users/alice/suggestion").json() == {"user_id": "alice", "suggestion": None}
    for _ in range(2):
        _, _, summary = _workout(client, "alice", 1)
        client.post(f"/sessions/{summary['session_id']}/feedback", json={"rating": "undercounted"})

    suggestion = client.get("/users/alice/suggestion").json()["suggestion"]
    assert suggestion["direction"] == "loosen"
    assert suggestion["adjusted_down"] == 118
    assert suggestion["adjusted_up"] == 145

    resp = client.get("/telemetry/export")
    assert resp.status_code == 200
    exported = resp.json()
    assert len(exported) == 2
    assert {s["user_id"] for s in exported} == {"alice"}
