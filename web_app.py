from __future__ import annotations

import asyncio
import base64
import concurrent.futures
import json
import logging
import os
import threading
from typing import Any, Optional

# Ensure session and live-rep logging is visible when running under uvicorn
logging.getLogger("pushsense").setLevel(logging.INFO)

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from pydantic import BaseModel, Field

from pushsense.calibration import (
    CalibrationFrame,
    CalibrationRecorder,
    InsufficientCalibrationData,
    calibrate_user,
    delete_calibration,
)
from pushsense.config import data_dir, max_stored_sessions
from pushsense.keypoints import Keypoint, keypoints_from_dicts
from pushsense.session import WorkoutSession, load_active_profile, record_feedback, suggest_for_user
from pushsense.storage import MemoryProfileStore, MemoryTelemetryStore, StorageError, open_json_stores
from pushsense.telemetry import AccuracyRating, FeedbackAlreadyAttachedError, export_telemetry

logger = logging.getLogger("pushsense.web")

app = FastAPI(title="PushSense")

# JSON files when PUSHSENSE_DATA_DIR is set, otherwise process memory
if os.getenv("PUSHSENSE_DATA_DIR"):
    app.state.profiles, app.state.telemetry = open_json_stores(data_dir(), max_sessions=max_stored_sessions())
else:
    app.state.profiles = MemoryProfileStore()
    app.state.telemetry = MemoryTelemetryStore(max_sessions=max_stored_sessions())

# Pose for image frames runs off the event loop; a single worker keeps MediaPipe single-threaded
_POSE_EXECUTOR = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="live_pose")
_POSE_LOCK = threading.Lock()
_POSE_DETECTOR = None


class KeypointIn(BaseModel):
    name: str
    x: float
    y: float
    confidence: float = 0.0


class KeypointFrameIn(BaseModel):
    keypoints: list[KeypointIn]
    timestamp_ms: float


class CalibrationFrameIn(BaseModel):
    elbow_angle: float
    shoulder_y: float
    timestamp_ms: float = 0.0


class CalibrationRequest(BaseModel):
    frames: list[CalibrationFrameIn] = Field(default_factory=list)
    keypoint_frames: list[KeypointFrameIn] = Field(default_factory=list)


class FeedbackRequest(BaseModel):
    rating: AccuracyRating
    note: str = ""
    reported_count: Optional[int] = None


def _storage_unavailable(e: StorageError) -> HTTPException:
    logger.warning("web: storage failure: %s", e)
    return HTTPException(status_code=503, detail="Storage unavailable.")


def _pose_detector():
    global _POSE_DETECTOR
    with _POSE_LOCK:
        if _POSE_DETECTOR is None:
            from pushsense.pose import create_pose_detector
            _POSE_DETECTOR = create_pose_detector()
        return _POSE_DETECTOR


def _keypoints_from_image(image_data: str) -> Optional[list[Keypoint]]:
    """Decode a (data-URL) base64 frame and run pose; None if the image is unreadable."""
    from pushsense.pose import decode_image, process_frame

    if image_data.startswith("data:"):
        image_data = image_data.split(",", 1)[1]
    try:
        frame_bgr = decode_image(base64.b64decode(image_data))
    except ValueError:
        return None
    if frame_bgr is None:
        return None
    return process_frame(frame_bgr, _pose_detector())


def _calibration_frames(body: CalibrationRequest) -> list[CalibrationFrame]:
    if body.frames:
        return [CalibrationFrame(f.elbow_angle, f.shoulder_y, f.timestamp_ms) for f in body.frames]
    recorder = CalibrationRecorder()
    for frame in body.keypoint_frames:
        recorder.push([Keypoint(k.name, k.x, k.y, k.confidence) for k in frame.keypoints], frame.timestamp_ms)
    return recorder.frames


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/calibration/{user_id}")
def calibrate(user_id: str, body: CalibrationRequest) -> dict[str, Any]:
    frames = _calibration_frames(body)
    try:
        profile = calibrate_user(frames, user_id, app.state.profiles)
    except InsufficientCalibrationData as e:
        raise HTTPException(status_code=422, detail={"reason": e.reason, "message": str(e)})
    return profile.to_dict()


@app.delete("/calibration/{user_id}")
def reset_calibration(user_id: str) -> dict[str, Any]:
    try:
        delete_calibration(user_id, app.state.profiles)
    except StorageError as e:
        raise _storage_unavailable(e)
    return {"user_id": user_id, "calibrated": False}


@app.get("/profiles/{user_id}")
def get_profile(user_id: str) -> dict[str, Any]:
    """Thresholds a new session for this user would use."""
    store = app.state.profiles
    profile, calibrated = load_active_profile(store, user_id)
    calibration = None
    if calibrated:
        try:
            calibration = store.load_profile_data(user_id)
        except StorageError as e:
            raise _storage_unavailable(e)
    return {
        "user_id": user_id,
        "calibrated": calibrated,
        "thresholds": profile.to_dict(),
        "calibration": calibration,
    }


@app.post("/sessions/{session_id}/feedback")
def session_feedback(session_id: str, body: FeedbackRequest) -> dict[str, Any]:
    try:
        session = record_feedback(
            app.state.telemetry, session_id, body.rating, note=body.note, reported_count=body.reported_count,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found.")
    except FeedbackAlreadyAttachedError:
        raise HTTPException(status_code=409, detail="Feedback already recorded for this session.")
    except StorageError as e:
        raise _storage_unavailable(e)
    return session.to_dict()


@app.get("/users/{user_id}/suggestion")
def user_suggestion(user_id: str) -> dict[str, Any]:
    try:
        suggestion = suggest_for_user(app.state.telemetry, user_id)
    except StorageError as e:
        raise _storage_unavailable(e)
    return {"user_id": user_id, "suggestion": suggestion.to_dict() if suggestion else None}


@app.get("/telemetry/export")
def telemetry_export() -> Response:
    try:
        sessions = app.state.telemetry.list_sessions()
    except StorageError as e:
        raise _storage_unavailable(e)
    return Response(content=export_telemetry(sessions), media_type="application/json")


@app.websocket("/ws/session")
async def session_socket(websocket: WebSocket, user_id: str = "anonymous") -> None:
    """
    One workout per connection. Client sends {"keypoints": [...], "timestamp_ms": ...}
    or {"image": "<base64>"} per frame and {"type": "stop"} to finish.
    Server answers each frame with the live state and ends with the session summary.
    """
    await websocket.accept()
    session = WorkoutSession.start(user_id, app.state.profiles, app.state.telemetry)
    await websocket.send_text(json.dumps({
        "type": "session",
        "session_id": session.session_id,
        "user_id": user_id,
        "calibrated": session.was_calibrated,
        "thresholds": session.profile.to_dict(),
    }))
    frames = 0
    try:
        while True:
            msg = await websocket.receive_text()
            try:
                payload = json.loads(msg)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            if payload.get("type") == "stop":
                summary = session.finish()
                await websocket.send_text(json.dumps({"type": "summary", **summary.to_dict()}))
                await websocket.close()
                return

            timestamp_ms = payload.get("timestamp_ms")
            if timestamp_ms is not None and (
                isinstance(timestamp_ms, bool) or not isinstance(timestamp_ms, (int, float))
            ):
                logger.debug("web: dropping frame with bad timestamp_ms=%r", timestamp_ms)
                continue
            if "keypoints" in payload:
                try:
                    keypoints = keypoints_from_dicts(payload["keypoints"] or [])
                except (KeyError, TypeError, ValueError) as e:
                    logger.debug("web: dropping malformed keypoints frame: %s", e)
                    continue
            elif isinstance(payload.get("image"), str) and payload["image"]:
                keypoints = await asyncio.get_event_loop().run_in_executor(
                    _POSE_EXECUTOR, _keypoints_from_image, payload["image"]
                )
                if keypoints is None:
                    continue
            else:
                continue

            state = session.process_frame(keypoints, timestamp_ms)
            frames += 1
            if frames % 60 == 0:
                logger.info("web: session %s frame %s (count=%s)", session.session_id, frames, state.count)
            await websocket.send_text(json.dumps({"type": "state", **state.to_dict()}))
    except WebSocketDisconnect:
        logger.info("web: client disconnected (session=%s frames=%s)", session.session_id, frames)
    finally:
        if not session.finished:
            session.finish()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web_app:app", host="0.0.0.0", port=8000, reload=True)
