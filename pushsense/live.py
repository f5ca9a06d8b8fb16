"""
Webcam and video pipelines: capture, pose, push-up analysis, overlay window.
A workout writes telemetry and a report on exit (q); a calibration capture
saves the user's profile.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Iterator, Optional

import cv2
import numpy as np

from .analyzer import Phase, PushupState
from .calibration import CalibrationProfile, CalibrationRecorder, ProfileWriter, calibrate_user
from .feedback import resolve_feedback
from .io_stream import Frame, video_frames, webcam_frames
from .keypoints import Keypoint
from .overlay import draw_workout_hud
from .pose import create_pose_detector, process_frame
from .report import write_session_report
from .session import ProfileReader, SessionSummary, TelemetryWriter, WorkoutSession

logger = logging.getLogger(__name__)

# Target resize width for faster inference
LIVE_RESIZE_WIDTH = 960
# Calibration capture length
CALIBRATION_SECONDS = 15.0


def _detect(frame_bgr: np.ndarray, pose) -> list[Keypoint]:
    """Pose on a downscaled copy, keypoints mapped back to full-frame pixels."""
    h, w = frame_bgr.shape[:2]
    scale = LIVE_RESIZE_WIDTH / w if w > LIVE_RESIZE_WIDTH else 1.0
    if scale == 1.0:
        return process_frame(frame_bgr, pose)
    small = cv2.resize(frame_bgr, (LIVE_RESIZE_WIDTH, int(round(h * scale))))
    return [
        Keypoint(kp.name, kp.x / scale, kp.y / scale, kp.confidence)
        for kp in process_frame(small, pose)
    ]


def _run_workout(
    frames: Iterator[Frame],
    session: WorkoutSession,
    output_dir: str,
    show: bool,
    record: bool = False,
) -> SessionSummary:
    pose = create_pose_detector()
    threshold = session.profile.confidence_threshold
    video_writer: Optional[cv2.VideoWriter] = None
    win_name = "Push-up Coach (q=quit, s=snapshot)"
    if show:
        cv2.namedWindow(win_name, cv2.WINDOW_NORMAL)

    last_count = 0
    try:
        for frame_bgr, frame_idx, fps_est, ts in frames:
            keypoints = _detect(frame_bgr, pose)
            state = session.process_frame(keypoints, ts)
            if state.count != last_count:
                last_count = state.count
                logger.debug("live: frame %s count=%s fps=%.1f", frame_idx, state.count, fps_est)
            if not show and not record:
                continue

            out_frame = frame_bgr.copy()
            draw_workout_hud(out_frame, state, keypoints, threshold, status=f"{fps_est:.0f} fps")

            if record and video_writer is None:
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                video_writer = cv2.VideoWriter(
                    os.path.join(output_dir, "live_recording.mp4"),
                    fourcc,
                    max(1, int(fps_est)),
                    (out_frame.shape[1], out_frame.shape[0]),
                )
            if video_writer is not None:
                video_writer.write(out_frame)

            if show:
                cv2.imshow(win_name, out_frame)
                key = cv2.waitKey(1) & 0xFF
                if key == ord("q"):
                    break
                if key == ord("s"):
                    cv2.imwrite(os.path.join(output_dir, f"snapshot_{frame_idx}.jpg"), out_frame)
    finally:
        if show:
            cv2.destroyAllWindows()
        if video_writer is not None:
            video_writer.release()

    summary = session.finish()
    write_session_report(summary, output_dir)
    return summary


def run_live_workout(
    user_id: str,
    profile_store: Optional[ProfileReader] = None,
    telemetry_store: Optional[TelemetryWriter] = None,
    camera_id: int = 0,
    target_fps: float = 20,
    record: bool = False,
    output_dir: str = "outputs",
) -> SessionSummary:
    """Live push-up session. q=quit, s=snapshot. Report is written on quit."""
    os.makedirs(output_dir, exist_ok=True)
    session = WorkoutSession.start(user_id, profile_store, telemetry_store)
    return _run_workout(webcam_frames(camera_id, target_fps=target_fps), session, output_dir, True, record)


def run_video_workout(
    video_path: str,
    user_id: str,
    profile_store: Optional[ProfileReader] = None,
    telemetry_store: Optional[TelemetryWriter] = None,
    output_dir: str = "outputs",
) -> SessionSummary:
    """Offline pass over a recorded video; timestamps follow the video's frame rate."""
    os.makedirs(output_dir, exist_ok=True)
    session = WorkoutSession.start(user_id, profile_store, telemetry_store)
    return _run_workout(video_frames(video_path), session, output_dir, False)


def run_live_calibration(
    user_id: str,
    profile_store: ProfileWriter,
    camera_id: int = 0,
    target_fps: float = 20,
    duration_sec: float = CALIBRATION_SECONDS,
) -> CalibrationProfile:
    """
    Record a few slow test push-ups and store the derived thresholds.
    Raises InsufficientCalibrationData when the capture has too few clear reps.
    """
    pose = create_pose_detector()
    recorder = CalibrationRecorder()
    win_name = "Calibration (q=stop early)"
    cv2.namedWindow(win_name, cv2.WINDOW_NORMAL)
    t_start = time.perf_counter()
    try:
        for frame_bgr, _idx, _fps, ts in webcam_frames(camera_id, target_fps=target_fps):
            keypoints = _detect(frame_bgr, pose)
            seen = recorder.push(keypoints, ts)
            elapsed = time.perf_counter() - t_start
            remaining = max(0.0, duration_sec - elapsed)

            out_frame = frame_bgr.copy()
            last = recorder.frames[-1] if recorder.frames else None
            preview = PushupState(
                phase=Phase.UP,
                count=0,
                form_score=0.0,
                feedback=None if seen else resolve_feedback(no_pose=True),
                elbow_angle=last.elbow_angle if last else 0.0,
                body_alignment=180.0,
            )
            draw_workout_hud(
                out_frame, preview, keypoints, recorder.confidence_threshold,
                status=f"Calibrating: do 3-5 slow push-ups ({remaining:.0f}s left, {len(recorder)} frames)",
            )
            cv2.imshow(win_name, out_frame)
            key = cv2.waitKey(1) & 0xFF
            if key == ord("q") or elapsed >= duration_sec:
                break
    finally:
        cv2.destroyAllWindows()

    logger.info(
        "calibration capture: user=%s frames=%s skipped=%s", user_id, len(recorder), recorder.skipped,
    )
    return calibrate_user(recorder.frames, user_id, profile_store)
