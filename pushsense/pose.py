"""
MediaPipe Pose adapter. Returns named keypoints in image coordinates (pixel),
with landmark visibility as confidence. Uses Pose Landmarker (MediaPipe 0.10+).
"""
from __future__ import annotations

import os
import urllib.request
from typing import Any, Iterable, Optional

import cv2
import numpy as np

from .keypoints import Keypoint

# MediaPipe Pose landmark indices the rep counter reads.
LANDMARK_NAMES = {
    11: "left_shoulder",
    12: "right_shoulder",
    13: "left_elbow",
    14: "right_elbow",
    15: "left_wrist",
    16: "right_wrist",
    23: "left_hip",
    24: "right_hip",
    27: "left_ankle",
    28: "right_ankle",
}

# Pose Landmarker model URL (lite = faster, CPU-friendly)
_POSE_MODEL_URL = "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task"
_POSE_MODEL_FILENAME = "pose_landmarker_lite.task"


def _get_model_path(cache_dir: Optional[str] = None) -> str:
    """Return path to pose landmarker model, downloading if needed."""
    if cache_dir is None:
        cache_dir = os.path.join(os.path.dirname(__file__), "..", "outputs")
    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, _POSE_MODEL_FILENAME)
    if not os.path.isfile(path):
        urllib.request.urlretrieve(_POSE_MODEL_URL, path)
    return path


def create_pose_detector(
    min_detection_confidence: float = 0.5,
    min_tracking_confidence: float = 0.5,
    cache_dir: Optional[str] = None,
):
    """Single-person PoseLandmarker in IMAGE mode."""
    from mediapipe.tasks.python.core import base_options
    from mediapipe.tasks.python.vision import PoseLandmarker, PoseLandmarkerOptions
    from mediapipe.tasks.python.vision.core import vision_task_running_mode

    base = base_options.BaseOptions(model_asset_path=_get_model_path(cache_dir))
    options = PoseLandmarkerOptions(
        base_options=base,
        running_mode=vision_task_running_mode.VisionTaskRunningMode.IMAGE,
        num_poses=1,
        min_pose_detection_confidence=min_detection_confidence,
        min_pose_presence_confidence=min_detection_confidence,
        min_tracking_confidence=min_tracking_confidence,
    )
    return PoseLandmarker.create_from_options(options)


def landmarks_to_keypoints(landmarks: Iterable[Any], width: int, height: int) -> list[Keypoint]:
    """Map normalized MediaPipe landmarks (x, y, visibility) to named pixel keypoints."""
    out: list[Keypoint] = []
    for idx, lm in enumerate(landmarks):
        name = LANDMARK_NAMES.get(idx)
        if name is None:
            continue
        visibility = getattr(lm, "visibility", None)
        out.append(
            Keypoint(
                name=name,
                x=float(lm.x) * width,
                y=float(lm.y) * height,
                confidence=float(visibility) if visibility is not None else 0.0,
            )
        )
    return out


def process_frame(frame_bgr: np.ndarray, pose) -> list[Keypoint]:
    """
    Run pose estimation on one BGR frame.
    Returns named keypoints, or an empty list when no body is found.
    """
    from mediapipe.tasks.python.vision.core import image as mp_image

    h, w = frame_bgr.shape[:2]
    rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
    result = pose.detect(mp_image.Image(image_format=mp_image.ImageFormat.SRGB, data=rgb))
    if not result.pose_landmarks:
        return []
    return landmarks_to_keypoints(result.pose_landmarks[0], w, h)


def decode_image(data: bytes) -> Optional[np.ndarray]:
    """Decode JPEG/PNG bytes to a BGR frame, or None if undecodable."""
    arr = np.frombuffer(data, np.uint8)
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)
