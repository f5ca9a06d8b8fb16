"""
Frame sources for the live and offline pipelines.
Every source yields Frame tuples of (frame_bgr, frame_idx, fps, timestamp_ms).
"""
from __future__ import annotations

import time
from typing import Callable, Generator

import cv2
import numpy as np

Frame = tuple[np.ndarray, int, float, float]

# Requested webcam capture size; drivers may round it.
WEBCAM_SIZE = (1280, 720)
# Weight of the newest frame interval in the webcam fps estimate.
FPS_SMOOTHING = 0.1


def _frames(
    cap: cv2.VideoCapture,
    stamp: Callable[[int], tuple[float, float]],
) -> Generator[Frame, None, None]:
    # stamp(idx) -> (fps, timestamp_ms); the capture is released when the consumer stops
    try:
        idx = 0
        while True:
            ok, frame = cap.read()
            if not ok:
                return
            fps, ts = stamp(idx)
            yield (frame, idx, fps, ts)
            idx += 1
    finally:
        cap.release()


def video_frames(video_path: str) -> Generator[Frame, None, None]:
    """Timestamps derive from the frame index so offline runs are reproducible."""
    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise FileNotFoundError(f"Cannot open video: {video_path}")
    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
    return _frames(cap, lambda idx: (fps, idx * 1000.0 / fps))


class _FpsMeter:
    def __init__(self, initial: float):
        self.fps = float(initial)
        self._prev = time.perf_counter()

    def __call__(self, idx: int) -> tuple[float, float]:
        now = time.perf_counter()
        dt = now - self._prev
        self._prev = now
        if dt > 0:
            self.fps += FPS_SMOOTHING * (1.0 / dt - self.fps)
        return self.fps, time.time() * 1000.0


def webcam_frames(camera_id: int = 0, target_fps: float = 30) -> Generator[Frame, None, None]:
    """Wall-clock timestamps; fps is a smoothed estimate of the real capture rate."""
    cap = cv2.VideoCapture(camera_id)
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open camera {camera_id}. Check permissions and that no other app is using it.")
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, WEBCAM_SIZE[0])
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, WEBCAM_SIZE[1])
    cap.set(cv2.CAP_PROP_FPS, target_fps)
    return _frames(cap, _FpsMeter(target_fps))
