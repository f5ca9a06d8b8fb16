"""
PushSense: push-up rep counting, form scoring and per-user threshold calibration
from per-frame pose keypoints.
"""
