#!/usr/bin/env python3
"""
Push-up counter: live (webcam) or offline (video), plus calibration and feedback.
Usage:
  Live:        python run.py --live [--user alice] [--camera 0] [--record]
  Offline:     python run.py --video path/to/video.mp4 [--user alice]
  Calibrate:   python run.py --calibrate --user alice
  Feedback:    python run.py --feedback overcounted --session tel-... [--reported-count 12]
  Suggestion:  python run.py --suggest --user alice
  Export:      python run.py --export telemetry.json
"""
from __future__ import annotations

import argparse
import os
import sys

# Run from project root so pushsense is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Load .env so PUSHSENSE_* settings apply
try:
    from pathlib import Path
    from dotenv import load_dotenv
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")
except ImportError:
    pass

from pushsense.calibration import InsufficientCalibrationData
from pushsense.config import configure_logging, data_dir, max_stored_sessions
from pushsense.session import record_feedback, suggest_for_user
from pushsense.storage import open_json_stores
from pushsense.telemetry import AccuracyRating, FeedbackAlreadyAttachedError, export_telemetry


def main() -> None:
    ap = argparse.ArgumentParser(description="Push-up counter: live webcam, offline video, calibration")
    mode = ap.add_mutually_exclusive_group(required=True)
    mode.add_argument("--live", action="store_true", help="Count push-ups from the webcam")
    mode.add_argument("--video", type=str, default=None, help="Path to video file (offline mode)")
    mode.add_argument("--calibrate", action="store_true", help="Record test push-ups and save thresholds")
    mode.add_argument(
        "--feedback", type=str, default=None, choices=[r.value for r in AccuracyRating],
        help="Rate the count accuracy of a finished session (needs --session)",
    )
    mode.add_argument("--suggest", action="store_true", help="Show a threshold suggestion for --user")
    mode.add_argument("--export", type=str, default=None, metavar="PATH", help="Write all telemetry as JSON")
    ap.add_argument("--user", type=str, default="anonymous", help="User id (default anonymous)")
    ap.add_argument("--session", type=str, default=None, help="Session id for --feedback")
    ap.add_argument("--note", type=str, default="", help="Free-text note for --feedback")
    ap.add_argument("--reported-count", type=int, default=None, help="Reps the user actually did")
    ap.add_argument("--camera", type=int, default=0, help="Camera device id (default 0)")
    ap.add_argument("--record", action="store_true", help="Save live_recording.mp4 in live mode")
    ap.add_argument("--output-dir", type=str, default="outputs", help="Report output directory")
    ap.add_argument("--data-dir", type=str, default=None, help="Profile/telemetry directory (PUSHSENSE_DATA_DIR)")
    ap.add_argument("--log-level", type=str, default=None, help="Logging level (PUSHSENSE_LOG_LEVEL)")
    args = ap.parse_args()

    configure_logging(args.log_level)
    profiles, telemetry = open_json_stores(args.data_dir or data_dir(), max_sessions=max_stored_sessions())

    if args.feedback:
        if not args.session:
            print("Error: --feedback needs --session ID", file=sys.stderr)
            sys.exit(1)
        try:
            record_feedback(telemetry, args.session, args.feedback, args.note, args.reported_count)
        except KeyError:
            print(f"Error: unknown session: {args.session}", file=sys.stderr)
            sys.exit(1)
        except FeedbackAlreadyAttachedError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Feedback saved for {args.session}.")
        return

    if args.suggest:
        suggestion = suggest_for_user(telemetry, args.user)
        if suggestion is None:
            print(f"No suggestion for {args.user} yet (need at least 2 rated sessions with a clear trend).")
        else:
            print(
                f"{suggestion.message} Suggested down={suggestion.adjusted_down} "
                f"up={suggestion.adjusted_up if suggestion.adjusted_up is not None else '--'}"
            )
        return

    if args.export:
        with open(args.export, "w") as f:
            f.write(export_telemetry(telemetry.list_sessions()))
        print(f"Telemetry exported to {args.export}")
        return

    # Capture modes pull in OpenCV/MediaPipe
    from pushsense.live import run_live_calibration, run_live_workout, run_video_workout

    if args.calibrate:
        try:
            profile = run_live_calibration(args.user, profiles, camera_id=args.camera)
        except InsufficientCalibrationData as e:
            print(f"Calibration failed ({e.reason}): {e}", file=sys.stderr)
            sys.exit(1)
        t = profile.thresholds
        print(
            f"Calibrated {args.user} from {profile.test_rep_count} reps: "
            f"down={t.elbow_down_angle:.0f} up={t.elbow_up_angle:.0f} drop={t.shoulder_drop_threshold:.0f}"
        )
        return

    if args.live:
        summary = run_live_workout(
            args.user,
            profiles,
            telemetry,
            camera_id=args.camera,
            target_fps=20,
            record=args.record,
            output_dir=args.output_dir,
        )
    else:
        if not os.path.isfile(args.video):
            print(f"Error: video file not found: {args.video}", file=sys.stderr)
            sys.exit(1)
        summary = run_video_workout(args.video, args.user, profiles, telemetry, output_dir=args.output_dir)
    print(
        f"Done. Reps: {summary.count}. Avg form: {summary.average_form_score}. "
        f"Session: {summary.session_id}. Report: {args.output_dir}/report.html"
    )


if __name__ == "__main__":
    main()
