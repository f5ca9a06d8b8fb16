"""
Write summary.json + report.html + form plot for a finished workout session.
"""
from __future__ import annotations

import html
import json
import logging
import os
from typing import Any, Optional

from .form import rep_quality
from .session import SessionSummary

logger = logging.getLogger(__name__)


def _mean(vals: list[float]) -> Optional[float]:
    return sum(vals) / len(vals) if vals else None


def _fmt(val: Any, digits: int = 0) -> str:
    if isinstance(val, (int, float)):
        return f"{val:.{digits}f}"
    return "--"


def _rep_rows(summary: SessionSummary) -> list[dict[str, Any]]:
    tel = summary.telemetry
    rows = []
    for i in range(summary.count):
        score = summary.rep_form_scores[i] if i < len(summary.rep_form_scores) else None
        rows.append({
            "rep": i + 1,
            "elbow_min": tel.rep_elbow_mins[i] if i < len(tel.rep_elbow_mins) else None,
            "elbow_max": tel.rep_elbow_maxes[i] if i < len(tel.rep_elbow_maxes) else None,
            "duration_sec": tel.rep_durations[i] / 1000.0 if i < len(tel.rep_durations) else None,
            "form_score": score,
            "quality": rep_quality(score) if score is not None else None,
        })
    return rows


def _overall(avg_form: int, count: int) -> str:
    if count == 0:
        return "No reps counted."
    if avg_form >= 80:
        return "Great form overall."
    if avg_form >= 60:
        return "Decent form with a few consistency issues."
    return "Form needs attention; keep your body in a straight line."


def write_session_report(summary: SessionSummary, output_dir: str) -> str:
    """
    Write summary.json, report.html and (when matplotlib works) form_by_rep.png.
    Returns the report.html path.
    """
    os.makedirs(output_dir, exist_ok=True)
    rows = _rep_rows(summary)
    tel = summary.telemetry

    logger.info(
        "report input: session=%s user=%s reps=%s avg_form=%s frames=%s",
        summary.session_id, summary.user_id, summary.count, summary.average_form_score, tel.total_frames,
    )

    summary_path = os.path.join(output_dir, "summary.json")
    with open(summary_path, "w") as f:
        json.dump({**summary.to_dict(), "reps": rows}, f, indent=2)

    durations = [r["duration_sec"] for r in rows if r["duration_sec"] is not None]
    avg_duration = _mean(durations)
    pose_pct = (tel.frames_with_pose / tel.total_frames * 100.0) if tel.total_frames else 0.0
    thresholds = tel.thresholds_used

    report_lines = [
        "<!DOCTYPE html>",
        "<html><head><meta charset='utf-8'><title>Push-up Report</title></head><body>",
        "<h1>Push-up Session Report</h1>",
        f"<p><b>User:</b> {html.escape(summary.user_id)}</p>",
        f"<p><b>Session:</b> {html.escape(summary.session_id)}</p>",
        f"<p><b>Total reps:</b> {summary.count}</p>",
        f"<p><b>Average form score:</b> {summary.average_form_score}</p>",
        f"<p><b>Duration:</b> {summary.duration_sec:.1f}s | <b>Average rep time:</b> {_fmt(avg_duration, 2)}s</p>",
        f"<p><b>Overall:</b> {_overall(summary.average_form_score, summary.count)}</p>",
        "<h2>Tracking</h2>",
        f"<p><b>Frames with pose:</b> {tel.frames_with_pose}/{tel.total_frames} ({pose_pct:.0f}%) "
        f"| <b>Average confidence:</b> {tel.avg_confidence:.2f}</p>",
        f"<p><b>Thresholds:</b> down {_fmt(thresholds.get('elbow_down_angle'))}&deg;, "
        f"up {_fmt(thresholds.get('elbow_up_angle'))}&deg;, "
        f"shoulder drop {_fmt(thresholds.get('shoulder_drop_threshold'))}px "
        f"({'calibrated' if tel.was_calibrated else 'defaults'})</p>",
    ]

    col_labels = ["Rep", "Elbow min (deg)", "Elbow max (deg)", "Duration (s)", "Form score", "Quality"]
    report_lines.append("<h2>Per-rep metrics</h2>")
    report_lines.append("<table border='1'><tr>" + "".join(f"<th>{c}</th>" for c in col_labels) + "</tr>")
    for r in rows:
        cells = [
            r["rep"],
            _fmt(r["elbow_min"]),
            _fmt(r["elbow_max"]),
            _fmt(r["duration_sec"], 2),
            _fmt(r["form_score"]),
            r["quality"] or "--",
        ]
        tds = "".join(f'<td data-label="{label}">{val}</td>' for label, val in zip(col_labels, cells))
        report_lines.append(f"<tr>{tds}</tr>")
    report_lines.append("</table></body></html>")

    report_path = os.path.join(output_dir, "report.html")
    with open(report_path, "w") as f:
        f.write("\n".join(report_lines))

    scores = [r["form_score"] for r in rows if r["form_score"] is not None]
    if scores:
        try:
            import matplotlib
            matplotlib.use("Agg")
            import matplotlib.pyplot as plt
            plt.figure(figsize=(6, 4))
            plt.plot(range(1, len(scores) + 1), scores, "o-")
            plt.ylim(0, 100)
            plt.xlabel("Rep")
            plt.ylabel("Form score")
            plt.title("Form by rep")
            plt.savefig(os.path.join(output_dir, "form_by_rep.png"), dpi=100)
            plt.close()
        except Exception as e:
            logger.warning("could not write form_by_rep.png: %s", e)

    logger.info("report written: %s", report_path)
    return report_path
