"""
Named keypoints and per-frame body side selection.
A side is usable only when shoulder, elbow, wrist and hip all clear the confidence threshold.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

SIDES = ("left", "right")
# Joints a side needs before it can drive the elbow angle.
REQUIRED_JOINTS = ("shoulder", "elbow", "wrist", "hip")
# Joints whose confidence decides between two usable sides.
SELECTION_JOINTS = ("elbow", "shoulder", "wrist")


@dataclass(frozen=True)
class Keypoint:
    name: str
    x: float
    y: float
    confidence: float


@dataclass(frozen=True)
class ArmChain:
    """Shoulder/elbow/wrist/hip (+ optional ankle) of the selected side."""
    side: str
    shoulder: Keypoint
    elbow: Keypoint
    wrist: Keypoint
    hip: Keypoint
    ankle: Optional[Keypoint] = None

    @property
    def confidence(self) -> float:
        pts = (self.shoulder, self.elbow, self.wrist, self.hip)
        return sum(p.confidence for p in pts) / len(pts)


def keypoints_from_dicts(items: Iterable[Mapping[str, Any]]) -> list[Keypoint]:
    """
    Build keypoints from {name, x, y, confidence|score} mappings (wire format).
    Raises TypeError for non-mapping items, KeyError/ValueError for bad fields.
    """
    out: list[Keypoint] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise TypeError(f"keypoint must be an object, got {type(item).__name__}")
        conf = item.get("confidence", item.get("score", 0.0))
        out.append(
            Keypoint(
                name=str(item["name"]),
                x=float(item["x"]),
                y=float(item["y"]),
                confidence=float(conf or 0.0),
            )
        )
    return out


def index_by_name(keypoints: Iterable[Keypoint]) -> dict[str, Keypoint]:
    # First occurrence wins, matching a find-by-name lookup.
    by_name: dict[str, Keypoint] = {}
    for kp in keypoints:
        by_name.setdefault(kp.name, kp)
    return by_name


def _confident(kp: Optional[Keypoint], threshold: float) -> bool:
    return kp is not None and kp.confidence > threshold


def _side_usable(by_name: dict[str, Keypoint], side: str, threshold: float) -> bool:
    return all(_confident(by_name.get(f"{side}_{j}"), threshold) for j in REQUIRED_JOINTS)


def _selection_score(by_name: dict[str, Keypoint], side: str) -> float:
    return sum(by_name[f"{side}_{j}"].confidence for j in SELECTION_JOINTS)


def select_side(
    keypoints: Iterable[Keypoint],
    confidence_threshold: float,
) -> Optional[ArmChain]:
    """
    Pick the more confidently tracked side, or None for a no-pose frame.
    When both sides are usable the higher elbow+shoulder+wrist confidence wins; ties go left.
    """
    by_name = index_by_name(keypoints)
    usable = [s for s in SIDES if _side_usable(by_name, s, confidence_threshold)]
    if not usable:
        return None
    if len(usable) == 1:
        side = usable[0]
    else:
        side = "left" if _selection_score(by_name, "left") >= _selection_score(by_name, "right") else "right"
    ankle = by_name.get(f"{side}_ankle")
    return ArmChain(
        side=side,
        shoulder=by_name[f"{side}_shoulder"],
        elbow=by_name[f"{side}_elbow"],
        wrist=by_name[f"{side}_wrist"],
        hip=by_name[f"{side}_hip"],
        ankle=ankle if _confident(ankle, confidence_threshold) else None,
    )
