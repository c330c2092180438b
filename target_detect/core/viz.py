from __future__ import annotations

"""
target_detect.core.viz
----------------------

Drawing helpers for target features on canonical BGR frames.

- Every helper that returns an image draws on a copy; inputs are never modified.
- Feature maps are {feature_id: points}, where points is an N x 2 array-like.
  Single points are drawn as circles, quads/polygons as outlines.
"""

from typing import Any, Dict, Optional, Tuple

import numpy as np

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

# Fixed light-green color (BGR)
LIGHT_GREEN: Tuple[int, int, int] = (78, 238, 78)
ORANGE: Tuple[int, int, int] = (0, 140, 255)


def _require_cv2() -> None:
    if cv2 is None:  # pragma: no cover
        raise ImportError("opencv-python is required for visualization (cv2 import failed).")


def _as_points(points: Any) -> Optional[np.ndarray]:
    if points is None:
        return None
    arr = np.asarray(points, dtype=np.float32)
    if arr.size == 0 or arr.size % 2:
        return None
    return arr.reshape(-1, 2)


def draw_points(
    img: np.ndarray,
    points: Any,
    *,
    color: Tuple[int, int, int] = LIGHT_GREEN,
    radius: int = 4,
) -> None:
    """Draw points as filled circles, in place. points: [[x, y], ...]."""
    _require_cv2()
    pts = _as_points(points)
    if pts is None:
        return
    for x, y in pts:
        cv2.circle(img, (int(round(x)), int(round(y))), radius, color, -1, lineType=cv2.LINE_AA)


def draw_polygon(
    img: np.ndarray,
    points: Any,
    *,
    color: Tuple[int, int, int] = LIGHT_GREEN,
    thickness: int = 2,
) -> None:
    """Draw a closed polygon outline (list of [x, y]), in place."""
    _require_cv2()
    pts = _as_points(points)
    if pts is None or pts.shape[0] < 3:
        return
    poly = np.rint(pts).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(img, [poly], isClosed=True, color=color, thickness=thickness, lineType=cv2.LINE_AA)


def draw_label(
    img: np.ndarray,
    text: str,
    origin: Tuple[float, float],
    *,
    color: Tuple[int, int, int] = ORANGE,
    scale: float = 0.5,
) -> None:
    _require_cv2()
    x, y = int(origin[0]), int(origin[1])
    cv2.putText(img, text, (x, max(0, y)), cv2.FONT_HERSHEY_SIMPLEX, scale, color, 1, cv2.LINE_AA)


def draw_feature_map(
    frame_bgr: np.ndarray,
    features: Dict[int, Any],
    *,
    color: Tuple[int, int, int] = LIGHT_GREEN,
    label_ids: bool = True,
) -> np.ndarray:
    """
    Draw a {feature_id: points} map on a copy of a BGR frame.
    - 1 point  -> filled circle
    - 2 points -> line
    - 3+       -> closed polygon with corner dots
    """
    _require_cv2()
    out = np.array(frame_bgr, dtype=np.uint8, copy=True)

    for fid, points in sorted(features.items(), key=lambda kv: kv[0]):
        pts = _as_points(points)
        if pts is None:
            continue
        if pts.shape[0] == 1:
            draw_points(out, pts, color=color)
        elif pts.shape[0] == 2:
            p1, p2 = np.rint(pts).astype(int)
            cv2.line(out, (int(p1[0]), int(p1[1])), (int(p2[0]), int(p2[1])), color, 2, cv2.LINE_AA)
        else:
            draw_polygon(out, pts, color=color)
            draw_points(out, pts[:1], color=ORANGE, radius=3)

        if label_ids:
            cx, cy = pts.mean(axis=0)
            draw_label(out, str(fid), (cx + 4, cy - 4))

    return out


__all__ = [
    "LIGHT_GREEN",
    "ORANGE",
    "draw_points",
    "draw_polygon",
    "draw_label",
    "draw_feature_map",
]
