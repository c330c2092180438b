from __future__ import annotations

"""
target_detect.backends.opencv.finders
-------------------------------------

OpenCV target finder wrappers.

This module provides:
- CheckerboardTargetFinder  (cv2.findChessboardCorners + cornerSubPix)
- CircleGridTargetFinder    (cv2.findCirclesGrid, symmetric or asymmetric)
- ArucoGridTargetFinder     (cv2.aruco marker detection, features keyed by marker id)

All implement BaseTargetFinder and return features as {feature_id: N x 2 float array}.
Pattern sizes are given as rows x cols of *features* (inner corners for a checkerboard,
circles for a circle grid).

Notes:
- The cv2.aruco API changed in OpenCV 4.7 (ArucoDetector class); both forms are handled.
"""

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np

from ...core.schema import BaseTargetFinder, TargetNotFoundError
from ...core.viz import draw_feature_map

try:
    import cv2  # type: ignore
except Exception as e:  # pragma: no cover
    cv2 = None  # type: ignore
    _CV2_IMPORT_ERROR = e


logger = logging.getLogger(__name__)


def _gray(image_bgr: np.ndarray) -> np.ndarray:
    if image_bgr.ndim == 2:
        return image_bgr
    return cv2.cvtColor(image_bgr, cv2.COLOR_BGR2GRAY)


def _grid_features(points: np.ndarray) -> Dict[int, np.ndarray]:
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return {i: pts[i : i + 1].copy() for i in range(pts.shape[0])}


def _positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise ValueError(f"Parameter '{name}' must be a positive integer, got {value!r}")
    return int(value)


class _OpenCVBase(BaseTargetFinder):
    backend: str = "opencv"

    def __init__(self, **params: Any) -> None:
        if cv2 is None:  # pragma: no cover
            raise ImportError("opencv-python is required but failed to import") from _CV2_IMPORT_ERROR
        super().__init__(**params)


class _GridTargetFinder(_OpenCVBase):
    """Shared drawing for grid-shaped targets (one point per feature id)."""

    def __init__(self, *, rows: int, cols: int, **params: Any) -> None:
        self.rows = _positive_int("rows", rows)
        self.cols = _positive_int("cols", cols)
        super().__init__(rows=self.rows, cols=self.cols, **params)

    @property
    def pattern_size(self):
        # OpenCV wants (points_per_row, points_per_column)
        return (self.cols, self.rows)

    @property
    def num_features(self) -> int:
        return self.rows * self.cols

    def draw_target_features(self, image_bgr: np.ndarray, features: Mapping[int, Any]) -> np.ndarray:
        out = np.array(image_bgr, dtype=np.uint8, copy=True)
        if not features:
            return out
        ids = sorted(features)
        pts = np.concatenate([np.asarray(features[i], dtype=np.float32).reshape(-1, 2) for i in ids])
        complete = pts.shape[0] == self.num_features
        cv2.drawChessboardCorners(out, self.pattern_size, pts.reshape(-1, 1, 2), complete)
        return out


class CheckerboardTargetFinder(_GridTargetFinder):
    def __init__(
        self,
        *,
        rows: int,
        cols: int,
        refine: bool = True,
        refine_window: int = 5,
        adaptive_threshold: bool = True,
        normalize_image: bool = True,
        fast_check: bool = False,
    ) -> None:
        self.refine = bool(refine)
        self.refine_window = _positive_int("refine_window", refine_window)
        flags = 0
        if adaptive_threshold:
            flags |= cv2.CALIB_CB_ADAPTIVE_THRESH
        if normalize_image:
            flags |= cv2.CALIB_CB_NORMALIZE_IMAGE
        if fast_check:
            flags |= cv2.CALIB_CB_FAST_CHECK
        self.flags = flags
        super().__init__(
            rows=rows,
            cols=cols,
            refine=self.refine,
            refine_window=self.refine_window,
            adaptive_threshold=bool(adaptive_threshold),
            normalize_image=bool(normalize_image),
            fast_check=bool(fast_check),
        )

    def find_target_features(self, image_bgr: np.ndarray) -> Dict[int, np.ndarray]:
        gray = _gray(image_bgr)
        found, corners = cv2.findChessboardCorners(gray, self.pattern_size, flags=self.flags)
        if not found or corners is None:
            raise TargetNotFoundError(f"Checkerboard {self.rows}x{self.cols} not found in image.")

        if self.refine:
            criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 1e-3)
            win = (self.refine_window, self.refine_window)
            corners = cv2.cornerSubPix(gray, corners, win, (-1, -1), criteria)
        return _grid_features(corners)


class CircleGridTargetFinder(_GridTargetFinder):
    def __init__(
        self,
        *,
        rows: int,
        cols: int,
        symmetric: bool = True,
        clustering: bool = False,
        blob_params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.symmetric = bool(symmetric)
        flags = cv2.CALIB_CB_SYMMETRIC_GRID if self.symmetric else cv2.CALIB_CB_ASYMMETRIC_GRID
        if clustering:
            flags |= cv2.CALIB_CB_CLUSTERING
        self.flags = flags
        self.blob_detector = self._make_blob_detector(blob_params or {})
        super().__init__(
            rows=rows,
            cols=cols,
            symmetric=self.symmetric,
            clustering=bool(clustering),
            blob_params=dict(blob_params or {}),
        )

    @staticmethod
    def _make_blob_detector(overrides: Mapping[str, Any]):
        if not isinstance(overrides, Mapping):
            raise ValueError("Parameter 'blob_params' must be a mapping.")
        if not overrides:
            return None
        params = cv2.SimpleBlobDetector_Params()
        for key, value in overrides.items():
            if not hasattr(params, key):
                raise ValueError(f"Unknown blob detector parameter '{key}'.")
            current = getattr(params, key)
            if isinstance(current, bool):
                if not isinstance(value, bool):
                    raise ValueError(f"Blob detector parameter '{key}' must be true or false, got {value!r}.")
            elif isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                raise ValueError(f"Blob detector parameter '{key}' must be a number, got {value!r}.")
            setattr(params, key, type(current)(value))
        return cv2.SimpleBlobDetector_create(params)

    def find_target_features(self, image_bgr: np.ndarray) -> Dict[int, np.ndarray]:
        gray = _gray(image_bgr)
        if self.blob_detector is not None:
            found, centers = cv2.findCirclesGrid(gray, self.pattern_size, flags=self.flags, blobDetector=self.blob_detector)
        else:
            found, centers = cv2.findCirclesGrid(gray, self.pattern_size, flags=self.flags)
        if not found or centers is None:
            kind = "symmetric" if self.symmetric else "asymmetric"
            raise TargetNotFoundError(f"{kind.capitalize()} circle grid {self.rows}x{self.cols} not found in image.")
        return _grid_features(centers)


class ArucoGridTargetFinder(_OpenCVBase):
    def __init__(
        self,
        *,
        dictionary: str = "DICT_4X4_50",
        min_markers: int = 1,
        marker_ids: Optional[Iterable[int]] = None,
    ) -> None:
        aruco = getattr(cv2, "aruco", None)
        if aruco is None:  # pragma: no cover
            raise ImportError("cv2.aruco is not available in this OpenCV build.")

        dict_name = str(dictionary).strip().upper()
        if not dict_name.startswith("DICT_") or not hasattr(aruco, dict_name):
            raise ValueError(f"Unknown ArUco dictionary '{dictionary}'.")
        self.dictionary_name = dict_name
        self.min_markers = _positive_int("min_markers", min_markers)
        self.marker_ids = None if marker_ids is None else {int(i) for i in marker_ids}

        self._dictionary = aruco.getPredefinedDictionary(getattr(aruco, dict_name))
        if hasattr(aruco, "ArucoDetector"):
            self._detector = aruco.ArucoDetector(self._dictionary, aruco.DetectorParameters())
            self._legacy_params = None
        else:  # OpenCV < 4.7
            self._detector = None
            self._legacy_params = aruco.DetectorParameters_create()

        super().__init__(
            dictionary=dict_name,
            min_markers=self.min_markers,
            marker_ids=None if self.marker_ids is None else sorted(self.marker_ids),
        )

    def _detect(self, gray: np.ndarray):
        if self._detector is not None:
            corners, ids, _rejected = self._detector.detectMarkers(gray)
        else:  # pragma: no cover
            corners, ids, _rejected = cv2.aruco.detectMarkers(gray, self._dictionary, parameters=self._legacy_params)
        return corners, ids

    def find_target_features(self, image_bgr: np.ndarray) -> Dict[int, np.ndarray]:
        corners, ids = self._detect(_gray(image_bgr))
        features: Dict[int, np.ndarray] = {}
        if ids is not None:
            for marker_id, quad in zip(np.asarray(ids).reshape(-1), corners):
                mid = int(marker_id)
                if self.marker_ids is not None and mid not in self.marker_ids:
                    continue
                features[mid] = np.asarray(quad, dtype=np.float64).reshape(4, 2)

        if len(features) < self.min_markers:
            raise TargetNotFoundError(
                f"Found {len(features)} ArUco marker(s) from {self.dictionary_name}, need at least {self.min_markers}."
            )
        logger.debug("ArUco markers found: %s", sorted(features))
        return features

    def draw_target_features(self, image_bgr: np.ndarray, features: Mapping[int, Any]) -> np.ndarray:
        return draw_feature_map(image_bgr, dict(features))


__all__ = [
    "CheckerboardTargetFinder",
    "CircleGridTargetFinder",
    "ArucoGridTargetFinder",
]
