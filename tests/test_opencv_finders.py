from __future__ import annotations

import cv2
import numpy as np
import pytest

from target_detect.backends.opencv import ArucoGridTargetFinder, CheckerboardTargetFinder, CircleGridTargetFinder
from target_detect.core.schema import TargetNotFoundError


def _checkerboard(squares_x: int = 8, squares_y: int = 6, square: int = 30, margin: int = 40) -> np.ndarray:
    h, w = squares_y * square + 2 * margin, squares_x * square + 2 * margin
    img = np.full((h, w), 255, dtype=np.uint8)
    for r in range(squares_y):
        for c in range(squares_x):
            if (r + c) % 2 == 0:
                y, x = margin + r * square, margin + c * square
                img[y : y + square, x : x + square] = 0
    return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)


def _circle_grid(rows: int = 4, cols: int = 5, spacing: int = 40, radius: int = 10, margin: int = 40) -> np.ndarray:
    h, w = (rows - 1) * spacing + 2 * margin, (cols - 1) * spacing + 2 * margin
    img = np.full((h, w, 3), 255, dtype=np.uint8)
    for r in range(rows):
        for c in range(cols):
            center = (margin + c * spacing, margin + r * spacing)
            cv2.circle(img, center, radius, (0, 0, 0), -1, lineType=cv2.LINE_AA)
    return img


def test_checkerboard_corners_are_found() -> None:
    image = _checkerboard()
    finder = CheckerboardTargetFinder(rows=5, cols=7)

    features = finder.find_target_features(image)

    assert sorted(features) == list(range(35))
    expected = np.array([(40 + 30 * i, 40 + 30 * j) for i in range(1, 8) for j in range(1, 6)], dtype=float)
    for pts in features.values():
        assert pts.shape == (1, 2)
        assert np.min(np.linalg.norm(expected - pts[0], axis=1)) < 1.5


def test_checkerboard_missing_raises() -> None:
    finder = CheckerboardTargetFinder(rows=5, cols=7)

    with pytest.raises(TargetNotFoundError):
        finder.find_target_features(np.full((200, 200, 3), 255, dtype=np.uint8))


def test_checkerboard_drawing_leaves_input_untouched() -> None:
    image = _checkerboard()
    before = image.copy()
    finder = CheckerboardTargetFinder(rows=5, cols=7)
    features = finder.find_target_features(image)

    annotated = finder.draw_target_features(image, features)

    np.testing.assert_array_equal(image, before)
    assert annotated.shape == image.shape
    assert annotated.dtype == np.uint8
    assert not np.array_equal(annotated, image)


def test_circle_grid_is_found() -> None:
    finder = CircleGridTargetFinder(rows=4, cols=5)

    features = finder.find_target_features(_circle_grid())

    assert len(features) == 20
    assert all(pts.shape == (1, 2) for pts in features.values())


@pytest.mark.parametrize(
    "kwargs",
    [
        {"rows": 0, "cols": 5},
        {"rows": "4", "cols": 5},
        {"rows": True, "cols": 5},
        {"rows": 4, "cols": 5, "blob_params": {"noSuchField": 1}},
        {"rows": 4, "cols": 5, "blob_params": [1, 2]},
        {"rows": 4, "cols": 5, "blob_params": {"filterByArea": "false"}},
        {"rows": 4, "cols": 5, "blob_params": {"filterByArea": 0}},
        {"rows": 4, "cols": 5, "blob_params": {"minArea": "50"}},
        {"rows": 4, "cols": 5, "blob_params": {"minArea": True}},
    ],
)
def test_circle_grid_rejects_bad_params(kwargs) -> None:
    with pytest.raises(ValueError):
        CircleGridTargetFinder(**kwargs)


def test_circle_grid_blob_params_are_applied() -> None:
    finder = CircleGridTargetFinder(rows=4, cols=5, blob_params={"filterByArea": True, "minArea": 50, "maxArea": 2000})

    assert finder.blob_detector is not None
    assert len(finder.find_target_features(_circle_grid())) == 20


def test_aruco_unknown_dictionary() -> None:
    with pytest.raises(ValueError):
        ArucoGridTargetFinder(dictionary="DICT_NOPE")


@pytest.mark.skipif(not hasattr(getattr(cv2, "aruco", None), "generateImageMarker"), reason="needs OpenCV >= 4.7")
def test_aruco_markers_are_found_and_filtered() -> None:
    dictionary = cv2.aruco.getPredefinedDictionary(cv2.aruco.DICT_4X4_50)
    marker = cv2.aruco.generateImageMarker(dictionary, 3, 120)
    canvas = np.full((240, 240), 255, dtype=np.uint8)
    canvas[60:180, 60:180] = marker
    image = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    features = ArucoGridTargetFinder().find_target_features(image)

    assert list(features) == [3]
    assert features[3].shape == (4, 2)
    annotated = ArucoGridTargetFinder().draw_target_features(image, features)
    assert annotated.shape == image.shape

    with pytest.raises(TargetNotFoundError):
        ArucoGridTargetFinder(marker_ids=[7]).find_target_features(image)
