"""
target_detect.backends.opencv
-----------------------------

OpenCV backend integration.

Provides:
- checkerboard, circle grid and ArUco grid target finders

This backend assumes `opencv-python` (4.x) is installed.
"""

from .finders import ArucoGridTargetFinder, CheckerboardTargetFinder, CircleGridTargetFinder

__all__ = [
    "ArucoGridTargetFinder",
    "CheckerboardTargetFinder",
    "CircleGridTargetFinder",
]
