from __future__ import annotations

"""
target_detect.core.pipeline
---------------------------

Per-frame controller: normalize -> find target -> draw -> publish twice.

Failure isolation:
- process() never raises for an Exception; it returns a FrameResult carrying the error.
- on_frame() drops any frame whose result is not ok: one ERROR log line, zero publications.
- A frame whose annotated publish fails after the detected one went out counts as partial.
- The target finder is the only state shared between frames and is only read here.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from .normalize import normalize
from .schema import AnnotationError, BaseTargetFinder, CanonicalFrame, FrameError, RawFrame, TargetFeatures

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """Outcome of running one frame through normalize/find/draw."""
    raw: RawFrame
    canonical: Optional[CanonicalFrame] = None
    features: TargetFeatures = None
    annotated: Optional[CanonicalFrame] = None
    error: Optional[BaseException] = None
    stage: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.annotated is not None


@dataclass
class FrameStats:
    received: int = 0
    published: int = 0
    dropped: int = 0
    partial: int = 0


def _describe(raw: Any) -> str:
    header = getattr(raw, "header", None)
    if header is None:
        return "frame <no header>"
    return f"frame seq={header.seq} id='{header.frame_id}' stamp={header.stamp:.6f}"


class FramePipeline:
    """Frame Pipeline Controller bound to one finder and two publishers.

    `detected_pub` / `annotated_pub` are anything with a publish(msg) method.
    """

    def __init__(self, target_finder: BaseTargetFinder, detected_pub: Any, annotated_pub: Any) -> None:
        self.target_finder = target_finder
        self.detected_pub = detected_pub
        self.annotated_pub = annotated_pub
        self._stats = FrameStats()
        self._stats_lock = threading.Lock()

    @property
    def stats(self) -> FrameStats:
        with self._stats_lock:
            return FrameStats(**vars(self._stats))

    def process(self, raw: RawFrame) -> FrameResult:
        """Run normalize -> find -> draw for one frame, capturing any error in the result."""
        result = FrameResult(raw=raw)
        try:
            result.stage = "normalize"
            result.canonical = normalize(raw)

            result.stage = "find"
            result.features = self.target_finder.find_target_features(result.canonical.image)

            result.stage = "draw"
            drawn = self.target_finder.draw_target_features(result.canonical.image, result.features)
            result.annotated = CanonicalFrame(image=_check_annotated(drawn), header=raw.header)
            result.stage = "done"
        except Exception as e:
            result.error = e
        return result

    def on_frame(self, raw: RawFrame) -> bool:
        """Handle one inbound frame. Returns True if both outputs were published.

        Both messages are built, and both publishers checked for shutdown, before
        either is sent, so a failure up to that point publishes nothing. A
        publisher can still raise on the annotated side after the detected frame
        went out; a sent message cannot be recalled, so that frame is counted as
        `partial` (not `dropped`) and logged at ERROR.
        """
        self._bump("received")
        result = self.process(raw)
        if not result.ok:
            self._drop(raw, result.stage, result.error)
            return False

        try:
            annotated_msg = result.annotated.to_message()
            for pub in (self.detected_pub, self.annotated_pub):
                if getattr(pub, "closed", False):
                    raise RuntimeError(f"Publisher on '{getattr(pub, 'topic', '?')}' is shut down.")
            self.detected_pub.publish(raw)
        except Exception as e:
            self._drop(raw, "publish", e)
            return False

        try:
            self.annotated_pub.publish(annotated_msg)
        except Exception as e:
            self._bump("partial")
            logger.error(
                "Partially published %s: detected sent, annotated failed: %s: %s",
                _describe(raw),
                type(e).__name__,
                e,
                exc_info=e,
            )
            return False

        self._bump("published")
        logger.debug("Published %s.", _describe(raw))
        return True

    __call__ = on_frame

    def _drop(self, raw: Any, stage: str, error: Optional[BaseException]) -> None:
        self._bump("dropped")
        if isinstance(error, FrameError):
            logger.error("Dropping %s at %s: %s", _describe(raw), stage, error)
        else:
            logger.error(
                "Dropping %s at %s: unexpected %s: %s",
                _describe(raw),
                stage,
                type(error).__name__,
                error,
                exc_info=error,
            )

    def _bump(self, field_name: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field_name, getattr(self._stats, field_name) + 1)


def _check_annotated(image: Any) -> np.ndarray:
    arr = np.asarray(image) if image is not None else None
    if arr is None or arr.ndim != 3 or arr.shape[2] != 3 or arr.dtype != np.uint8:
        shape = None if arr is None else (arr.shape, str(arr.dtype))
        raise AnnotationError(f"Finder returned an annotated image that is not uint8 H x W x 3: {shape}")
    return arr


__all__ = [
    "FrameResult",
    "FrameStats",
    "FramePipeline",
]
