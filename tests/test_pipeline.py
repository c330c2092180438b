from __future__ import annotations

import logging

import numpy as np
import pytest

from target_detect.core.pipeline import FramePipeline
from target_detect.core.schema import (
    AnnotationError,
    BaseTargetFinder,
    FrameHeader,
    RawFrame,
    TargetNotFoundError,
)


class _RecordingPublisher:
    def __init__(self) -> None:
        self.messages: list = []

    def publish(self, msg) -> None:
        self.messages.append(msg)


class _FakeFinder(BaseTargetFinder):
    """Fails on frames whose top-left canonical pixel equals `fail_marker`."""

    backend = "test"

    def __init__(self, fail_marker: int | None = None, draw_error: Exception | None = None) -> None:
        super().__init__()
        self.fail_marker = fail_marker
        self.draw_error = draw_error
        self.seen: list[np.ndarray] = []

    def find_target_features(self, image_bgr: np.ndarray):
        self.seen.append(image_bgr)
        if self.fail_marker is not None and int(image_bgr[0, 0, 0]) == self.fail_marker:
            raise TargetNotFoundError("no target in this frame")
        return {0: np.array([[1.0, 1.0]])}

    def draw_target_features(self, image_bgr: np.ndarray, features) -> np.ndarray:
        if self.draw_error is not None:
            raise self.draw_error
        out = image_bgr.copy()
        out[1, 1] = (0, 255, 0)
        return out


class _BadDrawFinder(_FakeFinder):
    def draw_target_features(self, image_bgr: np.ndarray, features) -> np.ndarray:
        return image_bgr[:, :, 0]


def _frame(seq: int, value: int = 10) -> RawFrame:
    image = np.full((4, 4, 3), value, dtype=np.uint8)
    return RawFrame(image=image, encoding="bgr8", header=FrameHeader(stamp=100.0 + seq, frame_id="cam", seq=seq))


def _pipeline(finder: BaseTargetFinder):
    detected, annotated = _RecordingPublisher(), _RecordingPublisher()
    return FramePipeline(finder, detected, annotated), detected, annotated


def test_failing_frame_is_dropped_and_stream_continues(caplog) -> None:
    pipeline, detected, annotated = _pipeline(_FakeFinder(fail_marker=99))
    frames = [_frame(i, value=99 if i == 2 else 10) for i in range(5)]

    with caplog.at_level(logging.ERROR, logger="target_detect.core.pipeline"):
        results = [pipeline.on_frame(f) for f in frames]

    assert results == [True, True, False, True, True]
    assert [m.header.seq for m in detected.messages] == [0, 1, 3, 4]
    assert [m.header.seq for m in annotated.messages] == [0, 1, 3, 4]
    stats = pipeline.stats
    assert (stats.received, stats.published, stats.dropped) == (5, 4, 1)
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "seq=2" in errors[0].getMessage()


def test_detected_output_is_the_original_frame_and_headers_match() -> None:
    pipeline, detected, annotated = _pipeline(_FakeFinder())
    raw = _frame(7)

    assert pipeline(raw) is True

    assert detected.messages == [raw]
    assert detected.messages[0] is raw
    out = annotated.messages[0]
    assert out.header == raw.header
    assert out.encoding == "bgr8"
    assert out.image[1, 1].tolist() == [0, 255, 0]
    assert raw.image[1, 1].tolist() == [10, 10, 10]


def test_unexpected_render_error_is_isolated() -> None:
    pipeline, detected, annotated = _pipeline(_FakeFinder(draw_error=ZeroDivisionError("boom")))

    assert pipeline.on_frame(_frame(0)) is False
    assert pipeline.on_frame(_frame(1)) is False

    assert detected.messages == []
    assert annotated.messages == []
    assert pipeline.stats.dropped == 2


def test_process_reports_stage_and_error() -> None:
    pipeline, _, _ = _pipeline(_FakeFinder(fail_marker=10))

    result = pipeline.process(_frame(0))

    assert not result.ok
    assert result.stage == "find"
    assert isinstance(result.error, TargetNotFoundError)
    assert result.canonical is not None
    assert result.annotated is None


def test_annotated_image_must_be_three_channel() -> None:
    pipeline, _, annotated = _pipeline(_BadDrawFinder())

    result = pipeline.process(_frame(0))

    assert isinstance(result.error, AnnotationError)
    assert result.stage == "draw"
    assert pipeline.on_frame(_frame(1)) is False
    assert annotated.messages == []


def test_malformed_message_is_dropped() -> None:
    pipeline, detected, _ = _pipeline(_FakeFinder())

    assert pipeline.on_frame(object()) is False
    assert pipeline.on_frame(_frame(1)) is True
    assert len(detected.messages) == 1


def test_publish_failure_does_not_escape() -> None:
    class _BrokenPublisher:
        def publish(self, msg) -> None:
            raise RuntimeError("bus down")

    pipeline = FramePipeline(_FakeFinder(), _BrokenPublisher(), _RecordingPublisher())

    assert pipeline.on_frame(_frame(0)) is False
    assert pipeline.stats.dropped == 1


def test_closed_annotated_publisher_publishes_nothing() -> None:
    annotated = _RecordingPublisher()
    annotated.closed = True
    detected = _RecordingPublisher()
    pipeline = FramePipeline(_FakeFinder(), detected, annotated)

    assert pipeline.on_frame(_frame(0)) is False

    assert detected.messages == []
    assert annotated.messages == []
    stats = pipeline.stats
    assert (stats.dropped, stats.partial) == (1, 0)


def test_annotated_publish_failure_is_counted_as_partial(caplog) -> None:
    class _BrokenPublisher:
        def publish(self, msg) -> None:
            raise RuntimeError("annotated channel lost")

    detected = _RecordingPublisher()
    pipeline = FramePipeline(_FakeFinder(), detected, _BrokenPublisher())

    with caplog.at_level(logging.ERROR, logger="target_detect.core.pipeline"):
        assert pipeline.on_frame(_frame(0)) is False
    assert pipeline.on_frame(_frame(1)) is False

    assert [m.header.seq for m in detected.messages] == [0, 1]
    stats = pipeline.stats
    assert (stats.received, stats.published, stats.dropped, stats.partial) == (2, 0, 0, 2)
    assert "Partially published" in caplog.records[0].getMessage()


def test_keyboard_interrupt_is_not_swallowed() -> None:
    pipeline, _, _ = _pipeline(_FakeFinder(draw_error=KeyboardInterrupt()))

    with pytest.raises(KeyboardInterrupt):
        pipeline.on_frame(_frame(0))


def test_end_to_end_sixteen_bit_mono_frame() -> None:
    finder = _FakeFinder()
    pipeline, detected, annotated = _pipeline(finder)
    image = np.linspace(1000, 5000, num=64 * 48, dtype=np.float64).reshape(48, 64).astype(np.uint16)
    raw = RawFrame(image=image, encoding="mono16", header=FrameHeader(stamp=42.0, frame_id="ir_optical", seq=1))

    assert pipeline.on_frame(raw) is True

    canonical = finder.seen[0]
    assert canonical.dtype == np.uint8
    assert canonical.shape == (48, 64, 3)
    assert canonical.min() == 0
    assert canonical.max() == 255
    assert len(detected.messages) == 1
    assert len(annotated.messages) == 1
    assert detected.messages[0] is raw
    assert annotated.messages[0].header == raw.header
