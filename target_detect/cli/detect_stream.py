from __future__ import annotations

"""
target_detect.cli.detect_stream
-------------------------------

CLI that runs the target detector node over a video, a camera or a set of images.

Defaults:
- Does NOT write anything unless you pass --save-video and/or --frames-dir.
- Images are read with IMREAD_UNCHANGED, so 16-bit PNG/TIFF frames reach the normalizer.
- Stops at end of input, on 'q' in the display window, or on SIGINT/SIGTERM.

Examples:
  # Checkerboard on a recorded video, save annotated output:
  python -m target_detect.cli.detect_stream --config configs/checkerboard.yaml --video in.mp4 --save-video out/annotated.mp4

  # 16-bit images, write annotated frames:
  python -m target_detect.cli.detect_stream --config cfg.yaml --images "captures/*.png" --frames-dir out/frames

  # Live camera 0 with a window:
  python -m target_detect.cli.detect_stream --config cfg.yaml --video 0 --display
"""

import argparse
import glob
import json
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

from ..backends import available_target_finders, register_target_finder
from ..core.bus import FrameBus
from ..core.config import load_config, resolve_config_path
from ..core.node import TargetDetectorNode, create_node, install_signal_handlers
from ..core.schema import ConfigError, FrameError, FrameHeader, RawFrame, encoding_for_array, frame_file_name
from ..registry.plugins import load_plugins

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "TARGET_DETECT_LOG_LEVEL"


def _build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Detect a calibration target in a frame stream and publish annotated frames.")
    ap.add_argument("--config", type=str, default=None, help="Path to the YAML config document (default: $TARGET_DETECT_CONFIG)")
    ap.add_argument("--video", type=str, default=None, help="Video file path or camera index (e.g. 0)")
    ap.add_argument("--images", type=str, default=None, help="Image directory or glob pattern (e.g. 'captures/*.png')")
    ap.add_argument("--frame-id", type=str, default="camera", help="Coordinate frame id stamped on every header")
    ap.add_argument("--queue-size", type=int, default=None, help="Input queue size (default: 1 for cameras, unbounded for files)")

    ap.add_argument("--save-video", type=Path, default=None, help="Write annotated frames to this video file")
    ap.add_argument("--fps", type=float, default=None, help="FPS for --save-video (default: source FPS or 30)")
    ap.add_argument("--frames-dir", type=Path, default=None, help="Write annotated frames as JPEGs into this directory")
    ap.add_argument("--display", action="store_true", help="Show live window (press q to quit)")

    ap.add_argument("--no-progress", action="store_true", help="Disable tqdm progress bar")
    ap.add_argument("--list-finders", action="store_true", help="List available target finders, then exit")
    ap.add_argument(
        "--log-level",
        type=str,
        default=os.getenv(LOG_LEVEL_ENV, "INFO"),
        help=f"Logging level (default: ${LOG_LEVEL_ENV} or INFO)",
    )
    return ap


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _image_paths(spec: str) -> List[str]:
    p = Path(spec)
    if p.is_dir():
        return sorted(str(x) for x in p.iterdir() if x.is_file())
    return sorted(glob.glob(spec))


def _iter_images(paths: List[str]) -> Iterator[Tuple[np.ndarray, float]]:
    for path in paths:
        img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        if img is None:
            logger.warning("Skipping unreadable image: %s", path)
            continue
        yield img, time.time()


def _iter_video(cap) -> Iterator[Tuple[np.ndarray, float]]:
    while True:
        ok, frame = cap.read()
        if not ok or frame is None:
            return
        yield frame, time.time()


class _AnnotatedSink:
    """Consumes the annotated topic: optional video file, frame files and window."""

    def __init__(self, *, save_video: Optional[Path], fps: float, frames_dir: Optional[Path], display: bool, stop: threading.Event) -> None:
        self.save_video = save_video
        self.fps = fps
        self.frames_dir = frames_dir
        self.display = display
        self.stop = stop
        self.writer = None
        self.count = 0

    def __call__(self, msg: RawFrame) -> None:
        img = np.ascontiguousarray(msg.image)
        if self.save_video is not None:
            if self.writer is None:
                self.save_video.parent.mkdir(parents=True, exist_ok=True)
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                self.writer = cv2.VideoWriter(str(self.save_video), fourcc, self.fps, (msg.width, msg.height))
            self.writer.write(img)
        if self.frames_dir is not None:
            self.frames_dir.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(self.frames_dir / frame_file_name(msg.header.seq)), img)
        if self.display:
            cv2.imshow("target_detect", img)
            if (cv2.waitKey(1) & 0xFF) == ord("q"):
                self.stop.set()
        self.count += 1

    def close(self) -> None:
        if self.writer is not None:
            self.writer.release()
            self.writer = None
        if self.display:
            cv2.destroyAllWindows()


def _start_node(bus: FrameBus, config_path: Path, queue_size: Optional[int]) -> TargetDetectorNode:
    config = load_config(config_path)
    node_cfg = config.get("node") or {}
    if queue_size is not None and isinstance(node_cfg, dict):
        config = {**config, "node": {**node_cfg, "queue_size": queue_size}}
    return create_node(bus, config=config)


def run_cli() -> None:
    ap = _build_argparser()
    args = ap.parse_args()
    _configure_logging(args.log_level)

    if args.list_finders:
        config = None
        if args.config:
            try:
                config = load_config(args.config)
            except ConfigError as e:
                print(f"[error] {e}", file=sys.stderr)
                raise SystemExit(2)
        load_plugins(register_target_finder, config)
        print(json.dumps(available_target_finders(), indent=2))
        return

    if (args.video is None) == (args.images is None):
        ap.error("Pass exactly one of --video or --images")
    if cv2 is None:  # pragma: no cover
        raise SystemExit("[error] opencv-python is required (cv2 import failed).")

    # Open the source before anything else so a bad path fails fast.
    cap = None
    total: Optional[int] = None
    live = False
    if args.video is not None:
        live = args.video.isdigit()
        cap = cv2.VideoCapture(int(args.video) if live else args.video)
        if not cap.isOpened():
            raise SystemExit(f"[error] Cannot open video source: {args.video}")
        frames = _iter_video(cap)
        n = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        total = n if n > 0 and not live else None
        src_fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
    else:
        paths = _image_paths(args.images)
        if not paths:
            raise SystemExit(f"[error] No images match: {args.images}")
        frames = _iter_images(paths)
        total = len(paths)
        src_fps = 0.0

    queue_size = args.queue_size
    if queue_size is None:
        queue_size = 1 if live else 0

    # Startup: config + finder before any channel is opened.
    bus = FrameBus()
    try:
        node = _start_node(bus, resolve_config_path(args.config), queue_size)
    except ConfigError as e:
        if cap is not None:
            cap.release()
        bus.shutdown()
        print(f"[error] {e}", file=sys.stderr)
        raise SystemExit(2)

    stop = threading.Event()
    install_signal_handlers(stop)

    sink = _AnnotatedSink(
        save_video=args.save_video,
        fps=args.fps or (src_fps if src_fps > 0 else 30.0),
        frames_dir=args.frames_dir,
        display=bool(args.display),
        stop=stop,
    )
    bus.subscribe(node.annotated_pub.topic, sink, queue_size=0)
    source_pub = bus.advertise(node.subscription.topic)

    try:
        with tqdm(total=total, desc="frames", disable=args.no_progress) as bar:
            for seq, (image, stamp) in enumerate(frames):
                if stop.is_set():
                    break
                try:
                    raw = RawFrame(
                        image=image,
                        encoding=encoding_for_array(image),
                        header=FrameHeader(stamp=stamp, frame_id=args.frame_id, seq=seq),
                    )
                except FrameError as e:
                    logger.error("Skipping source frame %d: %s", seq, e)
                    continue
                source_pub.publish(raw)
                node.spin_once(timeout=0.0)
                bar.update(1)
        # Drain anything still queued (including annotated frames for the sink).
        while node.spin_once(timeout=0.0):
            pass
    finally:
        node.shutdown()
        sink.close()
        if cap is not None:
            cap.release()
        bus.shutdown()

    s = node.stats
    print(json.dumps({"received": s.received, "published": s.published, "dropped": s.dropped, "partial": s.partial}, indent=2))


if __name__ == "__main__":
    run_cli()


__all__ = ["run_cli"]
