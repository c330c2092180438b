"""
target_detect
=============
target_detect/
  __init__.py
  core/
    schema.py          # frame records, encodings, errors, BaseTargetFinder
    normalize.py       # any encoding/bit depth -> canonical uint8 BGR
    pipeline.py        # per-frame normalize -> find -> draw -> publish, failure isolation
    node.py            # startup (config -> finder -> channels), spin, shutdown
    bus.py             # in-process topic bus
    config.py          # YAML config document helpers
    viz.py             # drawing helpers (cv2)
  backends/
    __init__.py        # target finder registry + build_target_finder()
    opencv/
      __init__.py
      finders.py       # checkerboard / circle grid / ArUco finders
  registry/
    plugins.py         # plugin search path + entry points
  cli/
    detect_stream.py   # argparse -> node over a video / camera / images

A streaming calibration-target detection node: frames are normalized to 8-bit BGR,
handed to a target finder selected by name from a YAML config, and both the original
and an annotated frame are republished. A failing frame is logged and dropped; the
stream keeps going.

Public API (stable-ish):
- Frame types, errors and finder interface (core.schema)
- Frame normalizer (core.normalize)
- Pipeline controller and node lifecycle (core.pipeline, core.node)
- Target finder registry + factory (backends)
"""

from .core.schema import (
    TargetDetectError,
    ConfigError,
    FrameError,
    FrameFormatError,
    TargetNotFoundError,
    AnnotationError,
    FrameHeader,
    RawFrame,
    CanonicalFrame,
    BaseTargetFinder,
    encoding_info,
)

from .core.normalize import (
    normalize,
)

from .core.bus import (
    FrameBus,
)

from .core.pipeline import (
    FramePipeline,
    FrameResult,
    FrameStats,
)

from .core.node import (
    TargetDetectorNode,
    create_node,
    run_node,
)

from .backends import (
    register_target_finder,
    available_target_finders,
    create_target_finder,
    build_target_finder,
)

__all__ = [
    # Schema / types
    "TargetDetectError",
    "ConfigError",
    "FrameError",
    "FrameFormatError",
    "TargetNotFoundError",
    "AnnotationError",
    "FrameHeader",
    "RawFrame",
    "CanonicalFrame",
    "BaseTargetFinder",
    "encoding_info",
    # Processing
    "normalize",
    "FrameBus",
    "FramePipeline",
    "FrameResult",
    "FrameStats",
    "TargetDetectorNode",
    "create_node",
    "run_node",
    # Backends
    "register_target_finder",
    "available_target_finders",
    "create_target_finder",
    "build_target_finder",
]
