from __future__ import annotations

"""
target_detect.core.schema
-------------------------

Frame records, image encodings, error taxonomy and the base target finder interface.

Notes:
- Encodings use the sensor_msgs names (mono8, rgb16, bayer_rggb8, 32FC1, ...).
- A RawFrame's pixel array is made read-only on construction; the pipeline never
  modifies a frame it received.
- Canonical images are always uint8, H x W x 3, BGR channel order.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np


# ---------------------------
# Errors
# ---------------------------

class TargetDetectError(Exception):
    """Root of all errors raised by this package."""


class ConfigError(TargetDetectError, ValueError):
    """Fatal startup error: bad config document, unknown finder type, bad parameters."""


class FrameError(TargetDetectError, RuntimeError):
    """Recoverable error scoped to a single frame."""


class FrameFormatError(FrameError):
    """Frame buffer could not be decoded or converted."""


class TargetNotFoundError(FrameError):
    """The calibration target is absent or incomplete in this frame."""


class AnnotationError(FrameError):
    """Rendering the target features failed."""


# ---------------------------
# Encodings
# ---------------------------

@dataclass(frozen=True)
class EncodingInfo:
    """Bit depth + channel semantics of an encoding.

    layout is one of: mono, bgr, rgb, bgra, rgba, bayer_rggb, bayer_bggr,
    bayer_gbrg, bayer_grbg, yuv422.
    """
    bit_depth: int
    channels: int
    dtype: np.dtype
    layout: str


_NAMED_ENCODINGS: Dict[str, EncodingInfo] = {}


def _named(name: str, depth: int, channels: int, dtype: Any, layout: str) -> None:
    _NAMED_ENCODINGS[name] = EncodingInfo(depth, channels, np.dtype(dtype), layout)


for _depth, _dtype in ((8, np.uint8), (16, np.uint16)):
    _named(f"mono{_depth}", _depth, 1, _dtype, "mono")
    _named(f"rgb{_depth}", _depth, 3, _dtype, "rgb")
    _named(f"bgr{_depth}", _depth, 3, _dtype, "bgr")
    _named(f"rgba{_depth}", _depth, 4, _dtype, "rgba")
    _named(f"bgra{_depth}", _depth, 4, _dtype, "bgra")
    for _pattern in ("rggb", "bggr", "gbrg", "grbg"):
        _named(f"bayer_{_pattern}{_depth}", _depth, 1, _dtype, f"bayer_{_pattern}")
_named("yuv422", 8, 2, np.uint8, "yuv422")

# Generic OpenCV-style names, e.g. 8UC3, 16UC1, 32FC1
_GENERIC_RE = re.compile(r"^(8U|8S|16U|16S|32S|32F|64F)C([1-4])$")
_GENERIC_DTYPES: Dict[str, Any] = {
    "8U": np.uint8,
    "8S": np.int8,
    "16U": np.uint16,
    "16S": np.int16,
    "32S": np.int32,
    "32F": np.float32,
    "64F": np.float64,
}
_GENERIC_LAYOUTS = {1: "mono", 3: "bgr", 4: "bgra"}


def encoding_info(encoding: str) -> EncodingInfo:
    """Return EncodingInfo for a sensor_msgs-style encoding name.

    Raises FrameFormatError for unknown names.
    """
    enc = (encoding or "").strip()
    info = _NAMED_ENCODINGS.get(enc.lower())
    if info is not None:
        return info
    m = _GENERIC_RE.match(enc.upper())
    if m:
        dtype = np.dtype(_GENERIC_DTYPES[m.group(1)])
        channels = int(m.group(2))
        if channels == 2:
            raise FrameFormatError(f"Two-channel generic encoding '{encoding}' has no color semantics.")
        return EncodingInfo(dtype.itemsize * 8, channels, dtype, _GENERIC_LAYOUTS[channels])
    raise FrameFormatError(f"Unsupported image encoding '{encoding}'.")


def bit_depth(encoding: str) -> int:
    return encoding_info(encoding).bit_depth


def encoding_for_array(image: np.ndarray, *, color: bool = True) -> str:
    """Infer an encoding for an array as returned by OpenCV (BGR order).

    Single-channel arrays map to mono8/mono16 where possible; 3/4 channel arrays map
    to bgr*/bgra*. Other dtypes fall back to the generic names (e.g. 32FC1).
    """
    arr = np.asarray(image)
    channels = 1 if arr.ndim == 2 else int(arr.shape[2])
    if arr.dtype == np.uint8 or arr.dtype == np.uint16:
        depth = 8 if arr.dtype == np.uint8 else 16
        if channels == 1:
            return f"mono{depth}"
        if channels == 3:
            return f"bgr{depth}" if color else f"rgb{depth}"
        if channels == 4:
            return f"bgra{depth}" if color else f"rgba{depth}"
    for code, dt in _GENERIC_DTYPES.items():
        if np.dtype(dt) == arr.dtype:
            return f"{code}C{channels}"
    raise FrameFormatError(f"No encoding for array dtype={arr.dtype} channels={channels}.")


# ---------------------------
# Frame records
# ---------------------------

@dataclass(frozen=True)
class FrameHeader:
    """Header metadata carried unchanged from input to annotated output."""
    stamp: float = field(default_factory=time.time)
    frame_id: str = ""
    seq: int = 0


@dataclass(frozen=True)
class RawFrame:
    """Unprocessed image message as delivered by the bus."""
    image: np.ndarray
    encoding: str
    header: FrameHeader = field(default_factory=FrameHeader)

    def __post_init__(self) -> None:
        arr = np.asarray(self.image)
        if arr.ndim not in (2, 3):
            raise FrameFormatError(f"Image must be 2-D or 3-D, got shape {arr.shape}.")
        info = encoding_info(self.encoding)
        channels = 1 if arr.ndim == 2 else int(arr.shape[2])
        if channels != info.channels:
            raise FrameFormatError(
                f"Encoding '{self.encoding}' expects {info.channels} channel(s), image has {channels}."
            )
        if arr.dtype != info.dtype:
            raise FrameFormatError(
                f"Encoding '{self.encoding}' expects dtype {info.dtype}, image has {arr.dtype}."
            )
        view = arr.view()
        view.flags.writeable = False
        object.__setattr__(self, "image", view)

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self.image.ndim == 2 else int(self.image.shape[2])

    @property
    def bit_depth(self) -> int:
        return encoding_info(self.encoding).bit_depth

    @classmethod
    def from_buffer(
        cls,
        data: bytes,
        *,
        height: int,
        width: int,
        encoding: str,
        step: Optional[int] = None,
        is_bigendian: bool = False,
        header: Optional[FrameHeader] = None,
    ) -> "RawFrame":
        """Decode a sensor_msgs/Image style byte buffer (rows of `step` bytes)."""
        info = encoding_info(encoding)
        if height <= 0 or width <= 0:
            raise FrameFormatError(f"Invalid image size {width}x{height}.")
        row_bytes = width * info.channels * info.dtype.itemsize
        step = row_bytes if step is None else int(step)
        if step < row_bytes:
            raise FrameFormatError(f"Row step {step} is smaller than row size {row_bytes}.")
        if len(data) < step * height:
            raise FrameFormatError(
                f"Buffer holds {len(data)} bytes, expected {step * height} for {width}x{height} '{encoding}'."
            )
        dtype = info.dtype.newbyteorder(">" if is_bigendian else "<")
        rows = np.frombuffer(data, dtype=np.uint8, count=step * height).reshape(height, step)
        pixels = np.ascontiguousarray(rows[:, :row_bytes]).view(dtype)
        pixels = pixels.astype(info.dtype, copy=False)
        if info.channels == 1:
            image = pixels.reshape(height, width)
        else:
            image = pixels.reshape(height, width, info.channels)
        return cls(image=image, encoding=encoding, header=header or FrameHeader())


@dataclass(frozen=True)
class CanonicalFrame:
    """8-bit, 3-channel BGR frame derived from exactly one RawFrame."""
    image: np.ndarray
    header: FrameHeader

    def to_message(self, encoding: str = "bgr8") -> RawFrame:
        return RawFrame(image=self.image, encoding=encoding, header=self.header)


# Opaque to the pipeline. Built-in finders use {feature_id: N x 2 image points}.
TargetFeatures = Any


# ---------------------------
# Abstract target finder interface
# ---------------------------

class BaseTargetFinder(ABC):
    """Abstract base class for target finders.

    A finder is built once at startup from its parameter mapping and is then shared
    read-only by every frame; implementations must not mutate state in
    find_target_features() or draw_target_features().
    """

    backend: str = "unknown"  # override in concrete finders (e.g. "opencv")

    def __init__(self, **params: Any) -> None:
        self.params: Dict[str, Any] = dict(params)

    @property
    def name(self) -> str:
        """Human-readable finder name used in logs."""
        return self.__class__.__name__.lower()

    @abstractmethod
    def find_target_features(self, image_bgr: np.ndarray) -> TargetFeatures:
        """Locate the target in a canonical BGR image.

        Raises TargetNotFoundError (or another FrameError) if the target is not found.
        """
        raise NotImplementedError

    @abstractmethod
    def draw_target_features(self, image_bgr: np.ndarray, features: TargetFeatures) -> np.ndarray:
        """Return a new BGR image with the features drawn on top; the input is not modified."""
        raise NotImplementedError


def frame_file_name(seq: int, pad: int = 6, ext: str = ".jpg") -> str:
    """Return a standardized frame file name like '000000.jpg'."""
    return f"{seq:0{pad}d}{ext}"


__all__ = [
    "TargetDetectError",
    "ConfigError",
    "FrameError",
    "FrameFormatError",
    "TargetNotFoundError",
    "AnnotationError",
    "EncodingInfo",
    "encoding_info",
    "bit_depth",
    "encoding_for_array",
    "FrameHeader",
    "RawFrame",
    "CanonicalFrame",
    "TargetFeatures",
    "BaseTargetFinder",
    "frame_file_name",
]
